"""
librarian.summarizer -- Turn diffs into an updated memory document.

All generation goes through an injected ``Generator`` callable
(``(prompt, system, options) -> str``), so tests can substitute a fake.

Sizing: if the diff plus the current document fits in 70% of the token
budget, one call does the update.  Otherwise the diff is chunked, each
chunk is folded into the running document in order, and when more than
one chunk was produced a final merge call reconciles the per-chunk
outputs into one document.
"""

from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING, List, Optional, Sequence, Union

from librarian.core.errors import ConflictResolutionError
from librarian.core.tokens import estimate_tokens
from librarian.core.types import FLASH, PRO, GenerationOptions, Generator, today
from librarian.diff.chunker import chunk_diff
from librarian.diff.model import Diff
from librarian.memory.document import REQUIRED_SECTIONS, MemoryDocument
from librarian.vcs.source import ChangesetSource, OnelineCommit

if TYPE_CHECKING:
    from librarian.core.config import Config

log = logging.getLogger(__name__)

#: Below this share of the budget a diff is summarized in one call.
SINGLE_CALL_RATIO = 0.7

#: Temperature for conflict merges; lower keeps both sides' wording stable.
MERGE_TEMPERATURE = 0.2


# ---------------------------------------------------------------------------
# Prompts
# ---------------------------------------------------------------------------

LIBRARIAN_SYSTEM = """# ROLE
You are "The Librarian", an expert software architect and context manager. Your sole purpose is to maintain the `{filename}` file so it serves as a high-density single source of truth for AI coding assistants.

Today's date: {today}

# OBJECTIVE
Analyze the provided input (git diffs, file structures, or the current memory) and update `{filename}` to reflect the current state of the project.

# THE MEMORY SCHEMA (strict)
The document must contain these sections, in this order:
1. ## Project Soul: two sentences on what this project is and who it is for.
2. ## Tech Stack: core libraries, frameworks and versions.
3. ## Architecture: high-level overview of how data flows.
4. ## Core Rules: critical conventions every contributor must follow.
5. ## Recent Decisions (The "Why"): the latest major changes and why they happened, newest first.
6. ## Active Tech Debt: known bugs and next steps.

# DENSITY RULES
- NEVER list individual file changes (e.g. "Modified app.py").
- ALWAYS describe the intent (e.g. "Reworked auth flow to support multi-tenancy").
- Ignore purely cosmetic changes (formatting, linting, comments).
- If the new input contradicts the current memory, prefer the new input and note the superseded decision.
- Keep the whole document under {word_cap} words; compress the oldest Recent Decisions first.

# OUTPUT FORMAT
Return the complete, updated Markdown for `{filename}`. No conversational filler."""

INCREMENTAL_TEMPLATE = """Current Memory:
{memory}

New Diff:
{diff}
{notes}
Task: Update the memory to reflect these changes. Make sure Recent Decisions records them (dated {today}) and prune Active Tech Debt items the changes resolve."""

INITIAL_TEMPLATE = """New Diff:
{diff}
{notes}
Task: Create {filename} from this diff. Use today's date ({today}) for new entries."""

CHUNK_LABEL = "Chunk {index}/{total}, covering: {groups}"

AGGREGATE_TEMPLATE = """Several updated versions of {filename} were produced from consecutive parts of one large diff. Merge them into a single coherent document.

{summaries}

Task: Produce one unified {filename} that keeps every required section exactly once and combines the information from all versions. Later versions win where they contradict earlier ones."""

STRUCTURE_TEMPLATE = """File Structure:
```
{tree}
```
{readme}{milestones}
Task: Analyze the file structure{sources} to infer:
1. Project Soul (two sentences: what this project is and who it is for)
2. Tech Stack (core libraries, frameworks, versions)
3. Architecture (high-level data flow)
4. Core Rules (if detectable)

Create a complete {filename} with all required sections. Use today's date ({today}) for any dated entries."""

CONFLICT_SYSTEM = (
    "You are a git conflict resolution expert specializing in Markdown files "
    "about software architecture."
)

CONFLICT_TEMPLATE = """# TASK
Merge the following conflicted {filename}. It contains git conflict markers (<<<<<<<, =======, >>>>>>>).

# INSTRUCTIONS
1. Remove every conflict marker.
2. Merge the conflicting sections, preserving important information from both sides.
3. Keep the required structure:
{sections}
4. Preserve all Recent Decisions entries from both sides.
5. Keep the file under {word_cap} words.

# CONFLICTED FILE
{text}

# OUTPUT
Return only the merged Markdown, no explanations."""

LEGACY_SYSTEM = (
    "You are an expert at summarizing technical decisions. You create concise, "
    "high-density summaries that preserve architectural intent."
)

LEGACY_TEMPLATE = """Summarize these {count} technical decisions into {bullets} concise bullet points for a section called 'Legacy Context'. Each bullet should capture the essential architectural or design decision, not individual file changes.

Decisions to summarize:
{entries}

Requirements:
- Output exactly {bullets} bullet points
- Each bullet should start with "- "
- Focus on architectural intent and "why" decisions were made
- Keep each bullet concise (1-2 sentences max)
- Use today's date ({today}) for any date references

Output only the {bullets} bullet points, no additional text."""

_FENCE_RE = re.compile(r"^\s*```[a-zA-Z]*\s*\n(.*)\n\s*```\s*$", re.DOTALL)


def strip_code_fence(text: str) -> str:
    """Unwrap output the generator wrapped in a single Markdown code fence."""
    match = _FENCE_RE.match(text.strip())
    return match.group(1).strip() if match else text.strip()


# ---------------------------------------------------------------------------
# Summarizer
# ---------------------------------------------------------------------------


class Summarizer:
    """Generator-backed document updates.

    Parameters
    ----------
    generator : Generator
        Any ``(prompt, system, options) -> str`` callable; usually the
        retrying generator from ``Config.get_generator()``.
    token_budget : int
        Context budget used for sizing decisions.
    max_output_tokens : int
        Output cap passed to every call.
    temperature : float
        Temperature for update calls.
    soft_word_cap : int
        Word cap quoted to the generator.
    filename : str
        Memory document name quoted in prompts.
    """

    def __init__(
        self,
        generator: Generator,
        token_budget: int = 50_000,
        max_output_tokens: int = 8192,
        temperature: float = 0.3,
        soft_word_cap: int = 1500,
        filename: str = "PROJECT_MEMORY.md",
    ) -> None:
        self.generator = generator
        self.token_budget = token_budget
        self.max_output_tokens = max_output_tokens
        self.temperature = temperature
        self.soft_word_cap = soft_word_cap
        self.filename = filename

    @classmethod
    def from_config(cls, config: "Config", generator: Generator) -> "Summarizer":
        return cls(
            generator,
            token_budget=config.token_budget,
            max_output_tokens=config.max_output_tokens,
            temperature=config.temperature,
            soft_word_cap=config.soft_word_cap,
            filename=config.memory_filename,
        )

    # ------------------------------------------------------------------
    # Incremental update
    # ------------------------------------------------------------------

    def update(
        self,
        diff: Union[Diff, str],
        current_memory: str = "",
        thinking_level: str = FLASH,
        commit_notes: Optional[Sequence[str]] = None,
    ) -> str:
        """Fold *diff* into *current_memory* and return the new document.

        Raises ``GenerationError`` if the generator fails and
        ``ValueError`` if *diff* is empty.
        """
        if isinstance(diff, str):
            diff = Diff.parse(diff)
        if diff.is_empty():
            raise ValueError("Nothing to summarize: diff is empty")

        diff_text = diff.render()
        total = estimate_tokens(diff_text) + estimate_tokens(current_memory)

        if total < self.token_budget * SINGLE_CALL_RATIO:
            prompt = self._update_prompt(current_memory, diff_text, commit_notes)
            return self._generate(prompt, thinking_level, feature="update")

        chunks = chunk_diff(diff, self.token_budget)
        log.info(
            "Diff of ~%d tokens exceeds the single-call limit; %d chunk(s)",
            total,
            len(chunks),
            extra={"chunks": len(chunks)},
        )

        running = current_memory
        outputs: List[str] = []
        for index, chunk in enumerate(chunks, start=1):
            label = CHUNK_LABEL.format(
                index=index, total=len(chunks), groups=", ".join(chunk.groups)
            )
            prompt = self._update_prompt(
                running, f"{label}\n{chunk.text}", commit_notes if index == 1 else None
            )
            running = self._generate(prompt, thinking_level, feature="update-chunk")
            outputs.append(running)

        if len(outputs) == 1:
            return outputs[0]
        return self.combine(outputs)

    def _update_prompt(
        self, memory: str, diff_text: str, commit_notes: Optional[Sequence[str]]
    ) -> str:
        notes = ""
        if commit_notes:
            notes = "\nCommit messages (author intent):\n" + "\n".join(
                f"- {note}" for note in commit_notes
            ) + "\n"
        if memory.strip():
            return INCREMENTAL_TEMPLATE.format(
                memory=memory, diff=diff_text, notes=notes, today=today()
            )
        return INITIAL_TEMPLATE.format(
            diff=diff_text, notes=notes, filename=self.filename, today=today()
        )

    def combine(self, outputs: List[str]) -> str:
        """Merge several versions of the document into one (one generator call)."""
        summaries = "\n\n".join(
            f"=== Version {i} ===\n{text}" for i, text in enumerate(outputs, start=1)
        )
        prompt = AGGREGATE_TEMPLATE.format(filename=self.filename, summaries=summaries)
        return self._generate(prompt, FLASH, feature="merge")

    # ------------------------------------------------------------------
    # Cold start
    # ------------------------------------------------------------------

    def infer_from_structure(
        self,
        file_tree: str,
        readme: Optional[str] = None,
        milestones: Optional[Sequence[OnelineCommit]] = None,
        thinking_level: str = PRO,
    ) -> str:
        """Build a complete document from the project layout alone."""
        readme_block = f"README:\n```\n{readme}\n```\n\n" if readme else ""
        milestone_block = ""
        if milestones:
            lines = "\n".join(f"- {c.date[:10]} {c.message}" for c in milestones)
            milestone_block = f"Milestone commits:\n{lines}\n"

        sources = []
        if readme:
            sources.append("README")
        if milestones:
            sources.append("milestone commits")
        prompt = STRUCTURE_TEMPLATE.format(
            tree=file_tree or "(empty)",
            readme=readme_block,
            milestones=milestone_block,
            sources="".join(f" and {s}" for s in sources),
            filename=self.filename,
            today=today(),
        )
        return self._generate(prompt, thinking_level, feature="infer")

    # ------------------------------------------------------------------
    # Conflict merge
    # ------------------------------------------------------------------

    def merge_conflict_markers(self, conflicted_text: str) -> str:
        """Resolve git conflict markers in the document.

        Not retried on a bad result: residual markers or a missing
        required section raise ``ConflictResolutionError``.
        """
        sections = "\n".join(f"   - ## {name}" for name in REQUIRED_SECTIONS)
        prompt = CONFLICT_TEMPLATE.format(
            filename=self.filename,
            sections=sections,
            word_cap=self.soft_word_cap,
            text=conflicted_text,
        )
        options = GenerationOptions(
            thinking_level=FLASH,
            max_tokens=self.max_output_tokens,
            temperature=MERGE_TEMPERATURE,
            feature="conflict-merge",
        )
        merged = strip_code_fence(self.generator(prompt, CONFLICT_SYSTEM, options))

        if ChangesetSource.has_conflict_markers(merged):
            raise ConflictResolutionError(
                "Conflict resolution failed: merged content still contains conflict markers"
            )
        missing = MemoryDocument.parse(merged).missing_sections()
        if missing:
            raise ConflictResolutionError(
                "Conflict resolution dropped required sections: " + ", ".join(missing)
            )
        return merged

    # ------------------------------------------------------------------
    # Legacy context
    # ------------------------------------------------------------------

    def summarize_legacy(self, entries: Sequence[str], bullets: int = 3) -> List[str]:
        """Condense old Recent Decisions entries into at most *bullets* lines.

        Every returned line starts with ``"- "``.
        """
        prompt = LEGACY_TEMPLATE.format(
            count=len(entries),
            bullets=bullets,
            entries="\n\n".join(entry.strip() for entry in entries),
            today=today(),
        )
        options = GenerationOptions(
            thinking_level=PRO,
            max_tokens=self.max_output_tokens,
            temperature=self.temperature,
            feature="legacy",
        )
        text = strip_code_fence(self.generator(prompt, LEGACY_SYSTEM, options))
        lines = []
        for line in text.splitlines():
            line = re.sub(r"^[-*+]\s+", "", line.strip())
            if line:
                lines.append(f"- {line}")
        return lines[:bullets]

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------

    def system_prompt(self) -> str:
        return LIBRARIAN_SYSTEM.format(
            filename=self.filename, today=today(), word_cap=f"{self.soft_word_cap:,}"
        )

    def _generate(self, prompt: str, thinking_level: str, feature: str) -> str:
        options = GenerationOptions(
            thinking_level=thinking_level,
            max_tokens=self.max_output_tokens,
            temperature=self.temperature,
            feature=feature,
        )
        log.debug("Generating (%s, %s): %d prompt chars", feature, thinking_level, len(prompt))
        return strip_code_fence(self.generator(prompt, self.system_prompt(), options))

