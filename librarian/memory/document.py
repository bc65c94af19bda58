"""
librarian.memory.document -- Structured view of the memory document.

The Markdown text is parsed once into a preamble and an ordered list of
level-two sections (``## Header`` plus body lines).  Validation,
appending and compaction all work on that structure, and ``render()``
joins it back together; an untouched document renders byte-for-byte
identical to its input.

Header matching ignores case, surrounding whitespace and a decorative
suffix in parentheses, so ``## Recent Decisions (The "Why")`` is the
"Recent Decisions" section.  Lines inside fenced code blocks are never
treated as headers.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import List, Optional

from librarian.core.tokens import count_words

#: Required sections, in canonical order.
REQUIRED_SECTIONS = (
    "Project Soul",
    "Tech Stack",
    "Architecture",
    "Core Rules",
    "Recent Decisions",
    "Active Tech Debt",
)

RECENT_DECISIONS = "Recent Decisions"

#: Recent Decisions entries are either ``###`` headings (each owning the
#: bullets beneath it) or, when the section has no such headings,
#: top-level list items and bold lead-ins.  Indented lines continue the
#: entry.
_HEADING_ENTRY_RE = re.compile(r"^###\s")
_ITEM_ENTRY_RE = re.compile(r"^([-*+]\s+|\d+[.)]\s+|\*\*)")

_HEADER_RE = re.compile(r"^##\s+(.+?)\s*$")
_FENCE_RE = re.compile(r"^\s*(```|~~~)")


def section_key(name: str) -> str:
    """Normalize a header or section name for comparison."""
    name = re.sub(r"^#+\s*", "", name.strip())
    name = name.split("(", 1)[0]
    return " ".join(name.split()).rstrip(":").lower()


@dataclass
class Section:
    header: str
    body: List[str] = field(default_factory=list)

    @property
    def key(self) -> str:
        return section_key(self.header)

    @property
    def title(self) -> str:
        match = _HEADER_RE.match(self.header)
        return match.group(1) if match else self.header


@dataclass
class MemoryDocument:
    """Preamble lines plus ordered ``(header, body)`` sections."""

    preamble: List[str] = field(default_factory=list)
    sections: List[Section] = field(default_factory=list)

    # ------------------------------------------------------------------
    # Parsing / rendering
    # ------------------------------------------------------------------

    @classmethod
    def parse(cls, text: str) -> "MemoryDocument":
        doc = cls()
        if not text:
            return doc
        in_fence = False
        current: Optional[Section] = None
        for line in text.split("\n"):
            if _FENCE_RE.match(line):
                in_fence = not in_fence
            elif not in_fence and _HEADER_RE.match(line):
                current = Section(header=line)
                doc.sections.append(current)
                continue
            if current is None:
                doc.preamble.append(line)
            else:
                current.body.append(line)
        return doc

    @classmethod
    def skeleton(cls, title: str = "PROJECT_MEMORY") -> "MemoryDocument":
        """A minimal valid document with every required section."""
        doc = cls(preamble=[f"# {title}", ""])
        for name in REQUIRED_SECTIONS:
            doc.sections.append(Section(header=f"## {name}", body=["", "_None recorded yet._", ""]))
        return doc

    def render(self) -> str:
        lines = list(self.preamble)
        for section in self.sections:
            lines.append(section.header)
            lines.extend(section.body)
        return "\n".join(lines)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def find(self, name: str) -> Optional[Section]:
        key = section_key(name)
        for section in self.sections:
            if section.key == key:
                return section
        return None

    def missing_sections(self) -> List[str]:
        present = {section.key for section in self.sections}
        return [name for name in REQUIRED_SECTIONS if section_key(name) not in present]

    def is_empty(self) -> bool:
        return not self.render().strip()

    def is_valid(self) -> bool:
        return not self.is_empty() and not self.missing_sections()

    def word_count(self) -> int:
        return count_words(self.render())

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def append_to_section(self, name: str, content: str) -> None:
        """Insert *content* beneath the *name* header, or add the section at the end."""
        content_lines = content.strip().split("\n") if content.strip() else []
        section = self.find(name)

        if section is None:
            title = re.sub(r"^#+\s*", "", name.strip())
            if self.sections and self.sections[-1].body and self.sections[-1].body[-1].strip():
                self.sections[-1].body.append("")
            elif not self.sections and self.preamble and self.preamble[-1].strip():
                self.preamble.append("")
            self.sections.append(Section(header=f"## {title}", body=[""] + content_lines + [""]))
            return

        # Skip blank lines directly after the header
        insert_at = 0
        while insert_at < len(section.body) and not section.body[insert_at].strip():
            insert_at += 1
        if insert_at == 0:
            content_lines = [""] + content_lines
        section.body[insert_at:insert_at] = content_lines + [""]

    def decision_entries(self) -> List[List[str]]:
        section = self.find(RECENT_DECISIONS)
        if section is None:
            return []
        _, entries, _ = _split_entries(section.body)
        return entries

    def compact(self, keep: int = 5) -> bool:
        """Keep the newest *keep* Recent Decisions entries (the first ones).

        Returns True if entries were dropped.
        """
        section = self.find(RECENT_DECISIONS)
        if section is None:
            return False
        intro, entries, trailing = _split_entries(section.body)
        if len(entries) <= keep:
            return False
        section.body = _join_entries(intro, entries[:keep], trailing)
        return True

    def remove_oldest_decisions(self, count: int) -> List[List[str]]:
        """Drop the last *count* Recent Decisions entries and return them."""
        section = self.find(RECENT_DECISIONS)
        if section is None or count <= 0:
            return []
        intro, entries, trailing = _split_entries(section.body)
        if not entries:
            return []
        cut = max(len(entries) - count, 0)
        section.body = _join_entries(intro, entries[:cut], trailing)
        return entries[cut:]


def _join_entries(intro: List[str], entries: List[List[str]], trailing: List[str]) -> List[str]:
    body = list(intro)
    for entry in entries:
        body.extend(entry)
    while body and not body[-1].strip():
        body.pop()
    body.extend(trailing or [""])
    return body


def _unfenced(lines: List[str]):
    """Yield ``(line, in_fence)`` pairs; fence delimiters count as fenced."""
    in_fence = False
    for line in lines:
        if _FENCE_RE.match(line):
            in_fence = not in_fence
            yield line, True
        else:
            yield line, in_fence


def _split_entries(body: List[str]):
    """Split a section body into intro lines, entries, and trailing blanks."""
    end = len(body)
    while end > 0 and not body[end - 1].strip():
        end -= 1
    trailing = body[end:]
    content = body[:end]

    has_headings = any(
        _HEADING_ENTRY_RE.match(line) for line, fenced in _unfenced(content) if not fenced
    )
    start_re = _HEADING_ENTRY_RE if has_headings else _ITEM_ENTRY_RE

    intro: List[str] = []
    entries: List[List[str]] = []
    for line, fenced in _unfenced(content):
        if not fenced and start_re.match(line):
            entries.append([line])
        elif entries:
            entries[-1].append(line)
        else:
            intro.append(line)
    return intro, entries, trailing
