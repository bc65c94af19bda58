"""
Librarian -- MCP server exposing the memory document as tools.

Run with:
    librarian serve --repo /path/to/repo

Or configure in your MCP client as:
    {
        "mcpServers": {
            "librarian": {
                "command": "librarian",
                "args": ["--repo", "/path/to/repo", "serve"]
            }
        }
    }

Tools exposed:
    read_project_memory    -- Full text of the memory document
    update_project_memory  -- Append to a section (old decisions fold into Legacy Context)
    get_core_context       -- Contents of the files listed under ``## Pinned Files``
"""

from __future__ import annotations

import logging
import traceback
from pathlib import Path
from typing import Any, List, Optional, Tuple

from mcp.server.fastmcp import FastMCP

from librarian.core.config import Config
from librarian.core.errors import GenerationError
from librarian.core.types import Generator
from librarian.memory.document import RECENT_DECISIONS, MemoryDocument, section_key
from librarian.memory.store import MemoryStore
from librarian.summarizer import Summarizer
from librarian.vcs.source import ChangesetSource

log = logging.getLogger("librarian.server")

# ---------------------------------------------------------------------------
# Constants / validation
# ---------------------------------------------------------------------------

#: Maximum byte length for text inputs (100 KB).
MAX_INPUT_BYTES = 100_000

#: More Recent Decisions entries than this triggers a legacy fold.
LEGACY_THRESHOLD = 15
#: Oldest entries folded per pass, and the bullets they become.
LEGACY_BATCH = 10
LEGACY_BULLETS = 3
LEGACY_SECTION = "Legacy Context"

PINNED_SECTION = "Pinned Files"
#: Manifests pinned by default when present, after the memory document.
DEFAULT_PINNED_MANIFESTS = ("pyproject.toml", "package.json")
DIAGRAM_FILENAME = "DIAGRAM.md"

EMPTY_MEMORY_MESSAGE = (
    "{filename} is empty or does not exist. Run `librarian init` to create it."
)


def _validate_length(text: str, name: str) -> str:
    """Raise ValueError if *text* exceeds MAX_INPUT_BYTES."""
    if len(text.encode("utf-8", errors="replace")) > MAX_INPUT_BYTES:
        raise ValueError(
            f"'{name}' exceeds maximum length ({MAX_INPUT_BYTES} bytes). "
            f"Truncate or summarise the input."
        )
    return text


def parse_pinned_files(doc: MemoryDocument) -> Optional[List[str]]:
    """Paths listed under ``## Pinned Files``; None if the section is absent."""
    section = doc.find(PINNED_SECTION)
    if section is None:
        return None
    paths = []
    for line in section.body:
        path = line.strip()
        if path.startswith(("- ", "* ")):
            path = path[2:].strip()
        path = path.strip("`")
        if path:
            paths.append(path)
    return paths


# ---------------------------------------------------------------------------
# Memory service
# ---------------------------------------------------------------------------


class MemoryService:
    """The operations behind the MCP tools, bound to one repository."""

    def __init__(self, config: Config, store: MemoryStore, summarizer: Summarizer) -> None:
        self.config = config
        self.store = store
        self.summarizer = summarizer

    @classmethod
    def from_config(
        cls, config: Config, generator: Optional[Generator] = None
    ) -> "MemoryService":
        if generator is None:
            from librarian.generation.usage import UsageLedger

            generator = config.get_generator(UsageLedger(config.usage_path))
        source = ChangesetSource(config.repo_path)
        summarizer = Summarizer.from_config(config, generator)
        store = MemoryStore.from_config(config, source=source, summarizer=summarizer)
        return cls(config, store, summarizer)

    @property
    def repo_path(self) -> Path:
        return self.config.repo_path

    def read_memory(self) -> str:
        text = self.store.read()
        if not text.strip():
            return EMPTY_MEMORY_MESSAGE.format(filename=self.config.memory_filename)
        return text

    def update_memory(self, section: str, content: str) -> str:
        if not section.strip():
            raise ValueError("section is required")
        if not content.strip():
            raise ValueError("content is required")
        _validate_length(content, "content")

        if section_key(section) == section_key(RECENT_DECISIONS):
            self.fold_legacy_decisions()
        self.store.append_to_section(section, content)
        return f"Project Memory updated successfully. Content appended to section: {section}"

    def fold_legacy_decisions(self) -> bool:
        """Summarize the oldest decisions into Legacy Context once there are too many.

        Returns True if the document was rewritten.  A generator failure
        is logged and leaves the document as it was.
        """
        text = self.store.read()
        if not text.strip():
            return False
        doc = MemoryDocument.parse(text)
        if len(doc.decision_entries()) <= LEGACY_THRESHOLD:
            return False

        log.info("Folding %d old decisions into %s", LEGACY_BATCH, LEGACY_SECTION)
        removed = doc.remove_oldest_decisions(LEGACY_BATCH)
        try:
            bullets = self.summarizer.summarize_legacy(
                ["\n".join(entry) for entry in removed], bullets=LEGACY_BULLETS
            )
        except GenerationError as exc:
            log.warning("Legacy summary failed, keeping all decisions: %s", exc)
            return False
        if not bullets:
            log.warning("Legacy summary was empty, keeping all decisions")
            return False

        doc.append_to_section(LEGACY_SECTION, "\n".join(bullets))
        self.store.write(doc.render())
        return True

    def core_context(self) -> str:
        text = self.store.read()
        if not text.strip():
            raise ValueError(EMPTY_MEMORY_MESSAGE.format(filename=self.config.memory_filename))

        paths = parse_pinned_files(MemoryDocument.parse(text))
        if paths is None:
            defaults = self.default_pinned()
            self.store.append_to_section(PINNED_SECTION, "\n".join(defaults))
            paths = defaults
        if not paths:
            paths = self.default_pinned()

        parts = ["# Pinned Project Context", ""]
        diagram = self.repo_path / DIAGRAM_FILENAME
        if diagram.is_file():
            parts += ["## Architecture Diagram", "", diagram.read_text(encoding="utf-8"), "", "---", ""]

        errors = []
        for rel in paths:
            content, error = self._read_pinned(rel)
            if error is not None:
                errors.append(error)
            if content is not None:
                parts += [f"## File: {rel}", "", content, ""]

        if errors:
            parts += ["---", "", "## Errors", ""]
            parts += [f"- {error}" for error in errors]
        return "\n".join(parts)

    def default_pinned(self) -> List[str]:
        paths = [self.config.memory_filename]
        paths += [name for name in DEFAULT_PINNED_MANIFESTS if (self.repo_path / name).is_file()]
        return paths

    def _read_pinned(self, rel: str) -> Tuple[Optional[str], Optional[str]]:
        """``(content, error)`` for one pinned path; content is a note when missing."""
        path = (self.repo_path / rel).resolve()
        try:
            path.relative_to(self.repo_path)
        except ValueError:
            return None, f"Outside the repository: {rel}"
        try:
            return path.read_text(encoding="utf-8"), None
        except FileNotFoundError:
            return f"*File not found: {rel}*", f"File not found: {rel}"
        except (OSError, UnicodeDecodeError) as exc:
            return None, f"Error reading {rel}: {exc}"


# ---------------------------------------------------------------------------
# Error-safe tool decorator
# ---------------------------------------------------------------------------


def _safe_text(fn):
    """Wrap an MCP tool so exceptions return an error message instead of crashing."""

    def wrapper(*args: Any, **kwargs: Any) -> str:
        try:
            return fn(*args, **kwargs)
        except Exception as exc:
            tool_name = getattr(fn, "__name__", "unknown")
            log.error("Tool %s failed: %s\n%s", tool_name, exc, traceback.format_exc())
            return f"Error in {tool_name}: {exc}"

    wrapper.__name__ = fn.__name__
    wrapper.__qualname__ = fn.__qualname__
    wrapper.__doc__ = fn.__doc__
    wrapper.__annotations__ = fn.__annotations__
    wrapper.__module__ = fn.__module__
    wrapper.__wrapped__ = fn  # type: ignore[attr-defined]
    return wrapper


# ---------------------------------------------------------------------------
# Server singleton
# ---------------------------------------------------------------------------

mcp = FastMCP(
    "Librarian",
    instructions="Project memory for AI coding assistants: architecture, tech stack and recent decisions.",
)

_service: Optional[MemoryService] = None


def init_service(
    repo_path: str | Path = ".",
    config: Optional[Config] = None,
    generator: Optional[Generator] = None,
) -> MemoryService:
    """Initialize the global MemoryService instance."""
    global _service
    if config is None:
        config = Config.load(Path(repo_path))
    _service = MemoryService.from_config(config, generator=generator)
    return _service


def _get_service() -> MemoryService:
    global _service
    if _service is None:
        _service = init_service()
    return _service


# ===========================================================================
# Tools
# ===========================================================================


@mcp.tool()
@_safe_text
def read_project_memory() -> str:
    """Read PROJECT_MEMORY.md to refresh knowledge of the project's
    architecture, tech stack, and recent decisions.

    Returns the complete content of the memory file.
    """
    return _get_service().read_memory()


@mcp.tool()
@_safe_text
def update_project_memory(section: str, content: str) -> str:
    """Append content beneath a section of PROJECT_MEMORY.md.

    Args:
        section: Section name, e.g. "Recent Decisions" or "Active Tech Debt".
            Matches headers like "## Recent Decisions (The "Why")". A
            section that doesn't exist is added at the end.
        content: Markdown to insert at the top of the section.

    Adding to Recent Decisions when it holds more than 15 entries first
    condenses the 10 oldest into a "Legacy Context" section.  The file is
    written atomically and staged in git.
    """
    return _get_service().update_memory(section, content)


@mcp.tool()
@_safe_text
def get_core_context() -> str:
    """Return the contents of the files listed under '## Pinned Files'.

    If the section doesn't exist it is created with the memory document
    and the project manifest.  DIAGRAM.md is included first when present.
    """
    return _get_service().core_context()


# ===========================================================================
# Entry point
# ===========================================================================


def run_server(
    repo_path: str | Path = ".",
    config: Optional[Config] = None,
    transport: str = "stdio",
) -> None:
    """Initialize the service and run the MCP server until the client disconnects."""
    service = init_service(repo_path, config=config)
    log.info(
        "Starting Librarian MCP server for %s (transport=%s)", service.repo_path, transport
    )
    mcp.run(transport=transport)  # type: ignore[arg-type]
