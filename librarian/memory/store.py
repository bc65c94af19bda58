"""
librarian.memory.store -- Owns the memory document on disk.

Every write passes the same gate: schema validation (a document missing
a required section is rejected before the file is touched), compaction
when over the soft word cap, atomic replace, then ``git add``.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING, List, Optional

from librarian.core.errors import ConflictResolutionError, MemorySchemaError
from librarian.core.fileio import atomic_write_text
from librarian.memory.document import RECENT_DECISIONS, MemoryDocument
from librarian.vcs.source import ChangesetSource

if TYPE_CHECKING:
    from librarian.core.config import Config
    from librarian.summarizer import Summarizer

log = logging.getLogger(__name__)


class MemoryStore:
    """Read, validate, compact, write and stage the memory document.

    Parameters
    ----------
    path : Path
        Location of the memory document.
    source : ChangesetSource, optional
        Used to stage the document after each write.  Without one the
        file is written but not staged.
    summarizer : Summarizer, optional
        Resolves conflict markers found on read.
    soft_word_cap : int
        Word count above which ``compact`` trims Recent Decisions.
    keep_recent_decisions : int
        Entries kept by compaction.
    """

    def __init__(
        self,
        path: Path,
        source: Optional[ChangesetSource] = None,
        summarizer: Optional["Summarizer"] = None,
        soft_word_cap: int = 1500,
        keep_recent_decisions: int = 5,
    ) -> None:
        self.path = Path(path)
        self.source = source
        self.summarizer = summarizer
        self.soft_word_cap = soft_word_cap
        self.keep_recent_decisions = keep_recent_decisions

    @classmethod
    def from_config(
        cls,
        config: "Config",
        source: Optional[ChangesetSource] = None,
        summarizer: Optional["Summarizer"] = None,
    ) -> "MemoryStore":
        return cls(
            config.memory_path,
            source=source,
            summarizer=summarizer,
            soft_word_cap=config.soft_word_cap,
            keep_recent_decisions=config.keep_recent_decisions,
        )

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    def exists(self) -> bool:
        return self.path.exists()

    def read_raw(self) -> str:
        """File contents as-is; empty string if the document doesn't exist."""
        try:
            return self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return ""

    def read(self) -> str:
        """Current document, with conflict markers merged away.

        The merged text is returned, not persisted; the next ``write``
        stores it.
        """
        text = self.read_raw()
        if text and ChangesetSource.has_conflict_markers(text):
            log.warning("Conflict markers found in %s; merging", self.path.name)
            if self.summarizer is None:
                raise ConflictResolutionError(
                    f"{self.path.name} contains conflict markers and no summarizer "
                    "is available to merge them"
                )
            merged = self.summarizer.merge_conflict_markers(text)
            if not self.validate(merged):
                raise ConflictResolutionError(
                    "Merged document is missing required sections: "
                    + ", ".join(self.missing_sections(merged))
                )
            return merged
        return text

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    @staticmethod
    def validate(text: str) -> bool:
        return MemoryDocument.parse(text).is_valid()

    @staticmethod
    def missing_sections(text: str) -> List[str]:
        return MemoryDocument.parse(text).missing_sections()

    # ------------------------------------------------------------------
    # Write
    # ------------------------------------------------------------------

    def write(self, text: str) -> None:
        """Validate, compact, atomically replace and stage.

        Raises ``MemorySchemaError`` without touching the file if *text*
        is empty or lacks a required section.
        """
        doc = MemoryDocument.parse(text)
        if doc.is_empty():
            raise MemorySchemaError([])
        missing = doc.missing_sections()
        if missing:
            raise MemorySchemaError(missing)

        text = self.compact(text)
        if not text.endswith("\n"):
            text += "\n"

        atomic_write_text(self.path, text)
        log.info("Wrote %s (%d words)", self.path.name, len(text.split()))

        if self.source is not None:
            self.source.stage(self.path)

    def append_to_section(self, section_name: str, content: str) -> None:
        """Insert *content* beneath *section_name*, creating the section if absent.

        An empty or missing document starts from a skeleton holding
        every required section.
        """
        current = self.read()
        doc = MemoryDocument.parse(current) if current.strip() else MemoryDocument.skeleton()
        doc.append_to_section(section_name, content)
        self.write(doc.render())

    # ------------------------------------------------------------------
    # Compaction
    # ------------------------------------------------------------------

    def compact(self, text: str) -> str:
        """Trim Recent Decisions to the newest entries if over the word cap."""
        doc = MemoryDocument.parse(text)
        words = doc.word_count()
        if words <= self.soft_word_cap:
            return text

        if not doc.compact(self.keep_recent_decisions):
            log.warning(
                "%s is %d words (cap %d) but %s has nothing left to drop",
                self.path.name,
                words,
                self.soft_word_cap,
                RECENT_DECISIONS,
            )
            return text

        compacted = doc.render()
        log.info(
            "Compacted %s from %d to %d words",
            self.path.name,
            words,
            doc.word_count(),
        )
        return compacted
