"""The project memory document: structure and persistence."""

from librarian.memory.document import REQUIRED_SECTIONS, MemoryDocument, Section
from librarian.memory.store import MemoryStore

__all__ = ["REQUIRED_SECTIONS", "MemoryDocument", "MemoryStore", "Section"]
