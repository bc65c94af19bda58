"""Diff parsing, noise filtering and chunking."""

from librarian.diff.chunker import Chunk, chunk_diff
from librarian.diff.filter import IgnorePolicy, NoiseFilter
from librarian.diff.model import Diff, FileSection

__all__ = ["Chunk", "Diff", "FileSection", "IgnorePolicy", "NoiseFilter", "chunk_diff"]
