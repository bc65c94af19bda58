"""
librarian.diff.chunker -- Split an oversized diff into bounded chunks.

Sections are grouped by a coarse directory key (the first one or two
path segments) so that related files land in the same generator call.
A chunk is flushed before it would exceed 80% of the token budget; a
single section above 70% of the budget always gets a chunk of its own.
A file's hunks are never split across chunks.

Chunks preserve section order: concatenating ``chunk.sections`` over
all chunks yields the input sections exactly once, in the same order.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import PurePosixPath
from typing import List, Tuple

from librarian.core.tokens import estimate_tokens, tokens_for_chars
from librarian.diff.model import Diff, FileSection

log = logging.getLogger(__name__)

#: Chunks are flushed before exceeding this share of the budget.
CHUNK_FILL_RATIO = 0.8
#: Sections above this share of the budget get a dedicated chunk.
OVERSIZE_RATIO = 0.7

ROOT_GROUP = "root"


def group_key(path: str) -> str:
    """Directory key: first two directory segments, ``root`` for top-level files."""
    parts = PurePosixPath(path).parts
    dirs = parts[: min(2, len(parts) - 1)]
    return "/".join(dirs) if dirs else ROOT_GROUP


@dataclass
class Chunk:
    """A contiguous run of file sections with their group headers."""

    entries: List[Tuple[str, FileSection]] = field(default_factory=list)

    @property
    def sections(self) -> List[FileSection]:
        return [section for _, section in self.entries]

    @property
    def groups(self) -> List[str]:
        seen: List[str] = []
        for key, _ in self.entries:
            if key not in seen:
                seen.append(key)
        return seen

    @property
    def text(self) -> str:
        return render_entries(self.entries)

    @property
    def estimated_tokens(self) -> int:
        return estimate_tokens(self.text)

    @property
    def oversized(self) -> bool:
        return len(self.entries) == 1

    def to_diff(self) -> Diff:
        return Diff.concat(self.sections)


def group_header(key: str) -> str:
    return f"## Changes in {key}\n"


def render_entries(entries: List[Tuple[str, FileSection]]) -> str:
    parts: List[str] = []
    previous = None
    for key, section in entries:
        if key != previous:
            parts.append(group_header(key))
            previous = key
        parts.append(section.text)
    return "".join(parts)


def chunk_diff(diff: Diff, token_budget: int) -> List[Chunk]:
    """Partition *diff* into chunks sized for *token_budget*.

    Returns an empty list for an empty diff.
    """
    if token_budget <= 0:
        raise ValueError(f"token_budget must be positive, got {token_budget}")

    fill_limit = token_budget * CHUNK_FILL_RATIO
    oversize_limit = token_budget * OVERSIZE_RATIO

    chunks: List[Chunk] = []
    current: List[Tuple[str, FileSection]] = []
    # Rendered length of ``current``, headers included
    current_chars = 0

    def flush() -> None:
        nonlocal current, current_chars
        if current:
            chunks.append(Chunk(entries=current))
            current = []
            current_chars = 0

    for section in diff.sections:
        key = group_key(section.path)
        entry = (key, section)

        if estimate_tokens(section.text) > oversize_limit:
            flush()
            chunks.append(Chunk(entries=[entry]))
            continue

        added = len(section.text)
        if not current or current[-1][0] != key:
            added += len(group_header(key))
        if current and tokens_for_chars(current_chars + added) > fill_limit:
            flush()
            added = len(group_header(key)) + len(section.text)
        current.append(entry)
        current_chars += added

    flush()

    log.debug(
        "Chunked %d section(s) into %d chunk(s) for budget %d",
        len(diff.sections),
        len(chunks),
        token_budget,
    )
    return chunks
