"""
librarian.diff.model -- Unified diff as an ordered list of file sections.

The text is split once at ``diff --git`` boundaries; rendering the
sections back concatenates their raw text, so ``Diff.parse(t).render()``
returns ``t`` unchanged.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Iterator, List, Optional

_HEADER_RE = re.compile(r"^diff --git a/(.+?) b/(.+?)\s*$")

#: Header lines that mark a structural change rather than a content edit.
STRUCTURAL_PREFIXES = (
    "new file mode",
    "deleted file mode",
    "rename from",
    "rename to",
    "copy from",
    "copy to",
    "old mode",
    "new mode",
)


def _unquote(path: str) -> str:
    path = path.strip()
    if len(path) >= 2 and path[0] == '"' and path[-1] == '"':
        path = path[1:-1]
    return path


def _strip_prefix(path: str, prefix: str) -> Optional[str]:
    path = _unquote(path)
    if path == "/dev/null":
        return None
    if path.startswith(prefix):
        return path[len(prefix):]
    return path


@dataclass
class FileSection:
    """One file's header plus hunks, exactly as git printed them."""

    path: str
    text: str
    old_path: Optional[str] = None

    @property
    def lines(self) -> List[str]:
        return self.text.splitlines()

    @property
    def header_lines(self) -> List[str]:
        """Lines before the first hunk (``diff --git``, index, mode, ---/+++)."""
        out = []
        for line in self.lines:
            if line.startswith("@@"):
                break
            out.append(line)
        return out

    @property
    def body_lines(self) -> List[str]:
        """Hunk headers and hunk lines."""
        lines = self.lines
        for i, line in enumerate(lines):
            if line.startswith("@@"):
                return lines[i:]
        return []

    @property
    def has_hunks(self) -> bool:
        return any(line.startswith("@@") for line in self.lines)

    @property
    def is_structural(self) -> bool:
        """True for new, deleted, renamed, copied or mode-changed files."""
        return any(line.startswith(STRUCTURAL_PREFIXES) for line in self.header_lines)

    @property
    def is_renamed(self) -> bool:
        return self.old_path is not None and self.old_path != self.path


@dataclass
class Diff:
    """Ordered file sections plus any text preceding the first one."""

    sections: List[FileSection] = field(default_factory=list)
    preamble: str = ""

    # -- construction --------------------------------------------------

    @classmethod
    def parse(cls, text: str) -> "Diff":
        if not text:
            return cls()

        preamble: List[str] = []
        sections: List[FileSection] = []
        current: List[str] = []

        def flush() -> None:
            if current:
                sections.append(_section_from_lines(current))

        for line in text.splitlines(keepends=True):
            if line.startswith("diff --git "):
                flush()
                current = [line]
            elif current:
                current.append(line)
            else:
                preamble.append(line)
        flush()
        return cls(sections=sections, preamble="".join(preamble))

    @classmethod
    def concat(cls, sections: List[FileSection]) -> "Diff":
        return cls(sections=list(sections))

    # -- views ---------------------------------------------------------

    def render(self) -> str:
        return self.preamble + "".join(s.text for s in self.sections)

    @property
    def paths(self) -> List[str]:
        return [s.path for s in self.sections]

    def is_empty(self) -> bool:
        return not self.sections and not self.preamble.strip()

    def __iter__(self) -> Iterator[FileSection]:
        return iter(self.sections)

    def __len__(self) -> int:
        return len(self.sections)

    def __bool__(self) -> bool:
        return not self.is_empty()


def _section_from_lines(lines: List[str]) -> FileSection:
    match = _HEADER_RE.match(lines[0].rstrip("\n"))
    old_path = new_path = None
    if match:
        old_path, new_path = match.group(1), match.group(2)

    for line in lines[1:]:
        stripped = line.rstrip("\n")
        if stripped.startswith("@@"):
            break
        if stripped.startswith("rename from "):
            old_path = _unquote(stripped[len("rename from "):])
        elif stripped.startswith("rename to "):
            new_path = _unquote(stripped[len("rename to "):])
        elif stripped.startswith("--- "):
            candidate = _strip_prefix(stripped[4:], "a/")
            if candidate is not None:
                old_path = candidate
        elif stripped.startswith("+++ "):
            candidate = _strip_prefix(stripped[4:], "b/")
            # /dev/null here means the file was deleted; keep the old path
            new_path = candidate if candidate is not None else old_path

    path = new_path or old_path or ""
    return FileSection(
        path=path,
        text="".join(lines),
        old_path=old_path if old_path != path else None,
    )
