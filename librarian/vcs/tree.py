"""
librarian.vcs.tree -- Static project layout for cold-start inference.

Produces an indented file tree and the README text, which is all the
generator gets when a repository has no history worth summarizing.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional

log = logging.getLogger(__name__)

#: Directory names never descended into.
SKIP_DIRS = frozenset(
    {
        "node_modules",
        "dist",
        "build",
        "out",
        ".next",
        "__pycache__",
        "venv",
        ".venv",
        "target",
    }
)

README_NAMES = ("README.md", "README.rst", "README.txt", "README", "readme.md")


def build_file_tree(root: Path, max_depth: int = 5, max_entries: int = 500) -> str:
    """Render *root* as an indented tree.

    Hidden entries and build/dependency directories are skipped.
    Directories sort before files; output stops after *max_entries*
    lines with a trailing ``...`` marker.
    """
    root = Path(root)
    lines: List[str] = []

    def walk(directory: Path, depth: int) -> bool:
        try:
            children = sorted(
                directory.iterdir(), key=lambda p: (not p.is_dir(), p.name.lower())
            )
        except OSError as exc:
            log.debug("Cannot list %s: %s", directory, exc)
            return True
        for child in children:
            if child.name.startswith(".") or child.name in SKIP_DIRS:
                continue
            if len(lines) >= max_entries:
                lines.append("  " * depth + "...")
                return False
            if child.is_dir():
                lines.append("  " * depth + child.name + "/")
                if depth + 1 < max_depth and not walk(child, depth + 1):
                    return False
            else:
                lines.append("  " * depth + child.name)
        return True

    walk(root, 0)
    return "\n".join(lines)


def read_readme(root: Path, max_chars: int = 8000) -> Optional[str]:
    """First README found at the repository root, truncated to *max_chars*."""
    for name in README_NAMES:
        path = Path(root) / name
        if path.is_file():
            try:
                text = path.read_text(encoding="utf-8", errors="replace")
            except OSError:
                continue
            return text[:max_chars]
    return None
