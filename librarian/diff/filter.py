"""
librarian.diff.filter -- Drop noise from a diff before it reaches the generator.

Two jobs:

1. ``NoiseFilter.clean`` removes whole file sections whose path matches
   the ignore policy (build output, lock manifests, binary assets, logs,
   and this tool's own state directory and memory document) and strips
   binary-patch marker lines from the sections it keeps.
2. ``NoiseFilter.is_cosmetic_only`` flags diffs whose changed lines are
   all blank or short comments.  Comment syntax is chosen by file
   extension; prose files and unknown types only count blank lines as
   cosmetic.  Any other changed line, or any rename / new / deleted
   file, makes the diff non-cosmetic.

Excluding the memory document and ``.librarian/`` is what stops the
watcher from summarizing its own writes.
"""

from __future__ import annotations

import fnmatch
import logging
import re
from pathlib import PurePosixPath
from typing import Iterable, List, Optional, Pattern

from librarian.diff.model import Diff, FileSection

log = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Ignore policy
# ---------------------------------------------------------------------------

#: Directory names ignored wherever they appear in a path.
ANY_LEVEL_DIRS = frozenset({"node_modules", ".git", "__pycache__", ".venv", "venv"})

#: Build output directories ignored only at the repository root.
ROOT_DIRS = frozenset({"dist", "build", "out", ".next"})

#: Dependency-manager lock manifests.
LOCK_FILES = frozenset(
    {
        "package-lock.json",
        "yarn.lock",
        "pnpm-lock.yaml",
        "poetry.lock",
        "Pipfile.lock",
        "Cargo.lock",
        "Gemfile.lock",
        "composer.lock",
        "go.sum",
        "uv.lock",
    }
)

BINARY_EXTENSIONS = frozenset(
    {
        ".png", ".jpg", ".jpeg", ".gif", ".bmp", ".ico", ".webp", ".svg",
        ".pdf", ".zip", ".gz", ".tgz", ".tar", ".7z", ".rar",
        ".woff", ".woff2", ".ttf", ".otf", ".eot",
        ".mp3", ".mp4", ".mov", ".avi", ".wav", ".webm",
        ".exe", ".dll", ".so", ".dylib", ".bin", ".class", ".jar",
        ".pyc", ".pyo", ".o", ".a", ".wasm",
    }
)

NOISE_EXTENSIONS = frozenset({".lock", ".log", ".map"})

#: Lines git prints in place of a textual patch.
_BINARY_MARKER_RE = re.compile(r"^(Binary files .* differ|GIT binary patch)\s*$")

#: Comment-only line starts (after the +/- and leading whitespace), per
#: comment family.
_HASH_COMMENT_RE = re.compile(r"^#(\s|$)")
_SLASH_COMMENT_RE = re.compile(r"^(//|/\*|\*/|\*(\s|$))")
_DASH_COMMENT_RE = re.compile(r"^--(\s|$)")
_MARKUP_COMMENT_RE = re.compile(r"^(<!--|-->)")

_COMMENT_FAMILIES = (
    (
        (".py", ".pyi", ".sh", ".bash", ".zsh", ".rb", ".pl", ".r",
         ".yaml", ".yml", ".toml", ".cfg", ".ini", ".conf", ".cmake"),
        _HASH_COMMENT_RE,
    ),
    (
        (".js", ".jsx", ".mjs", ".cjs", ".ts", ".tsx", ".java", ".kt", ".scala",
         ".c", ".h", ".cc", ".cpp", ".hpp", ".cs", ".go", ".rs", ".swift",
         ".dart", ".php", ".css", ".scss", ".less"),
        _SLASH_COMMENT_RE,
    ),
    ((".sql", ".lua", ".hs"), _DASH_COMMENT_RE),
    ((".html", ".htm", ".xml", ".vue", ".svelte"), _MARKUP_COMMENT_RE),
)
_COMMENT_SYNTAX = {ext: pattern for exts, pattern in _COMMENT_FAMILIES for ext in exts}

#: Extensionless files that use ``#`` comments.
_HASH_COMMENT_NAMES = frozenset({"Makefile", "Dockerfile", "Gemfile", "Rakefile", ".gitignore"})

#: Comments at or above this length are treated as substantive.
SHORT_COMMENT_CHARS = 50


class IgnorePolicy:
    """Decides whether a repository-relative path is noise.

    Parameters
    ----------
    state_dirname : str
        Tool-private state directory (always ignored).
    memory_filename : str
        The memory document (always ignored).
    extra_patterns : iterable of str
        Additional ``fnmatch`` globs, matched against the full path and
        against the file name.
    """

    def __init__(
        self,
        state_dirname: str = ".librarian",
        memory_filename: str = "PROJECT_MEMORY.md",
        extra_patterns: Iterable[str] = (),
    ) -> None:
        self.state_dirname = state_dirname.strip("/")
        self.memory_filename = memory_filename
        self.extra_patterns: List[str] = list(extra_patterns)

    @classmethod
    def from_config(cls, config) -> "IgnorePolicy":
        return cls(
            state_dirname=config.state_dirname,
            memory_filename=config.memory_filename,
            extra_patterns=config.ignore_patterns,
        )

    def matches(self, path: str) -> bool:
        if not path:
            return False
        pure = PurePosixPath(path)
        parts = pure.parts
        name = pure.name

        if path == self.memory_filename or name == self.memory_filename:
            return True
        if parts and parts[0] == self.state_dirname:
            return True
        if any(part in ANY_LEVEL_DIRS for part in parts[:-1]):
            return True
        if len(parts) > 1 and parts[0] in ROOT_DIRS:
            return True
        if name in LOCK_FILES:
            return True
        suffix = pure.suffix.lower()
        if suffix in NOISE_EXTENSIONS or suffix in BINARY_EXTENSIONS:
            return True
        return any(
            fnmatch.fnmatch(path, pattern) or fnmatch.fnmatch(name, pattern)
            for pattern in self.extra_patterns
        )


# ---------------------------------------------------------------------------
# Filter
# ---------------------------------------------------------------------------


class NoiseFilter:
    """Applies an ``IgnorePolicy`` to diffs."""

    def __init__(self, policy: IgnorePolicy | None = None) -> None:
        self.policy = policy or IgnorePolicy()

    def clean(self, diff: Diff) -> Diff:
        kept: List[FileSection] = []
        dropped: List[str] = []

        for section in diff.sections:
            paths = [section.path]
            if section.old_path:
                paths.append(section.old_path)
            if all(self.policy.matches(p) for p in paths):
                dropped.append(section.path)
                continue

            cleaned = _strip_binary_markers(section)
            if cleaned is None:
                dropped.append(section.path)
                continue
            kept.append(cleaned)

        if dropped:
            log.debug("Noise filter dropped %d section(s): %s", len(dropped), dropped)
        return Diff(sections=kept)

    def clean_text(self, text: str) -> Diff:
        return self.clean(Diff.parse(text))

    def is_cosmetic_only(self, diff: Diff) -> bool:
        """True only if every changed line is blank or a short comment."""
        for section in diff.sections:
            if section.is_structural:
                return False
            comment_re = comment_syntax(section.path)
            for line in section.body_lines:
                if not _is_trivial_change(line, comment_re):
                    return False
        return True


def comment_syntax(path: str) -> Optional[Pattern[str]]:
    """Comment-line pattern for *path*, or None when no line can be a comment.

    Prose (``.md``, ``.rst``, ``.txt``) and unknown file types get None.
    """
    pure = PurePosixPath(path)
    if pure.name in _HASH_COMMENT_NAMES:
        return _HASH_COMMENT_RE
    return _COMMENT_SYNTAX.get(pure.suffix.lower())


def _strip_binary_markers(section: FileSection) -> FileSection | None:
    """Cut the section at its binary marker; None if only the marker was left.

    Git prints no textual hunks for a binary file, so everything from the
    marker on (including a ``GIT binary patch`` payload) is dropped.  A
    new, deleted or renamed binary file keeps its header lines.
    """
    lines = section.text.splitlines(keepends=True)
    for i, line in enumerate(lines):
        if _BINARY_MARKER_RE.match(line.rstrip("\n")):
            break
    else:
        return section
    rest = FileSection(path=section.path, text="".join(lines[:i]), old_path=section.old_path)
    if not rest.is_structural:
        return None
    return rest


def _is_trivial_change(line: str, comment_re: Optional[Pattern[str]]) -> bool:
    if line.startswith("@@") or line.startswith("\\"):
        return True
    if not line or line[0] not in "+-":
        return True  # context line
    content = line[1:].strip()
    if not content:
        return True
    if comment_re is None:
        return False
    return bool(comment_re.match(content)) and len(content) < SHORT_COMMENT_CHARS

