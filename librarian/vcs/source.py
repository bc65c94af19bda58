"""
librarian.vcs.source -- Read-only view of a git repository.

Every query shells out to the ``git`` executable.  Nothing here mutates
the repository except ``stage()``, which the memory store uses to add
the document it just wrote to the index.

History anomalies are absorbed here: an unborn branch yields an empty
history, and a range whose base revision has vanished (shallow clone,
rewritten history) falls back to the diff of the latest commit alone.
Every other git failure is raised as ``ChangesetError``.
"""

from __future__ import annotations

import logging
import re
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence

from librarian.core.errors import ChangesetError, NoCommitsError, RangeUnavailableError

log = logging.getLogger(__name__)

#: Field separator for ``git log --format`` output.
_SEP = "\x1f"

_CONFLICT_RE = re.compile(r"^<<<<<<< |^=======$|^>>>>>>> ", re.MULTILINE)

_DIFF_FLAGS = ("--no-color", "--no-ext-diff", "-M")


@dataclass
class OnelineCommit:
    """One entry of the oneline history sweep."""

    rev: str
    message: str
    date: str
    parents: int = 1

    @property
    def is_merge(self) -> bool:
        return self.parents > 1

    def to_dict(self) -> dict:
        return {"rev": self.rev, "message": self.message, "date": self.date}


class ChangesetSource:
    """Wraps a git working copy.

    Parameters
    ----------
    repo_path : Path
        Any directory inside the working tree.
    git : str
        Name or path of the git executable.
    timeout : float
        Seconds allowed per git invocation.
    """

    def __init__(self, repo_path: Path, git: str = "git", timeout: float = 60.0) -> None:
        self.repo_path = Path(repo_path)
        self.git = git
        self.timeout = timeout
        self._git_dir: Optional[Path] = None

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------

    def _run(self, args: Sequence[str], check: bool = True) -> subprocess.CompletedProcess:
        cmd = [self.git, *args]
        log.debug("Running %s", " ".join(cmd))
        try:
            result = subprocess.run(
                cmd,
                cwd=str(self.repo_path),
                capture_output=True,
                text=True,
                encoding="utf-8",
                errors="replace",
                timeout=self.timeout,
            )
        except FileNotFoundError as exc:
            raise ChangesetError(args[0], f"git executable not found: {self.git}") from exc
        except subprocess.TimeoutExpired as exc:
            raise ChangesetError(args[0], f"timed out after {self.timeout}s") from exc

        if check and result.returncode != 0:
            raise ChangesetError(
                args[0], result.stderr.strip() or "unknown error", result.returncode
            )
        return result

    @property
    def git_dir(self) -> Path:
        """Absolute path of the repository's ``.git`` directory."""
        if self._git_dir is None:
            out = self._run(["rev-parse", "--absolute-git-dir"]).stdout.strip()
            self._git_dir = Path(out)
        return self._git_dir

    @property
    def toplevel(self) -> Path:
        return Path(self._run(["rev-parse", "--show-toplevel"]).stdout.strip())

    # ------------------------------------------------------------------
    # Revisions
    # ------------------------------------------------------------------

    def head_revision(self) -> str:
        """Full hash of HEAD; raises ``NoCommitsError`` on an unborn branch."""
        result = self._run(["rev-parse", "--verify", "--quiet", "HEAD^{commit}"], check=False)
        rev = result.stdout.strip()
        if result.returncode == 0 and rev:
            return rev
        if "not a git repository" in result.stderr.lower():
            raise ChangesetError("rev-parse", result.stderr.strip(), result.returncode)
        raise NoCommitsError()

    def has_commits(self) -> bool:
        try:
            self.head_revision()
        except NoCommitsError:
            return False
        return True

    def current_branch(self) -> Optional[str]:
        """Short branch name, or None for a detached HEAD."""
        result = self._run(["symbolic-ref", "--quiet", "--short", "HEAD"], check=False)
        name = result.stdout.strip()
        return name if result.returncode == 0 and name else None

    def revision_exists(self, rev: str) -> bool:
        result = self._run(["cat-file", "-e", f"{rev}^{{commit}}"], check=False)
        return result.returncode == 0

    # ------------------------------------------------------------------
    # Diffs
    # ------------------------------------------------------------------

    def diff_for_revision(self, rev: str) -> str:
        """Unified diff introduced by *rev* (first parent for merges)."""
        args = ["show", "--format=", "-m", "--first-parent", *_DIFF_FLAGS, rev]
        return self._run(args).stdout

    def diff_for_range(self, from_rev: Optional[str], to_rev: str) -> str:
        """Unified diff spanning ``from_rev..to_rev``.

        Falls back to ``diff_for_revision(to_rev)`` when there is no base
        revision or the base is no longer in the object store.
        """
        if not from_rev:
            return self.diff_for_revision(to_rev)
        try:
            return self._range_diff(from_rev, to_rev)
        except RangeUnavailableError as exc:
            log.warning("%s; falling back to the latest commit diff", exc)
            return self.diff_for_revision(to_rev)

    def _range_diff(self, from_rev: str, to_rev: str) -> str:
        if not self.revision_exists(from_rev):
            raise RangeUnavailableError(from_rev, to_rev)
        return self._run(["diff", *_DIFF_FLAGS, from_rev, to_rev]).stdout

    def working_tree_diff(self) -> str:
        """Uncommitted changes (staged and unstaged) against HEAD."""
        if not self.has_commits():
            return self._run(["diff", "--cached", *_DIFF_FLAGS]).stdout
        return self._run(["diff", *_DIFF_FLAGS, "HEAD"]).stdout

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    def oneline_history(self, limit: int, since: Optional[str] = None) -> List[OnelineCommit]:
        """Newest-first commit summaries; empty for a repository without commits.

        *since* is passed to ``git log --since`` verbatim (a date or an
        approxidate such as ``"6 months ago"``).
        """
        if not self.has_commits():
            return []
        args = [
            "log",
            f"--max-count={int(limit)}",
            f"--format=%H{_SEP}%aI{_SEP}%P{_SEP}%s",
        ]
        if since:
            args.append(f"--since={since}")
        commits = []
        for line in self._run(args).stdout.splitlines():
            parts = line.split(_SEP)
            if len(parts) != 4:
                continue
            rev, date, parents, subject = parts
            commits.append(
                OnelineCommit(rev=rev, message=subject, date=date, parents=len(parents.split()))
            )
        return commits

    def commit_subject(self, rev: str) -> str:
        return self._run(["log", "--max-count=1", "--format=%s", rev]).stdout.strip()

    def recent_commits(self, limit: int) -> List[str]:
        """Up to *limit* revisions reachable from HEAD, newest first."""
        if not self.has_commits():
            return []
        out = self._run(["rev-list", f"--max-count={int(limit)}", "HEAD"]).stdout
        return out.split()

    def commits_between(self, from_rev: Optional[str], to_rev: str) -> List[str]:
        """Subjects of the commits in ``from_rev..to_rev``, oldest first."""
        if from_rev and not self.revision_exists(from_rev):
            from_rev = None
        rev_range = f"{from_rev}..{to_rev}" if from_rev else to_rev
        args = ["log", "--reverse", "--format=%s", rev_range]
        if not from_rev:
            args.insert(1, "--max-count=1")
        return [s for s in self._run(args).stdout.splitlines() if s.strip()]

    # ------------------------------------------------------------------
    # Index / ignore rules
    # ------------------------------------------------------------------

    def is_ignored(self, path: Path) -> bool:
        result = self._run(["check-ignore", "--quiet", "--", str(path)], check=False)
        if result.returncode not in (0, 1):
            raise ChangesetError("check-ignore", result.stderr.strip(), result.returncode)
        return result.returncode == 0

    def stage(self, path: Path) -> bool:
        """``git add`` *path*.  Returns False if git ignores the file."""
        if self.is_ignored(path):
            log.debug("Not staging ignored path %s", path)
            return False
        self._run(["add", "--", str(path)])
        return True

    @staticmethod
    def has_conflict_markers(text: str) -> bool:
        return bool(_CONFLICT_RE.search(text))
