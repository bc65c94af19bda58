"""
librarian.initializer -- First-time creation of the memory document.

Three tiers, cheapest first:

1. Oneline sweep: scan up to 100 commits from the last six months and
   keep the milestones (merges and commits whose subject mentions an
   architectural keyword).  Local only, no generator calls.
2. Deep context: summarize the diffs of the latest 10 commits.  Skipped
   for a repository without history; a failure here is logged and the
   next tier carries on.
3. Skeleton scan: infer a complete document from the file tree, the
   README and the milestones.  Mandatory; its failure aborts init.

When tiers 2 and 3 both produced a document they are merged with one
aggregation call.  The result goes through the normal schema gate, and
the watermark is set to HEAD so the watcher starts from here.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, List, Optional

from librarian.core.errors import LibrarianError
from librarian.core.types import FLASH, PRO
from librarian.diff.model import Diff, FileSection
from librarian.pipeline import SyncPipeline
from librarian.vcs.source import OnelineCommit
from librarian.vcs.tree import build_file_tree, read_readme

if TYPE_CHECKING:
    from librarian.core.config import Config
    from librarian.core.types import Generator

log = logging.getLogger(__name__)

SWEEP_LIMIT = 100
SWEEP_SINCE = "6 months ago"
DEEP_CONTEXT_COMMITS = 10

MILESTONE_KEYWORDS = (
    "refactor",
    "architecture",
    "init",
    "migration",
    "restructure",
    "redesign",
    "major",
    "breaking",
)


def is_milestone(commit: OnelineCommit) -> bool:
    message = commit.message.lower()
    if commit.is_merge or message.startswith("merge"):
        return True
    return any(keyword in message for keyword in MILESTONE_KEYWORDS)


@dataclass
class Timeline:
    milestones: List[OnelineCommit] = field(default_factory=list)
    total_commits: int = 0


@dataclass
class InitResult:
    timeline: Timeline
    used_deep_context: bool
    revision: Optional[str]
    words: int

    def to_dict(self) -> dict:
        return {
            "milestones": len(self.timeline.milestones),
            "total_commits": self.timeline.total_commits,
            "deep_context": self.used_deep_context,
            "revision": self.revision,
            "words": self.words,
        }


class Initializer:
    """Builds the initial memory document for a repository."""

    def __init__(self, pipeline: SyncPipeline, tree_depth: int = 5) -> None:
        self.pipeline = pipeline
        self.source = pipeline.source
        self.summarizer = pipeline.summarizer
        self.store = pipeline.store
        self.tree_depth = tree_depth

    @classmethod
    def from_config(
        cls, config: "Config", generator: Optional["Generator"] = None
    ) -> "Initializer":
        config.ensure_directories()
        return cls(SyncPipeline.from_config(config, generator=generator))

    # ------------------------------------------------------------------
    # Tiers
    # ------------------------------------------------------------------

    def oneline_sweep(self) -> Timeline:
        commits = self.source.oneline_history(SWEEP_LIMIT, since=SWEEP_SINCE)
        if not commits:
            log.info("No commit history found; starting from the file tree alone")
            return Timeline()
        milestones = [c for c in commits if is_milestone(c)]
        log.info("Found %d milestone(s) in %d commit(s)", len(milestones), len(commits))
        return Timeline(milestones=milestones, total_commits=len(commits))

    def deep_context(self, current_memory: str = "") -> str:
        """Summarize the latest commits; empty string if there is nothing to say."""
        revs = list(reversed(self.source.recent_commits(DEEP_CONTEXT_COMMITS)))
        if not revs:
            return ""

        sections: List[FileSection] = []
        notes: List[str] = []
        for rev in revs:
            cleaned = self.pipeline.clean(self.source.diff_for_revision(rev))
            sections.extend(cleaned.sections)
            notes.append(self.source.commit_subject(rev))

        combined = Diff.concat(sections)
        if combined.is_empty():
            log.info("Recent commits contain only noise; skipping deep context")
            return ""
        return self.summarizer.update(combined, current_memory, FLASH, commit_notes=notes)

    def skeleton_scan(self, milestones: Optional[List[OnelineCommit]] = None) -> str:
        root = self.source.repo_path
        tree = build_file_tree(root, max_depth=self.tree_depth)
        readme = read_readme(root)
        return self.summarizer.infer_from_structure(tree, readme, milestones, PRO)

    # ------------------------------------------------------------------
    # Orchestration
    # ------------------------------------------------------------------

    def initialize(self) -> InitResult:
        if self.source.is_ignored(self.store.path):
            log.warning(
                "%s is git-ignored; it will be written but not staged",
                self.store.path.name,
            )

        timeline = self.oneline_sweep()

        deep = ""
        try:
            deep = self.deep_context(self.store.read())
        except LibrarianError as exc:
            log.warning("Deep context failed, continuing with the skeleton scan: %s", exc)

        skeleton = self.skeleton_scan(timeline.milestones)

        final = skeleton
        if deep and deep.strip() != skeleton.strip():
            final = self.summarizer.combine([skeleton, deep])

        self.store.write(final)

        revision = self.source.recent_commits(1)
        head = revision[0] if revision else None
        self.pipeline.state.set_watermark(head)
        log.info("Initialization complete", extra={"revision": head})
        return InitResult(
            timeline=timeline,
            used_deep_context=bool(deep),
            revision=head,
            words=len(self.store.read_raw().split()),
        )
