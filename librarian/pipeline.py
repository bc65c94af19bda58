"""
librarian.pipeline -- One synchronization cycle, start to finish.

    raw diff -> NoiseFilter -> Summarizer (-> Chunker) -> MemoryStore

``SyncPipeline.sync_latest()`` is the unit of work the watcher and the
``sync`` command run: claim the processing flag, compare HEAD with the
watermark, summarize what changed, write the document, then release
the flag.  The watermark only moves after the document was written; a
failure anywhere leaves it in place so the same revision is retried.
"""

from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Sequence

from librarian.core.errors import NoCommitsError
from librarian.core.types import FLASH, Generator
from librarian.diff.filter import IgnorePolicy, NoiseFilter
from librarian.diff.model import Diff
from librarian.memory.store import MemoryStore
from librarian.summarizer import Summarizer
from librarian.vcs.source import ChangesetSource
from librarian.watcher.state import SyncState, SyncStateStore

if TYPE_CHECKING:
    from librarian.core.config import Config
    from librarian.generation.usage import UsageLedger

log = logging.getLogger(__name__)

#: Commits walked by ``deep_sync`` by default.
DEEP_SYNC_LIMIT = 1000
#: Commits folded into the document per generator round in ``deep_sync``.
DEEP_SYNC_BATCH = 10


class Outcome(str, Enum):
    NO_COMMITS = "no_commits"  # unborn branch, nothing to do
    UP_TO_DATE = "up_to_date"  # head == watermark and no new draft
    DRAFT = "draft"  # working-tree changes summarized, watermark unchanged
    SYNCED = "synced"  # new commits summarized, watermark moved
    SKIPPED = "skipped"  # new commits were noise or cosmetic; watermark moved
    BUSY = "busy"  # another cycle holds the processing flag
    FAILED = "failed"  # raised at the cycle boundary (watcher only)


@dataclass
class CycleResult:
    outcome: Outcome
    revision: Optional[str] = None
    detail: str = ""

    @property
    def wrote_memory(self) -> bool:
        return self.outcome in (Outcome.DRAFT, Outcome.SYNCED)

    def to_dict(self) -> Dict[str, Any]:
        return {"outcome": self.outcome.value, "revision": self.revision, "detail": self.detail}


def draft_digest(diff: Diff) -> str:
    return hashlib.sha256(diff.render().encode("utf-8")).hexdigest()


class SyncPipeline:
    """Wires the components together for one repository."""

    def __init__(
        self,
        source: ChangesetSource,
        noise_filter: NoiseFilter,
        summarizer: Summarizer,
        store: MemoryStore,
        state: SyncStateStore,
    ) -> None:
        self.source = source
        self.noise_filter = noise_filter
        self.summarizer = summarizer
        self.store = store
        self.state = state

    @classmethod
    def from_config(
        cls,
        config: "Config",
        generator: Optional[Generator] = None,
        ledger: Optional["UsageLedger"] = None,
    ) -> "SyncPipeline":
        """Build every component from *config*.

        Without an explicit *generator* the configured provider is used,
        wrapped in the retry policy, with usage recorded to *ledger* (the
        repository's ledger by default).
        """
        if generator is None:
            if ledger is None:
                from librarian.generation.usage import UsageLedger

                ledger = UsageLedger(config.usage_path)
            generator = config.get_generator(ledger)

        source = ChangesetSource(config.repo_path)
        summarizer = Summarizer.from_config(config, generator)
        return cls(
            source=source,
            noise_filter=NoiseFilter(IgnorePolicy.from_config(config)),
            summarizer=summarizer,
            store=MemoryStore.from_config(config, source=source, summarizer=summarizer),
            state=SyncStateStore(config.state_path),
        )

    # ------------------------------------------------------------------
    # Single diff
    # ------------------------------------------------------------------

    def clean(self, raw_diff: str) -> Diff:
        return self.noise_filter.clean_text(raw_diff)

    def process(
        self,
        raw_diff: str,
        commit_notes: Optional[Sequence[str]] = None,
        thinking_level: str = FLASH,
    ) -> Outcome:
        """Filter, summarize and write one diff.

        Returns ``SKIPPED`` without calling the generator when nothing
        but noise or cosmetic edits remain, ``SYNCED`` otherwise.
        """
        return self.process_diff(self.clean(raw_diff), commit_notes, thinking_level)

    def process_diff(
        self,
        cleaned: Diff,
        commit_notes: Optional[Sequence[str]] = None,
        thinking_level: str = FLASH,
    ) -> Outcome:
        if cleaned.is_empty():
            log.info("Nothing left after noise filtering; memory unchanged")
            return Outcome.SKIPPED
        if self.noise_filter.is_cosmetic_only(cleaned):
            log.info("Cosmetic-only changes; memory unchanged")
            return Outcome.SKIPPED

        current = self.store.read()
        updated = self.summarizer.update(cleaned, current, thinking_level, commit_notes)
        self.store.write(updated)
        return Outcome.SYNCED

    # ------------------------------------------------------------------
    # Cycles
    # ------------------------------------------------------------------

    def sync_latest(self, include_drafts: bool = False) -> CycleResult:
        """Fold everything between the watermark and HEAD into the document.

        With *include_drafts*, an unchanged HEAD falls through to the
        working-tree diff, which is summarized without moving the
        watermark.
        """
        claimed = self.state.try_begin()
        if claimed is None:
            log.info("Another cycle is in progress; skipping")
            return CycleResult(Outcome.BUSY)

        updates: Dict[str, Any] = {}
        try:
            result = self._cycle(claimed, include_drafts, updates)
        finally:
            self.state.finish(**updates)

        log.info(
            "Cycle finished: %s",
            result.outcome.value,
            extra={"outcome": result.outcome.value, "revision": result.revision},
        )
        return result

    def _cycle(self, claimed: SyncState, include_drafts: bool, updates: Dict[str, Any]) -> CycleResult:
        try:
            head = self.source.head_revision()
        except NoCommitsError:
            return CycleResult(Outcome.NO_COMMITS)

        watermark = claimed.last_processed_revision
        if head == watermark:
            if not include_drafts:
                return CycleResult(Outcome.UP_TO_DATE, head)
            return self._draft_cycle(claimed, head, updates)

        log.info(
            "Processing %s..%s",
            watermark[:12] if watermark else "(none)",
            head[:12],
            extra={"revision": head},
        )
        raw = self.source.diff_for_range(watermark, head)
        notes = self.source.commits_between(watermark, head)
        outcome = self.process(raw, commit_notes=notes)

        updates["revision"] = head
        updates["draft_digest"] = None
        return CycleResult(outcome, head, f"{len(notes)} commit(s)")

    def _draft_cycle(self, claimed: SyncState, head: str, updates: Dict[str, Any]) -> CycleResult:
        cleaned = self.clean(self.source.working_tree_diff())
        if cleaned.is_empty():
            if claimed.last_draft_digest is not None:
                updates["draft_digest"] = None
            return CycleResult(Outcome.UP_TO_DATE, head)

        digest = draft_digest(cleaned)
        if digest == claimed.last_draft_digest:
            log.debug("Working-tree draft already summarized")
            return CycleResult(Outcome.UP_TO_DATE, head)

        outcome = self.process_diff(cleaned)
        updates["draft_digest"] = digest
        if outcome is Outcome.SKIPPED:
            return CycleResult(Outcome.SKIPPED, head, "draft")
        return CycleResult(Outcome.DRAFT, head, f"{len(cleaned)} file(s)")

    def deep_sync(self, limit: int = DEEP_SYNC_LIMIT, batch_size: int = DEEP_SYNC_BATCH) -> CycleResult:
        """Replay up to *limit* commits, oldest first, *batch_size* at a time.

        The watermark moves to HEAD only after every batch was folded in.
        """
        claimed = self.state.try_begin()
        if claimed is None:
            return CycleResult(Outcome.BUSY)

        updates: Dict[str, Any] = {}
        try:
            revs = list(reversed(self.source.recent_commits(limit)))
            if not revs:
                return CycleResult(Outcome.NO_COMMITS)

            batches = [revs[i : i + batch_size] for i in range(0, len(revs), batch_size)]
            synced = 0
            for number, batch in enumerate(batches, start=1):
                log.info("Deep sync batch %d/%d (%d commits)", number, len(batches), len(batch))
                raw = "".join(self.source.diff_for_revision(rev) for rev in batch)
                notes: List[str] = [self.source.commit_subject(rev) for rev in batch]
                if self.process(raw, commit_notes=notes) is Outcome.SYNCED:
                    synced += 1

            updates["revision"] = revs[-1]
            updates["draft_digest"] = None
            outcome = Outcome.SYNCED if synced else Outcome.SKIPPED
            return CycleResult(outcome, revs[-1], f"{len(revs)} commit(s) in {len(batches)} batch(es)")
        finally:
            self.state.finish(**updates)
