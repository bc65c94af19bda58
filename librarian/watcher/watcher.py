"""
librarian.watcher.watcher -- Drive synchronization cycles from git activity.

A watchdog observer watches the repository's ``.git`` directory.  Only
the files git rewrites when history or the index moves are signals:
``HEAD``, ``index``, ``packed-refs`` and ``refs/heads/**``.  Lock files,
the tool's state directory and the memory document never are.

State machine::

    IDLE --signal--> PENDING_DEBOUNCE --timer--> PROCESSING --done--> IDLE
                      ^        |  (signal: rearm)      |
                      +--------+                       | (signal while
                      +--------------------------------+  processing)

A signal during PROCESSING is remembered and, unless it was the index
write caused by staging our own document, schedules exactly one
follow-up cycle once the current one ends.
"""

from __future__ import annotations

import logging
import os
import threading
import time
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Callable, Optional, Set, Tuple

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from librarian.pipeline import CycleResult, Outcome, SyncPipeline
from librarian.watcher.debounce import Debouncer

if TYPE_CHECKING:
    from librarian.core.config import Config
    from librarian.core.types import Generator

log = logging.getLogger(__name__)

#: Paths under ``.git`` whose changes mean history or the index moved.
SIGNAL_FILES = frozenset({"HEAD", "index", "packed-refs"})
SIGNAL_DIRS = ("refs", "heads")


class Phase(Enum):
    IDLE = "idle"
    PENDING_DEBOUNCE = "pending_debounce"
    PROCESSING = "processing"


def _stamp(path: Path) -> Optional[Tuple[int, int, int]]:
    try:
        st = os.stat(path)
    except OSError:
        return None
    return (st.st_mtime_ns, st.st_size, st.st_ino)


class GitEventHandler(FileSystemEventHandler):
    """Forwards watchdog events for files to ``ChangeWatcher.notify``."""

    def __init__(self, notify: Callable[[str], bool]) -> None:
        super().__init__()
        self._notify = notify

    def on_any_event(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return
        # git writes via <name>.lock and renames; the destination is the signal
        dest = getattr(event, "dest_path", "")
        for path in (event.src_path, dest):
            if path:
                self._notify(os.fsdecode(path))


class ChangeWatcher:
    """Debounced, mutually exclusive synchronization cycles.

    Parameters
    ----------
    pipeline : SyncPipeline
        Performs the cycle; its state store is the cross-process mutex.
    debounce_seconds : float
        Quiet period after the last signal before a cycle runs.
    include_drafts : bool
        Summarize working-tree changes when HEAD hasn't moved.
    ignored_paths : iterable of Path
        Files and directories whose changes are never signals.
    """

    def __init__(
        self,
        pipeline: SyncPipeline,
        debounce_seconds: float = 0.5,
        include_drafts: bool = True,
        ignored_paths: Tuple[Path, ...] = (),
    ) -> None:
        self.pipeline = pipeline
        self.include_drafts = include_drafts
        self.git_dir = pipeline.source.git_dir.resolve()
        self.ignored_paths = tuple(Path(p).resolve() for p in ignored_paths)

        self._debouncer = Debouncer(debounce_seconds, self._on_debounce)
        self._lock = threading.Lock()
        self._phase = Phase.IDLE
        self._signals_while_processing: Set[Path] = set()
        self._own_index_stamp: Optional[Tuple[int, int, int]] = None
        self._observer: Optional[Observer] = None
        self._stopped = False

        self.cycles = 0
        self.last_result: Optional[CycleResult] = None

    @classmethod
    def from_config(
        cls, config: "Config", generator: Optional["Generator"] = None
    ) -> "ChangeWatcher":
        pipeline = SyncPipeline.from_config(config, generator=generator)
        return cls(
            pipeline,
            debounce_seconds=config.debounce_seconds,
            ignored_paths=(config.state_dir, config.memory_path),
        )

    @property
    def phase(self) -> Phase:
        with self._lock:
            return self._phase

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self, observe: bool = True) -> None:
        """Reset a stale processing flag, then begin watching ``.git``.

        A watcher may be started again after ``stop()``.
        """
        self.pipeline.state.reset_stale()
        if self._debouncer.closed:
            self._debouncer = Debouncer(self._debouncer.delay, self._on_debounce)
        self._stopped = False
        if not observe:
            return
        observer = Observer()
        observer.schedule(GitEventHandler(self.notify), str(self.git_dir), recursive=True)
        observer.daemon = True
        observer.start()
        self._observer = observer
        log.info("Watching %s", self.git_dir)

    def stop(self, timeout: float = 5.0) -> None:
        """Cancel any pending timer and stop the observer.

        A cycle already running is left to finish on its own thread.
        """
        self._stopped = True
        self._debouncer.close()
        if self._observer is not None:
            self._observer.stop()
            self._observer.join(timeout)
            self._observer = None
        with self._lock:
            if self._phase is Phase.PENDING_DEBOUNCE:
                self._phase = Phase.IDLE
        log.info("Watcher stopped")

    # ------------------------------------------------------------------
    # Signals
    # ------------------------------------------------------------------

    def is_signal(self, path: str | Path) -> bool:
        """True if a change to *path* means history or the index moved."""
        path = Path(path)
        if not path.is_absolute():
            path = self.git_dir / path
        path = Path(os.path.abspath(path))

        for ignored in self.ignored_paths:
            if path == ignored or ignored in path.parents:
                return False
        try:
            rel = path.relative_to(self.git_dir)
        except ValueError:
            return False
        if path.name.endswith(".lock"):
            return False
        parts = rel.parts
        if len(parts) == 1:
            return parts[0] in SIGNAL_FILES
        return len(parts) > 2 and parts[:2] == SIGNAL_DIRS

    def _is_own_index_write(self, path: Path) -> bool:
        if Path(path).name != "index" or self._own_index_stamp is None:
            return False
        return _stamp(self.git_dir / "index") == self._own_index_stamp

    def notify(self, path: str | Path) -> bool:
        """Feed one filesystem signal.  Returns True if it was accepted."""
        if self._stopped or not self.is_signal(path):
            return False
        path = Path(path)

        with self._lock:
            if self._phase is Phase.PROCESSING:
                self._signals_while_processing.add(path)
                return True
            if self._is_own_index_write(path):
                log.debug("Ignoring index update from our own staging")
                return False
            self._phase = Phase.PENDING_DEBOUNCE
        self._debouncer.trigger()
        log.debug("Signal %s; debounce armed", path)
        return True

    def kick(self) -> None:
        """Schedule a cycle without a filesystem signal (startup catch-up)."""
        with self._lock:
            if self._stopped or self._phase is Phase.PROCESSING:
                return
            self._phase = Phase.PENDING_DEBOUNCE
        self._debouncer.trigger()

    # ------------------------------------------------------------------
    # Cycles
    # ------------------------------------------------------------------

    def _on_debounce(self) -> None:
        with self._lock:
            if self._phase is Phase.PROCESSING or self._stopped:
                return
            self._phase = Phase.PROCESSING
            self._signals_while_processing.clear()

        result = self.run_cycle()

        with self._lock:
            if result.wrote_memory:
                self._own_index_stamp = _stamp(self.git_dir / "index")
            pending = {
                p for p in self._signals_while_processing if not self._is_own_index_write(p)
            }
            self._signals_while_processing.clear()
            rerun = bool(pending) and not self._stopped
            self._phase = Phase.PENDING_DEBOUNCE if rerun else Phase.IDLE

        if rerun:
            log.debug("Changes arrived during the cycle; scheduling a follow-up")
            self._debouncer.trigger()

    def run_cycle(self) -> CycleResult:
        """Run one cycle now; failures are logged and reported, not raised."""
        self.cycles += 1
        cycle = self.cycles
        try:
            result = self.pipeline.sync_latest(include_drafts=self.include_drafts)
        except Exception as exc:
            log.exception(
                "Synchronization cycle failed; watermark unchanged, will retry on next change",
                extra={"cycle": cycle, "outcome": Outcome.FAILED.value},
            )
            result = CycleResult(Outcome.FAILED, detail=str(exc))
        self.last_result = result
        return result

    def wait_idle(self, timeout: float = 10.0, poll: float = 0.02) -> bool:
        """Block until no cycle is pending or running (for tests and CLI)."""
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            if self.phase is Phase.IDLE and not self._debouncer.pending:
                return True
            time.sleep(poll)
        return False
