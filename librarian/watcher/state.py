"""
librarian.watcher.state -- Persisted synchronization state.

``.librarian/state.json`` holds the watermark (last revision folded into
the memory document), the in-flight flag, and the digest of the last
summarized working-tree draft::

    {"lastProcessedRevision": "9f2c...", "isProcessing": false,
     "lastDraftDigest": null}

Every read-modify-write happens under a ``FileLock`` and the file is
replaced atomically.  ``isProcessing`` is a cross-restart mutex: a
cycle claims it with ``try_begin()`` and releases it with ``finish()``;
a ``true`` left behind by a crash is cleared by ``reset_stale()`` before
the watcher starts.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

from librarian.core.fileio import atomic_write_json
from librarian.core.filelock import FileLock

log = logging.getLogger(__name__)

_UNSET: Any = object()


@dataclass
class SyncState:
    last_processed_revision: Optional[str] = None
    is_processing: bool = False
    last_draft_digest: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "lastProcessedRevision": self.last_processed_revision,
            "isProcessing": self.is_processing,
            "lastDraftDigest": self.last_draft_digest,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "SyncState":
        return cls(
            last_processed_revision=d.get("lastProcessedRevision") or None,
            is_processing=bool(d.get("isProcessing", False)),
            last_draft_digest=d.get("lastDraftDigest") or None,
        )


class SyncStateStore:
    """Locked access to the state file.

    Parameters
    ----------
    path : Path
        The JSON state file.
    lock_timeout : float
        Seconds to wait for the state lock.
    """

    def __init__(self, path: Path, lock_timeout: float = 5.0) -> None:
        self.path = Path(path)
        self.lock_timeout = lock_timeout

    def _lock(self) -> FileLock:
        return FileLock(self.path, timeout=self.lock_timeout)

    # -- plain I/O ---------------------------------------------------------

    def load(self) -> SyncState:
        """Current state; defaults if the file is missing or unreadable."""
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return SyncState()
        except (OSError, json.JSONDecodeError) as exc:
            log.warning("Unreadable state file %s (%s); starting fresh", self.path, exc)
            return SyncState()
        if not isinstance(raw, dict):
            log.warning("State file %s is not an object; starting fresh", self.path)
            return SyncState()
        return SyncState.from_dict(raw)

    def save(self, state: SyncState) -> None:
        atomic_write_json(self.path, state.to_dict())

    # -- locked transitions ----------------------------------------------

    def reset_stale(self) -> bool:
        """Clear an ``isProcessing`` flag left by a crashed process.

        Call once at startup, before any cycle can run.  Returns True
        if a stale flag was found.
        """
        with self._lock():
            state = self.load()
            if not state.is_processing:
                if not self.path.exists():
                    self.save(state)
                return False
            log.warning("Resetting stale isProcessing flag from a previous run")
            state.is_processing = False
            self.save(state)
            return True

    def try_begin(self) -> Optional[SyncState]:
        """Claim the processing flag.

        Returns the claimed state, or None if another cycle holds it.
        """
        with self._lock():
            state = self.load()
            if state.is_processing:
                return None
            state.is_processing = True
            self.save(state)
            return state

    def finish(self, revision: Optional[str] = _UNSET, draft_digest: Optional[str] = _UNSET) -> SyncState:
        """Release the processing flag, optionally moving the watermark.

        Fields left unset keep their persisted value, so a failed cycle
        calls ``finish()`` with no arguments.
        """
        with self._lock():
            state = self.load()
            state.is_processing = False
            if revision is not _UNSET:
                state.last_processed_revision = revision
            if draft_digest is not _UNSET:
                state.last_draft_digest = draft_digest
            self.save(state)
            return state

    def set_watermark(self, revision: Optional[str]) -> SyncState:
        """Move the watermark outside a cycle (``librarian init``)."""
        with self._lock():
            state = self.load()
            state.last_processed_revision = revision
            state.last_draft_digest = None
            self.save(state)
            return state
