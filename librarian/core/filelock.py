"""
librarian.core.filelock -- On-disk lock file with stale-owner recovery.

Serialises read-modify-write cycles on the synchronization state file.
The lock is a ``<path>.lock`` sidecar created with ``O_CREAT | O_EXCL``
and stamped with the owner's PID, so a lock left behind by a crashed
process can be recognised and broken instead of blocking forever.

Usage::

    with FileLock(state_path):
        state = json.loads(state_path.read_text())
        state["isProcessing"] = True
        atomic_write_text(state_path, json.dumps(state))
"""

from __future__ import annotations

import logging
import os
import sys
import time
from pathlib import Path
from types import TracebackType
from typing import Optional, Type

log = logging.getLogger(__name__)

_IS_WINDOWS = sys.platform == "win32"


def _pid_alive(pid: int) -> bool:
    """Best-effort check whether *pid* names a running process."""
    if pid <= 0:
        return False
    if pid == os.getpid():
        return True
    if _IS_WINDOWS:
        # No cheap signal-0 liveness check; fall back to the age rule.
        return True
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True


class FileLock:
    """Cross-process advisory lock using a ``.lock`` sidecar file.

    Parameters
    ----------
    path : Path
        The file to protect.  The lock file is ``path.lock``.
    timeout : float
        Maximum seconds to wait for the lock (default 5).
    poll : float
        Seconds between retry attempts (default 0.05).
    stale_after : float
        A lock older than this many seconds is broken even when its
        owner cannot be identified (default 60).
    """

    def __init__(
        self,
        path: Path,
        timeout: float = 5.0,
        poll: float = 0.05,
        stale_after: float = 60.0,
    ) -> None:
        self.lock_path = Path(str(path) + ".lock")
        self.timeout = timeout
        self.poll = poll
        self.stale_after = stale_after
        self._fd: Optional[int] = None

    # -- context manager ----------------------------------------------------

    def __enter__(self) -> "FileLock":
        self.acquire()
        return self

    def __exit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc_val: Optional[BaseException],
        exc_tb: Optional[TracebackType],
    ) -> None:
        self.release()

    @property
    def held(self) -> bool:
        return self._fd is not None

    # -- acquire / release --------------------------------------------------

    def acquire(self) -> None:
        """Block until the lock is acquired or *timeout* expires."""
        self.lock_path.parent.mkdir(parents=True, exist_ok=True)
        deadline = time.monotonic() + self.timeout
        while True:
            try:
                fd = os.open(
                    str(self.lock_path),
                    os.O_CREAT | os.O_EXCL | os.O_WRONLY,
                )
            except FileExistsError:
                if self._break_if_stale():
                    continue
                if time.monotonic() >= deadline:
                    raise TimeoutError(
                        f"Could not acquire lock on {self.lock_path} "
                        f"within {self.timeout}s"
                    )
                time.sleep(self.poll)
                continue
            except PermissionError as exc:
                # Windows reports a pending delete of the lock file this way
                if not _IS_WINDOWS or time.monotonic() >= deadline:
                    raise TimeoutError(
                        f"Could not acquire lock on {self.lock_path} "
                        f"within {self.timeout}s"
                    ) from exc
                time.sleep(self.poll)
                continue

            os.write(fd, str(os.getpid()).encode("ascii"))
            self._fd = fd
            return

    def release(self) -> None:
        """Release the lock (no-op when not held)."""
        if self._fd is None:
            return
        try:
            os.close(self._fd)
        except OSError:
            log.debug("Closing lock descriptor failed for %s", self.lock_path)
        self._fd = None
        self._remove()

    # -- staleness ----------------------------------------------------------

    def owner_pid(self) -> Optional[int]:
        """PID recorded in the lock file, or None if unreadable."""
        try:
            raw = self.lock_path.read_text(encoding="ascii").strip()
        except OSError:
            return None
        return int(raw) if raw.isdigit() else None

    def _break_if_stale(self) -> bool:
        """Remove the lock file if its owner is gone or it is too old."""
        try:
            age = time.time() - self.lock_path.stat().st_mtime
        except FileNotFoundError:
            return True  # released between our open() and stat()
        except OSError:
            return False

        pid = self.owner_pid()
        dead_owner = pid is not None and not _pid_alive(pid)
        if dead_owner or age > self.stale_after:
            log.warning(
                "Breaking stale lock (owner pid=%s, %.1fs old): %s",
                pid,
                age,
                self.lock_path,
            )
            self._remove()
            return True
        return False

    def _remove(self) -> None:
        try:
            os.unlink(str(self.lock_path))
        except FileNotFoundError:
            pass
