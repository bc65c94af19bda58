"""
librarian.watcher.debounce -- Single-slot resettable timer.

Each ``trigger()`` cancels the pending timer (if any) and arms a new
one, so a burst of signals within the delay collapses into a single
callback after the burst ends.
"""

from __future__ import annotations

import logging
import threading
from typing import Callable, Optional

log = logging.getLogger(__name__)


class Debouncer:
    """Coalesce repeated ``trigger()`` calls into one delayed callback.

    Parameters
    ----------
    delay : float
        Seconds of quiet required before *callback* runs.
    callback : callable
        Invoked with no arguments on a ``threading.Timer`` thread.
    """

    def __init__(self, delay: float, callback: Callable[[], None]) -> None:
        self.delay = delay
        self.callback = callback
        self._timer: Optional[threading.Timer] = None
        self._lock = threading.Lock()
        self._closed = False

    @property
    def pending(self) -> bool:
        with self._lock:
            return self._timer is not None

    @property
    def closed(self) -> bool:
        return self._closed

    def trigger(self) -> None:
        with self._lock:
            if self._closed:
                return
            if self._timer is not None:
                self._timer.cancel()
            timer = threading.Timer(self.delay, self._fire)
            timer.daemon = True
            self._timer = timer
            timer.start()

    def cancel(self) -> None:
        with self._lock:
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None

    def close(self) -> None:
        """Cancel the pending timer and refuse further triggers."""
        with self._lock:
            self._closed = True
            if self._timer is not None:
                self._timer.cancel()
                self._timer = None

    def _fire(self) -> None:
        with self._lock:
            if self._timer is None or threading.current_thread() is not self._timer:
                return  # superseded by a later trigger
            self._timer = None
        self.callback()
