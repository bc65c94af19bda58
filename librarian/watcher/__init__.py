"""
librarian.watcher -- Change detection for the memory synchronizer.

Provides:
  - state: persisted watermark and processing flag
  - debounce: single-slot resettable timer
  - watcher: watchdog-driven cycle scheduler (``ChangeWatcher``)
"""
