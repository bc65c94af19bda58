"""
librarian.core.fileio -- Atomic file replacement.

Readers of the memory document and the state file (the dashboard, a
second terminal running ``librarian status``) must see either the old
content or the new content in full.  Writes therefore go to a temporary
file in the same directory, are flushed to disk, and are then swapped
in with ``os.replace``, which is atomic on POSIX and Windows.
"""

from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path
from typing import Any


def atomic_write_text(path: Path, text: str, encoding: str = "utf-8") -> None:
    """Replace *path* with *text* without ever exposing a partial write."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    fd, tmp_name = tempfile.mkstemp(
        prefix=f".{path.name}.", suffix=".tmp", dir=str(path.parent)
    )
    try:
        with os.fdopen(fd, "w", encoding=encoding, newline="") as fh:
            fh.write(text)
            fh.flush()
            os.fsync(fh.fileno())
        if path.exists():
            os.chmod(tmp_name, path.stat().st_mode & 0o777)
        os.replace(tmp_name, path)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except FileNotFoundError:
            pass
        raise


def atomic_write_json(path: Path, data: Any) -> None:
    """Serialise *data* as indented JSON and replace *path* atomically."""
    atomic_write_text(Path(path), json.dumps(data, indent=2) + "\n")
