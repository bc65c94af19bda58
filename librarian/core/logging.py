"""
librarian.core.logging -- Logging setup for the CLI and the watcher daemon.

Provides a JSON formatter for stdlib logging.  When enabled, all
``librarian.*`` loggers emit machine-parseable JSON lines instead of
human-readable text, which is what you want when the watcher runs under
a process supervisor.

Usage::

    from librarian.core.logging import configure_logging

    configure_logging(structured=True, level="INFO")

Cycle-scoped context travels through ``extra``::

    log.info("Memory updated", extra={"revision": head, "cycle": n})
"""

from __future__ import annotations

import json
import logging
import sys
from pathlib import Path
from typing import Optional

#: LogRecord attributes copied into structured output when present.
CONTEXT_FIELDS = ("revision", "cycle", "outcome", "chunks")

TEXT_FORMAT = "%(asctime)s %(name)s %(levelname)s %(message)s"


class StructuredFormatter(logging.Formatter):
    """Formats log records as single-line JSON objects.

    Fields emitted:
      - ``ts``: ISO-8601 timestamp
      - ``level``: log level name
      - ``logger``: logger name
      - ``msg``: formatted message
      - ``func`` / ``line``: call site
      - any of ``revision``, ``cycle``, ``outcome``, ``chunks`` passed via
        ``extra``

    If the record carries ``exc_info``, the formatted traceback is
    included as ``exception``.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": self.formatTime(record, datefmt="%Y-%m-%dT%H:%M:%S")
            + f".{int(record.msecs):03d}Z",
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "func": record.funcName,
            "line": record.lineno,
        }
        for name in CONTEXT_FIELDS:
            value = getattr(record, name, None)
            if value is not None:
                entry[name] = value

        if record.exc_info and record.exc_info[1] is not None:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str)


def configure_logging(
    structured: bool = False,
    level: str = "INFO",
    log_file: Optional[Path] = None,
    logger_name: str = "librarian",
) -> logging.Logger:
    """Configure librarian's logging subsystem.

    Parameters
    ----------
    structured:
        Emit JSON lines via ``StructuredFormatter`` instead of plain text.
    level:
        Log level name (``"DEBUG"``, ``"INFO"``, ...).
    log_file:
        Optional file that receives the same records as stderr.
    logger_name:
        Logger to configure (default ``"librarian"``).

    Returns the configured logger.  Calling this again replaces the
    handlers it installed previously.
    """
    root = logging.getLogger(logger_name)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
    root.handlers.clear()

    formatter: logging.Formatter
    if structured:
        formatter = StructuredFormatter()
    else:
        formatter = logging.Formatter(TEXT_FORMAT)

    stream = logging.StreamHandler(sys.stderr)
    stream.setFormatter(formatter)
    root.addHandler(stream)

    if log_file is not None:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    # Our handlers are authoritative; avoid duplicates via the root logger.
    root.propagate = False
    return root
