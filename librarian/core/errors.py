"""
librarian.core.errors -- Exception hierarchy.

Recoverable history anomalies (``RangeUnavailableError``) are handled
inside the changeset source.  Everything else propagates to the cycle
boundary, where the watcher logs it and leaves the watermark alone so
the same revision is retried on the next signal.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional


class LibrarianError(Exception):
    """Base class for all librarian errors."""


# ---------------------------------------------------------------------------
# Version control
# ---------------------------------------------------------------------------


class ChangesetError(LibrarianError):
    """A git command failed for a reason other than a history anomaly."""

    def __init__(self, command: str, message: str, returncode: int = 0) -> None:
        super().__init__(f"git {command} failed: {message}")
        self.command = command
        self.returncode = returncode


class NoCommitsError(LibrarianError):
    """The repository has no commits yet (unborn branch)."""

    def __init__(self, message: str = "No commits found in repository") -> None:
        super().__init__(message)


class RangeUnavailableError(LibrarianError):
    """A revision range cannot be represented (missing or shallow history)."""

    def __init__(self, from_rev: str, to_rev: str) -> None:
        super().__init__(f"Revision range {from_rev[:12]}..{to_rev[:12]} is unavailable")
        self.from_rev = from_rev
        self.to_rev = to_rev


# ---------------------------------------------------------------------------
# Generation
# ---------------------------------------------------------------------------


class GenerationFailure(Enum):
    """Why a generation call failed; decides whether it is retried."""

    TRANSIENT = "transient"  # network hiccup, 5xx, empty response
    RATE_LIMIT = "rate_limit"  # 429, retry with backoff
    AUTHENTICATION = "authentication"  # bad or missing credentials
    CONTENT_SAFETY = "content_safety"  # provider refused the content
    CONFIGURATION = "configuration"  # unknown provider, bad request shape


_RETRYABLE = frozenset({GenerationFailure.TRANSIENT, GenerationFailure.RATE_LIMIT})


class GenerationError(LibrarianError):
    """The external generator failed to produce a document."""

    def __init__(
        self,
        category: GenerationFailure,
        message: str,
        provider: Optional[str] = None,
        attempts: int = 1,
    ) -> None:
        prefix = f"[{provider}] " if provider else ""
        super().__init__(f"{prefix}[{category.name}] {message}")
        self.category = category
        self.reason = message
        self.provider = provider
        self.attempts = attempts

    @property
    def retryable(self) -> bool:
        return self.category in _RETRYABLE


# ---------------------------------------------------------------------------
# Memory document
# ---------------------------------------------------------------------------


class MemorySchemaError(LibrarianError):
    """A document is missing required sections and must not be persisted."""

    def __init__(self, missing: list[str]) -> None:
        if missing:
            detail = "missing required sections: " + ", ".join(missing)
        else:
            detail = "document is empty"
        super().__init__(f"Invalid memory document structure: {detail}")
        self.missing = list(missing)


class ConflictResolutionError(LibrarianError):
    """Automated conflict-marker resolution did not produce a clean document."""
