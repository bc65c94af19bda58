"""
librarian.core.types -- Shared type aliases and small value objects.

Every structure here is a plain dataclass: no magic, serialisable to a
dict in one call.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Dict

# ---------------------------------------------------------------------------
# Thinking levels
# ---------------------------------------------------------------------------

#: Cheap, fast model tier used for routine per-commit summaries and merges.
FLASH = "flash"
#: Stronger model tier used for architecture inference.
PRO = "pro"

THINKING_LEVELS = frozenset({FLASH, PRO})


# ---------------------------------------------------------------------------
# Generator capability
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class GenerationOptions:
    """Per-call knobs passed to the generator."""

    thinking_level: str = FLASH
    max_tokens: int = 8192
    temperature: float = 0.3
    feature: str = "librarian"

    def __post_init__(self) -> None:
        if self.thinking_level not in THINKING_LEVELS:
            raise ValueError(
                f"Invalid thinking level {self.thinking_level!r}; "
                f"expected one of {sorted(THINKING_LEVELS)}"
            )

    def to_dict(self) -> Dict:
        return {
            "thinking_level": self.thinking_level,
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,
            "feature": self.feature,
        }


#: Canonical type for generator callables throughout librarian.
#: Signature: ``(prompt: str, system: str, options: GenerationOptions) -> str``
#: Failures are raised as ``GenerationError``.
Generator = Callable[[str, str, GenerationOptions], str]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def now_iso() -> str:
    """Current UTC timestamp in ISO-8601 with Z suffix."""
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def today() -> str:
    """Current local date as ``YYYY-MM-DD`` (used in prompts)."""
    return datetime.now().strftime("%Y-%m-%d")
