"""
librarian.core.tokens -- Token estimation utilities.

Kept in its own module so the chunker and summarizer can size work
without importing anything else.

The estimate is a fixed ``ceil(chars / 4)`` heuristic.  It is only
used for sizing decisions (whether a diff fits one generation call,
where to cut chunks), never for billing, so it needs to be cheap,
deterministic and monotonic rather than tokenizer-exact.
"""

from __future__ import annotations

import math

#: Characters per token assumed by the heuristic.
CHARS_PER_TOKEN = 4


def estimate_tokens(text: str) -> int:
    """Estimate the number of tokens in *text*.

    Returns 0 for empty text, otherwise ``ceil(len(text) / 4)``.
    """
    return tokens_for_chars(len(text)) if text else 0


def tokens_for_chars(chars: int) -> int:
    """Token estimate for a text of *chars* characters."""
    if chars <= 0:
        return 0
    return math.ceil(chars / CHARS_PER_TOKEN)


def fits_budget(text: str, budget: int, ratio: float = 1.0) -> bool:
    """Return True if *text* stays strictly under ``ratio * budget`` tokens."""
    return estimate_tokens(text) < budget * ratio


def count_words(text: str) -> int:
    """Whitespace-delimited word count (used for the document soft cap)."""
    return len(text.split())
