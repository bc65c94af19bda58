"""
librarian.generation.retry -- Bounded retry with exponential backoff.

Transient generator failures (network errors, 5xx, rate limits, empty
responses) are retried: three attempts with delays doubling from one
second.  Authentication, configuration and content-safety failures are
raised on the first occurrence since retrying them only burns quota.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Optional

from librarian.core.errors import GenerationError, GenerationFailure
from librarian.core.types import GenerationOptions, Generator

log = logging.getLogger(__name__)


class RetryingGenerator:
    """Wrap a generator callable with the retry policy.

    Parameters
    ----------
    generate:
        The underlying ``(prompt, system, options) -> str`` callable.
    max_attempts:
        Total attempts including the first (default 3).
    base_delay:
        Delay before the second attempt, doubled for each later one
        (default 1.0 s).
    sleep:
        Injected for tests; defaults to ``time.sleep``.
    """

    def __init__(
        self,
        generate: Generator,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        sleep: Optional[Callable[[float], None]] = None,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.generate = generate
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self._sleep = sleep or time.sleep

    def delay_for(self, attempt: int) -> float:
        """Backoff before retrying after the zero-based *attempt*."""
        return self.base_delay * (2**attempt)

    def __call__(self, prompt: str, system: str, options: GenerationOptions) -> str:
        last_error: Optional[GenerationError] = None

        for attempt in range(self.max_attempts):
            try:
                text = self.generate(prompt, system, options)
                if not text or not text.strip():
                    raise GenerationError(
                        GenerationFailure.TRANSIENT, "Empty response from generator"
                    )
                return text
            except GenerationError as exc:
                if not exc.retryable:
                    exc.attempts = attempt + 1
                    raise
                last_error = exc
            except (OSError, TimeoutError) as exc:
                last_error = GenerationError(GenerationFailure.TRANSIENT, str(exc))

            if attempt < self.max_attempts - 1:
                delay = self.delay_for(attempt)
                log.warning(
                    "Generation attempt %d/%d failed (%s); retrying in %.1fs",
                    attempt + 1,
                    self.max_attempts,
                    last_error,
                    delay,
                )
                self._sleep(delay)

        assert last_error is not None
        raise GenerationError(
            last_error.category,
            f"failed after {self.max_attempts} attempts: {last_error.reason}",
            provider=last_error.provider,
            attempts=self.max_attempts,
        ) from last_error
