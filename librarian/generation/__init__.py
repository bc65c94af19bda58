"""librarian.generation -- Retry policy and token usage accounting for generator calls."""

from librarian.generation.retry import RetryingGenerator
from librarian.generation.usage import LLMUsageTracker, UsageEntry, UsageLedger, llm_usage

__all__ = ["RetryingGenerator", "LLMUsageTracker", "UsageEntry", "UsageLedger", "llm_usage"]
