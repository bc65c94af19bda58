"""
librarian.generation.usage -- Token usage accounting.

Two layers:

- ``llm_usage``: an in-process accumulator updated by every provider
  call, cheap enough to consult from anywhere.
- ``UsageLedger``: a persisted per-call log in
  ``.librarian/token-usage.json`` that out-of-process readers (the
  dashboard) consume.  Written with atomic replace so readers never see
  a torn file.
"""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List

from librarian.core.fileio import atomic_write_json
from librarian.core.types import now_iso

log = logging.getLogger(__name__)

#: Entries retained in the persisted ledger.
MAX_LEDGER_ENTRIES = 1000


class LLMUsageTracker:
    """Accumulates token usage across calls in this process.

    Call ``snapshot()`` to get current totals without resetting.
    """

    __slots__ = ("total_calls", "total_input_tokens", "total_output_tokens", "_lock")

    def __init__(self) -> None:
        self.total_calls: int = 0
        self.total_input_tokens: int = 0
        self.total_output_tokens: int = 0
        self._lock = threading.Lock()

    def record(self, input_tokens: int, output_tokens: int) -> None:
        with self._lock:
            self.total_calls += 1
            self.total_input_tokens += input_tokens
            self.total_output_tokens += output_tokens

    def snapshot(self) -> Dict[str, int]:
        with self._lock:
            return {
                "total_calls": self.total_calls,
                "total_input_tokens": self.total_input_tokens,
                "total_output_tokens": self.total_output_tokens,
                "total_tokens": self.total_input_tokens + self.total_output_tokens,
            }


# Singleton tracker, importable by other modules for inspection
llm_usage = LLMUsageTracker()


@dataclass
class UsageEntry:
    """One generator call."""

    feature: str
    model: str
    provider: str
    input_tokens: int
    output_tokens: int
    timestamp: str = field(default_factory=now_iso)

    def to_dict(self) -> Dict:
        return {
            "timestamp": self.timestamp,
            "feature": self.feature,
            "model": self.model,
            "provider": self.provider,
            "inputTokens": self.input_tokens,
            "outputTokens": self.output_tokens,
        }

    @classmethod
    def from_dict(cls, d: Dict) -> "UsageEntry":
        return cls(
            feature=d.get("feature", "librarian"),
            model=d.get("model", ""),
            provider=d.get("provider", ""),
            input_tokens=int(d.get("inputTokens", 0)),
            output_tokens=int(d.get("outputTokens", 0)),
            timestamp=d.get("timestamp", now_iso()),
        )


class UsageLedger:
    """Persisted log of generator calls."""

    def __init__(self, path: Path, max_entries: int = MAX_LEDGER_ENTRIES) -> None:
        self.path = Path(path)
        self.max_entries = max_entries
        self._lock = threading.Lock()

    def entries(self) -> List[UsageEntry]:
        if not self.path.exists():
            return []
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            log.warning("Unreadable usage ledger %s: %s", self.path, exc)
            return []
        if not isinstance(raw, list):
            return []
        return [UsageEntry.from_dict(d) for d in raw if isinstance(d, dict)]

    def record(
        self,
        feature: str,
        model: str,
        provider: str,
        input_tokens: int,
        output_tokens: int,
    ) -> UsageEntry:
        entry = UsageEntry(
            feature=feature,
            model=model,
            provider=provider,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
        )
        with self._lock:
            entries = self.entries()
            entries.append(entry)
            entries = entries[-self.max_entries :]
            atomic_write_json(self.path, [e.to_dict() for e in entries])
        return entry

    def summary(self) -> Dict:
        """Totals overall and per feature."""
        by_feature: Dict[str, Dict[str, int]] = {}
        total_in = total_out = 0
        entries = self.entries()
        for e in entries:
            bucket = by_feature.setdefault(e.feature, {"calls": 0, "tokens": 0})
            bucket["calls"] += 1
            bucket["tokens"] += e.input_tokens + e.output_tokens
            total_in += e.input_tokens
            total_out += e.output_tokens
        return {
            "calls": len(entries),
            "input_tokens": total_in,
            "output_tokens": total_out,
            "total_tokens": total_in + total_out,
            "by_feature": by_feature,
        }
