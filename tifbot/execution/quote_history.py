"""
Quote observations and a bounded trailing history for price statistics.

History is for reporting only; fill decisions never read it.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, Optional

from tifbot.core.utils import now_ms

DEFAULT_HISTORY_SIZE = 100


@dataclass(frozen=True)
class Quote:
    """Point-in-time quote: output_amount for input_amount."""
    timestamp_ms: int
    input_amount: int
    output_amount: int

    @property
    def rate(self) -> float:
        if self.input_amount == 0:
            return 0.0
        return self.output_amount / self.input_amount


@dataclass
class QuoteHistory:
    """Trailing window of quotes (oldest dropped first)."""
    max_size: int = DEFAULT_HISTORY_SIZE
    _quotes: Deque[Quote] = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self._quotes = deque(maxlen=self.max_size)

    def __len__(self) -> int:
        return len(self._quotes)

    def record(self, input_amount: int, output_amount: int) -> Quote:
        quote = Quote(timestamp_ms=now_ms(), input_amount=input_amount, output_amount=output_amount)
        self._quotes.append(quote)
        return quote

    @property
    def latest(self) -> Optional[Quote]:
        return self._quotes[-1] if self._quotes else None

    @property
    def min_rate(self) -> float:
        return min((q.rate for q in self._quotes), default=0.0)

    @property
    def max_rate(self) -> float:
        return max((q.rate for q in self._quotes), default=0.0)

    @property
    def avg_rate(self) -> float:
        if not self._quotes:
            return 0.0
        return sum(q.rate for q in self._quotes) / len(self._quotes)

    def change_pct(self) -> float:
        """Percent change of output between the last two quotes (0.0 if unknown)."""
        if len(self._quotes) < 2:
            return 0.0
        prev, last = self._quotes[-2], self._quotes[-1]
        if prev.output_amount == 0 or last.output_amount == 0:
            return 0.0
        return (last.output_amount - prev.output_amount) / prev.output_amount * 100.0

    def is_above(self, target_rate: float) -> bool:
        latest = self.latest
        if latest is None:
            return False
        return latest.rate >= target_rate

    def stats(self) -> Dict[str, Any]:
        return {
            "samples": len(self._quotes),
            "min_rate": self.min_rate,
            "max_rate": self.max_rate,
            "avg_rate": self.avg_rate,
        }
