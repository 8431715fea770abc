"""
Offline collaborators: fixed-rate or scripted quoting and dry-run settlement.

Used when mock pricing is enabled, when on-chain execution is disabled,
and throughout the test suite.
"""

from __future__ import annotations

import json
import logging
import math
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Union

from tifbot.core.errors import QuoteUnavailable, SettlementFailed
from tifbot.venue.curve_pool import build_exchange_calldata

log = logging.getLogger("tifbot")

MOCK_TX_HASH = "0x" + "f" * 64

# A scripted step is an output amount or an exception to raise
ScriptStep = Union[int, Exception]


@dataclass
class QuoteCall:
    pool: str
    i: int
    j: int
    amount: int


class MockQuoteSource:
    """
    Quotes amount * rate, or replays a script.

    With a script, each call consumes one step; once exhausted the last
    step repeats. Exceptions in the script are raised as-is.
    """

    def __init__(self, rate: float = 0.999, script: Optional[Iterable[ScriptStep]] = None) -> None:
        self.rate = rate
        self._script: List[ScriptStep] = list(script) if script is not None else []
        self._pos = 0
        self.calls: List[QuoteCall] = []

    async def quote(self, pool: str, i: int, j: int, amount: int) -> int:
        self.calls.append(QuoteCall(pool, i, j, amount))
        if not self._script:
            return math.floor(amount * self.rate)
        step = self._script[min(self._pos, len(self._script) - 1)]
        self._pos += 1
        if isinstance(step, Exception):
            raise step
        return step


@dataclass
class Submission:
    pool: str
    i: int
    j: int
    amount: int
    min_output: int
    calldata: str


@dataclass
class DryRunSettlementSubmitter:
    """
    Records submissions and returns a mock transaction hash.

    Builds the pool exchange() calldata for the log but never signs or
    broadcasts it.
    """
    receiver: str = "0x" + "0" * 40
    fail_with: Optional[str] = None
    submissions: List[Submission] = field(default_factory=list)

    async def submit(self, pool: str, i: int, j: int, amount: int, min_output: int) -> str:
        if self.fail_with is not None:
            raise SettlementFailed(self.fail_with)
        calldata = build_exchange_calldata(i, j, amount, min_output, self.receiver)
        self.submissions.append(Submission(pool, i, j, amount, min_output, calldata))
        log.info(json.dumps({
            "event": "settlement_dry_run",
            "pool": pool,
            "i": i,
            "j": j,
            "amount": amount,
            "min_output": min_output,
        }))
        return MOCK_TX_HASH


def failing_quote(message: str = "upstream unavailable") -> QuoteUnavailable:
    """Convenience for scripts: MockQuoteSource(script=[failing_quote(), 1000])."""
    return QuoteUnavailable(message)
