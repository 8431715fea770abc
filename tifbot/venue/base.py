"""
Collaborator contracts consumed by the execution layer.

QuoteSource and SettlementSubmitter are the only outside services the
strategies talk to. Wrappers here add a per-call timeout and optional
serialization for transports that are not safe for concurrent use.
"""

from __future__ import annotations

import asyncio
from typing import Protocol

from tifbot.core.errors import QuoteUnavailable, SettlementFailed


class QuoteSource(Protocol):
    """Returns the output amount for swapping amount of token i into token j."""

    async def quote(self, pool: str, i: int, j: int, amount: int) -> int: ...


class SettlementSubmitter(Protocol):
    """Executes an accepted fill and returns a settlement reference."""

    async def submit(self, pool: str, i: int, j: int, amount: int, min_output: int) -> str: ...


class TimeoutQuoteSource:
    """Enforces a per-call timeout; a timeout surfaces as QuoteUnavailable."""

    def __init__(self, inner: QuoteSource, timeout: float) -> None:
        self._inner = inner
        self._timeout = timeout

    async def quote(self, pool: str, i: int, j: int, amount: int) -> int:
        try:
            return await asyncio.wait_for(self._inner.quote(pool, i, j, amount), timeout=self._timeout)
        except asyncio.TimeoutError:
            raise QuoteUnavailable(f"quote timed out after {self._timeout}s") from None


class TimeoutSettlementSubmitter:
    """
    Enforces a per-call timeout on settlement.

    A timed-out submission may still land on chain; callers must not
    resubmit on SettlementFailed.
    """

    def __init__(self, inner: SettlementSubmitter, timeout: float) -> None:
        self._inner = inner
        self._timeout = timeout

    async def submit(self, pool: str, i: int, j: int, amount: int, min_output: int) -> str:
        try:
            return await asyncio.wait_for(
                self._inner.submit(pool, i, j, amount, min_output), timeout=self._timeout
            )
        except asyncio.TimeoutError:
            raise SettlementFailed(f"settlement timed out after {self._timeout}s") from None


class SerializedQuoteSource:
    """Allows one in-flight quote at a time across all orders."""

    def __init__(self, inner: QuoteSource, lock: asyncio.Lock | None = None) -> None:
        self._inner = inner
        self._lock = lock or asyncio.Lock()

    async def quote(self, pool: str, i: int, j: int, amount: int) -> int:
        async with self._lock:
            return await self._inner.quote(pool, i, j, amount)


class SerializedSettlementSubmitter:
    """Allows one in-flight settlement at a time across all orders."""

    def __init__(self, inner: SettlementSubmitter, lock: asyncio.Lock | None = None) -> None:
        self._inner = inner
        self._lock = lock or asyncio.Lock()

    async def submit(self, pool: str, i: int, j: int, amount: int, min_output: int) -> str:
        async with self._lock:
            return await self._inner.submit(pool, i, j, amount, min_output)
