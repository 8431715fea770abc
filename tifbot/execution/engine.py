"""
OrderEngine: admission, dispatch and per-order isolation.

The engine owns the order collection. While an order runs, its strategy
has exclusive access to its execution state; the engine only reads the
final state. One order's exception never aborts the others.
"""

from __future__ import annotations

import asyncio
import logging
import traceback
from typing import Any, Dict, List, Optional, Set

from tifbot.core.errors import OrderValidationError
from tifbot.execution.order import Order, OrderStatus, TimeInForce
from tifbot.execution.policies import (
    POLICIES,
    REASON_CANCELED_EXTERNALLY,
    PolicyConfig,
    PolicyContext,
    get_policy,
)
from tifbot.execution.quote_history import QuoteHistory
from tifbot.infra.logging_cfg import log_event
from tifbot.monitoring.metrics import EngineMetrics
from tifbot.venue.base import QuoteSource, SettlementSubmitter

log = logging.getLogger("tifbot")


def validate_order(order: Order) -> None:
    """
    Reject malformed order terms.

    Raises:
        OrderValidationError: with a human-readable reason
    """
    if not isinstance(order.tif, TimeInForce) or order.tif not in POLICIES:
        raise OrderValidationError(f"Unsupported TIF policy: {order.tif!r}")
    if not isinstance(order.input_amount, int) or order.input_amount <= 0:
        raise OrderValidationError(f"input_amount must be a positive integer, got {order.input_amount!r}")
    if not order.limit_price > 0:
        raise OrderValidationError(f"limit_price must be > 0, got {order.limit_price!r}")
    if not 0 <= order.slippage_tolerance < 1:
        raise OrderValidationError(
            f"slippage_tolerance must be in [0, 1), got {order.slippage_tolerance!r}"
        )
    if order.input_index == order.output_index:
        raise OrderValidationError("input and output token indices must differ")
    if order.input_index < 0 or order.output_index < 0:
        raise OrderValidationError("token indices must be >= 0")
    if order.status is not OrderStatus.PENDING:
        raise OrderValidationError(f"order must be PENDING to be admitted, got {order.status_string}")
    if order.tif is TimeInForce.GTT and order.expiry_time_ms is None:
        raise OrderValidationError("GTT order requires an expiry time")


class OrderEngine:
    """
    Runs admitted orders through their time-in-force strategies.

    Orders run concurrently (one task each) or sequentially; results do not
    depend on which. The collaborators are shared by all order tasks and
    must tolerate concurrent calls (wrap them in the Serialized* adapters
    otherwise).
    """

    def __init__(
        self,
        quotes: QuoteSource,
        settlement: SettlementSubmitter,
        config: Optional[PolicyConfig] = None,
        concurrent: bool = True,
        metrics: Optional[EngineMetrics] = None,
        history_size: int = 100,
    ) -> None:
        self.quotes = quotes
        self.settlement = settlement
        self.config = config or PolicyConfig()
        self.concurrent = concurrent
        self.metrics = metrics
        self._history_size = history_size

        self._orders: Dict[str, Order] = {}
        self._admission_order: List[str] = []
        self._cancel_events: Dict[str, asyncio.Event] = {}
        self._histories: Dict[str, QuoteHistory] = {}
        self._running: Set[str] = set()
        self._results: Dict[str, OrderStatus] = {}
        self._lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Admission
    # ------------------------------------------------------------------

    async def admit(self, order: Order) -> Order:
        """
        Validate and enqueue an order, moving it to ACTIVE.

        Raises:
            OrderValidationError: malformed terms or duplicate order id
        """
        async with self._lock:
            try:
                if order.order_id in self._orders:
                    raise OrderValidationError(f"duplicate order id: {order.order_id}")
                validate_order(order)
            except OrderValidationError as exc:
                if self.metrics:
                    self.metrics.orders_rejected.labels(reason=type(exc).__name__).inc()
                log_event(log, "order_rejected", level=logging.WARNING,
                          order_id=order.order_id, err=str(exc))
                raise
            order.update_status(OrderStatus.ACTIVE)
            self._orders[order.order_id] = order
            self._admission_order.append(order.order_id)
            self._cancel_events[order.order_id] = asyncio.Event()
            self._histories[order.order_id] = QuoteHistory(max_size=self._history_size)

        if self.metrics:
            self.metrics.orders_admitted.labels(tif=order.tif_string).inc()
        log_event(log, "order_admitted", **order.summary())
        return order

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def run_all(self) -> List[Dict[str, Any]]:
        """
        Run every admitted, non-terminal, not-yet-running order to completion.

        A GTT order whose deadline passed before it was dispatched still
        runs, so its strategy can mark it EXPIRED.

        Returns:
            Final summaries in admission order
        """
        async with self._lock:
            batch = [
                self._orders[oid] for oid in self._admission_order
                if oid not in self._running and not self._orders[oid].is_terminal()
            ]
            for order in batch:
                self._running.add(order.order_id)

        log_event(log, "engine_start", orders=len(batch), concurrent=self.concurrent)
        if self.concurrent:
            await asyncio.gather(*(self._run_isolated(o) for o in batch), return_exceptions=True)
        else:
            for order in batch:
                await self._run_isolated(order)
        return [o.summary() for o in batch]

    async def run_order(self, order_id: str) -> OrderStatus:
        """Run a single admitted order. Returns its final status."""
        async with self._lock:
            order = self._orders.get(order_id)
            if order is None:
                raise KeyError(order_id)
            if order_id in self._running or order.is_terminal():
                return order.status
            self._running.add(order_id)
        await self._run_isolated(order)
        return order.status

    async def _run_isolated(self, order: Order) -> None:
        cancel_event = self._cancel_events[order.order_id]
        ctx = PolicyContext(
            quotes=self.quotes,
            settlement=self.settlement,
            config=self.config,
            cancel_event=cancel_event,
            metrics=self.metrics,
            history=self._histories[order.order_id],
        )
        try:
            if cancel_event.is_set():
                order.update_status(OrderStatus.CANCELED, REASON_CANCELED_EXTERNALLY)
            else:
                runner = get_policy(order.tif)
                await runner(order, ctx)
        except asyncio.CancelledError:
            if order.status is OrderStatus.ACTIVE:
                order.update_status(OrderStatus.CANCELED, REASON_CANCELED_EXTERNALLY)
            raise
        except Exception as exc:
            tb = traceback.format_exc()
            log_event(log, "order_run_error", level=logging.ERROR, order_id=order.order_id,
                      err=str(exc), traceback=tb)
            if not order.is_terminal():
                order.update_status(OrderStatus.FAILED, str(exc) or type(exc).__name__)
        finally:
            if order.status is OrderStatus.ACTIVE:
                order.update_status(OrderStatus.FAILED, "strategy returned without a terminal status")
            self._record_final(order)

    def _record_final(self, order: Order) -> None:
        self._running.discard(order.order_id)
        self._results[order.order_id] = order.status
        if self.metrics:
            self.metrics.orders_final.labels(tif=order.tif_string, status=order.status_string).inc()
            self.metrics.order_quote_count.observe(order.quote_count)
        history = self._histories.get(order.order_id)
        log_event(log, "order_final", **order.summary(),
                  **({"quote_stats": history.stats()} if history and len(history) else {}))

    # ------------------------------------------------------------------
    # Cancellation
    # ------------------------------------------------------------------

    async def cancel(self, order_id: str) -> bool:
        """
        Request cancellation.

        A running order stops before its next quote. An admitted order
        that is not running is canceled immediately.

        Returns:
            False if the order is unknown or already terminal
        """
        async with self._lock:
            order = self._orders.get(order_id)
            if order is None or order.is_terminal():
                return False
            self._cancel_events[order_id].set()
            if order_id not in self._running:
                order.update_status(OrderStatus.CANCELED, REASON_CANCELED_EXTERNALLY)
                self._results[order_id] = order.status
        log_event(log, "order_cancel_requested", order_id=order_id)
        return True

    async def cancel_all(self) -> int:
        async with self._lock:
            ids = [oid for oid, o in self._orders.items() if not o.is_terminal()]
        count = 0
        for oid in ids:
            if await self.cancel(oid):
                count += 1
        return count

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    async def get(self, order_id: str) -> Optional[Order]:
        async with self._lock:
            return self._orders.get(order_id)

    async def snapshot(self) -> Dict[str, Dict[str, Any]]:
        async with self._lock:
            return {oid: self._orders[oid].summary() for oid in self._admission_order}

    def quote_history(self, order_id: str) -> Optional[QuoteHistory]:
        return self._histories.get(order_id)

    @property
    def results(self) -> Dict[str, OrderStatus]:
        return dict(self._results)
