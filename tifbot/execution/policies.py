"""
Time-in-force policy strategies.

Each strategy drives one ACTIVE order to a terminal status using the
quote source, the fill evaluator and the settlement submitter:

- GTC: poll until filled, canceled, or the monitoring budget runs out
- GTT: poll until filled, canceled, or the deadline passes
- IOC: one evaluation; fill, (partially fill), or cancel
- FOK: price check plus liquidity probe; fill everything or kill

Dispatch is a closed mapping from TimeInForce to strategy.

Error policy:
    Quote errors are transient for GTC/GTT (back off, retry, optionally
    bounded by max_consecutive_errors) and fatal for IOC/FOK.
    Settlement errors always end the order as FAILED and are never
    resubmitted.
"""

from __future__ import annotations

import asyncio
import logging
import math
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, Optional

from tifbot.core.errors import OrderValidationError, QuoteUnavailable, SettlementFailed
from tifbot.execution.fill_evaluator import (
    FullFill,
    NoFill,
    PartialFill,
    Reject,
    evaluate,
    get_min_output_with_slippage,
)
from tifbot.execution.order import Order, OrderStatus, TimeInForce
from tifbot.execution.quote_history import QuoteHistory
from tifbot.infra.logging_cfg import log_event
from tifbot.monitoring.metrics import EngineMetrics
from tifbot.risk.error_streak import ErrorStreak
from tifbot.venue.base import QuoteSource, SettlementSubmitter

log = logging.getLogger("tifbot")

REASON_CANCELED_EXTERNALLY = "canceled externally"
REASON_MONITORING_LIMIT = "iteration/monitoring limit reached"
REASON_EXPIRED = "order expired"
REASON_PARTIAL_FILL = "Partial fill executed"
REASON_IOC_NOT_MET = "Price not met for any execution"
REASON_FOK_PRICE = "FOK: price not met, order killed"
REASON_FOK_LIQUIDITY = "FOK: insufficient liquidity for full order"


@dataclass
class PolicyConfig:
    """Operational knobs for the strategies. None of these change TIF semantics."""
    poll_interval_sec: float = 2.0
    error_backoff_sec: float = 5.0
    # GTC safety bound on successful quotes; 0 or None means run until canceled
    gtc_max_checks: Optional[int] = 10
    # Consecutive quote errors GTC/GTT tolerate; one more fails the order. 0 means unlimited
    max_consecutive_errors: int = 0
    liquidity_check_enabled: bool = True
    liquidity_probe_multiplier: float = 1.01


@dataclass
class PolicyContext:
    """Everything a strategy may touch besides the order itself."""
    quotes: QuoteSource
    settlement: SettlementSubmitter
    config: PolicyConfig = field(default_factory=PolicyConfig)
    cancel_event: asyncio.Event = field(default_factory=asyncio.Event)
    metrics: Optional[EngineMetrics] = None
    history: QuoteHistory = field(default_factory=QuoteHistory)

    @property
    def cancel_requested(self) -> bool:
        return self.cancel_event.is_set()


PolicyRunner = Callable[[Order, PolicyContext], Awaitable[OrderStatus]]


# ----------------------------------------------------------------------
# Shared steps
# ----------------------------------------------------------------------

async def _fetch_quote(order: Order, ctx: PolicyContext, amount: int) -> int:
    """Quote amount without recording it as an observation."""
    try:
        output = await ctx.quotes.quote(order.pool, order.input_index, order.output_index, amount)
    except QuoteUnavailable:
        if ctx.metrics:
            ctx.metrics.quote_errors.labels(tif=order.tif_string).inc()
        raise
    if ctx.metrics:
        ctx.metrics.quotes.labels(tif=order.tif_string).inc()
    return output


async def _observe_quote(order: Order, ctx: PolicyContext) -> int:
    """Quote the full input amount and record it on the order."""
    output = await _fetch_quote(order, ctx, order.input_amount)
    order.record_quote(output)
    ctx.history.record(order.input_amount, output)
    log_event(
        log, "quote", level=logging.DEBUG,
        order_id=order.order_id,
        check=order.quote_count,
        output=output,
        expected=order.min_output_amount,
        rate=output / order.input_amount if order.input_amount else 0.0,
        change_pct=round(ctx.history.change_pct(), 6),
    )
    return output


async def _settle(order: Order, ctx: PolicyContext, amount: int, quoted_output: int) -> str:
    min_output = get_min_output_with_slippage(order, quoted_output)
    log_event(
        log, "settlement_submit",
        order_id=order.order_id,
        amount=amount,
        quoted_output=quoted_output,
        min_output=min_output,
    )
    try:
        ref = await ctx.settlement.submit(
            order.pool, order.input_index, order.output_index, amount, min_output
        )
    except SettlementFailed:
        if ctx.metrics:
            ctx.metrics.settlement_errors.labels(tif=order.tif_string).inc()
        raise
    if ctx.metrics:
        ctx.metrics.settlements.labels(tif=order.tif_string).inc()
    return ref


async def _fill_remaining(order: Order, ctx: PolicyContext, quoted_output: int) -> OrderStatus:
    amount = order.remaining_amount
    ref = await _settle(order, ctx, amount, quoted_output)
    order.record_fill(amount, quoted_output, ref, OrderStatus.FILLED)
    log_event(log, "fill", order_id=order.order_id, tif=order.tif_string,
              filled=amount, received=quoted_output, settlement_ref=ref)
    return order.status


def _fail(order: Order, exc: BaseException) -> OrderStatus:
    reason = str(exc) or type(exc).__name__
    if not order.is_terminal():
        order.update_status(OrderStatus.FAILED, reason)
    log_event(log, "order_failed", level=logging.ERROR, order_id=order.order_id,
              tif=order.tif_string, err=reason)
    return order.status


async def _pause(ctx: PolicyContext, seconds: float) -> None:
    """Sleep up to seconds; returns early when cancellation is requested."""
    if seconds <= 0:
        return
    try:
        await asyncio.wait_for(ctx.cancel_event.wait(), timeout=seconds)
    except asyncio.TimeoutError:
        pass


def _until_expiry(order: Order, seconds: float) -> float:
    remaining = order.time_to_expiry_sec()
    if remaining is None:
        return seconds
    return min(seconds, remaining)


# ----------------------------------------------------------------------
# Monitoring policies
# ----------------------------------------------------------------------

async def run_gtc(order: Order, ctx: PolicyContext) -> OrderStatus:
    """
    Good-Till-Canceled.

    Only successful quotes count against gtc_max_checks. Exhausting the
    budget cancels the order; it is an operational bound, not part of GTC.
    """
    cfg = ctx.config
    budget = cfg.gtc_max_checks or 0
    streak = ErrorStreak(cfg.max_consecutive_errors, order_id=order.order_id)
    checks = 0

    log_event(log, "policy_start", order_id=order.order_id, tif="GTC",
              budget=budget or None, limit_price=order.limit_price)

    while order.is_executable() and (budget <= 0 or checks < budget):
        if ctx.cancel_requested:
            break
        try:
            quoted = await _observe_quote(order, ctx)
        except QuoteUnavailable as exc:
            if streak.record_error("gtc_quote", exc):
                order.update_status(OrderStatus.FAILED, f"too many consecutive quote errors: {exc}")
                return order.status
            await _pause(ctx, cfg.error_backoff_sec)
            continue
        streak.record_success()
        checks += 1

        if ctx.cancel_requested:
            break
        decision = evaluate(order, quoted)
        if isinstance(decision, Reject):
            break
        if isinstance(decision, (FullFill, PartialFill)):
            try:
                return await _fill_remaining(order, ctx, decision.output)
            except SettlementFailed as exc:
                return _fail(order, exc)

        if budget <= 0 or checks < budget:
            await _pause(ctx, cfg.poll_interval_sec)

    if order.status is OrderStatus.ACTIVE:
        if ctx.cancel_requested:
            order.update_status(OrderStatus.CANCELED, REASON_CANCELED_EXTERNALLY)
        else:
            order.update_status(OrderStatus.CANCELED, REASON_MONITORING_LIMIT)
            log_event(log, "gtc_budget_exhausted", order_id=order.order_id, checks=checks)
    return order.status


async def run_gtt(order: Order, ctx: PolicyContext) -> OrderStatus:
    """
    Good-Till-Time.

    Same fill path as GTC, bounded by the order deadline instead of a
    check budget. Waits are clipped so the deadline is observed promptly,
    and a quote that returns after the deadline is not acted on.
    """
    cfg = ctx.config
    streak = ErrorStreak(cfg.max_consecutive_errors, order_id=order.order_id)

    log_event(log, "policy_start", order_id=order.order_id, tif="GTT",
              expiry_time_ms=order.expiry_time_ms, limit_price=order.limit_price)

    while order.is_executable():
        if ctx.cancel_requested:
            break
        try:
            quoted = await _observe_quote(order, ctx)
        except QuoteUnavailable as exc:
            if streak.record_error("gtt_quote", exc):
                order.update_status(OrderStatus.FAILED, f"too many consecutive quote errors: {exc}")
                return order.status
            await _pause(ctx, _until_expiry(order, cfg.error_backoff_sec))
            continue
        streak.record_success()

        if ctx.cancel_requested:
            break
        # Reject here means the deadline passed while quoting
        decision = evaluate(order, quoted)
        if isinstance(decision, Reject):
            break
        if isinstance(decision, (FullFill, PartialFill)):
            try:
                return await _fill_remaining(order, ctx, decision.output)
            except SettlementFailed as exc:
                return _fail(order, exc)

        await _pause(ctx, _until_expiry(order, cfg.poll_interval_sec))

    if order.status is OrderStatus.ACTIVE:
        if ctx.cancel_requested:
            order.update_status(OrderStatus.CANCELED, REASON_CANCELED_EXTERNALLY)
        else:
            order.update_status(OrderStatus.EXPIRED, REASON_EXPIRED)
            log_event(log, "gtt_expired", order_id=order.order_id, checks=order.quote_count)
    return order.status


# ----------------------------------------------------------------------
# Immediate policies
# ----------------------------------------------------------------------

async def run_ioc(order: Order, ctx: PolicyContext) -> OrderStatus:
    """
    Immediate-Or-Cancel: one full-size quote, one decision, no retries.

    A PartialFill requotes at the fillable size before settling. The
    evaluator only returns one when part of the order is already filled,
    which never happens before an IOC order's single evaluation.
    """
    try:
        quoted = await _observe_quote(order, ctx)
        decision = evaluate(order, quoted)
        log_event(log, "ioc_check", order_id=order.order_id, output=quoted,
                  expected=order.min_output_amount, decision=type(decision).__name__)

        if isinstance(decision, FullFill):
            return await _fill_remaining(order, ctx, decision.output)

        if isinstance(decision, PartialFill):
            fillable = decision.fillable_input
            partial_output = await _fetch_quote(order, ctx, fillable)
            ref = await _settle(order, ctx, fillable, partial_output)
            order.record_fill(fillable, partial_output, ref,
                              OrderStatus.PARTIALLY_FILLED, REASON_PARTIAL_FILL)
            log_event(log, "fill", order_id=order.order_id, tif="IOC", filled=fillable,
                      received=partial_output, settlement_ref=ref,
                      filled_pct=order.get_fill_percentage())
        elif isinstance(decision, NoFill):
            order.update_status(OrderStatus.CANCELED, REASON_IOC_NOT_MET)
        else:
            log_event(log, "ioc_rejected", level=logging.WARNING,
                      order_id=order.order_id, reason=decision.reason)
    except Exception as exc:
        return _fail(order, exc)
    return order.status


async def run_fok(order: Order, ctx: PolicyContext) -> OrderStatus:
    """
    Fill-Or-Kill: never partially filled.

    Anything short of a FullFill kills the order. The liquidity probe
    quotes a slightly larger amount. A probe returning 0 kills the order;
    a probe that raises is inconclusive and execution proceeds.
    """
    cfg = ctx.config
    try:
        quoted = await _observe_quote(order, ctx)
        decision = evaluate(order, quoted)
        if isinstance(decision, Reject):
            log_event(log, "fok_rejected", level=logging.WARNING,
                      order_id=order.order_id, reason=decision.reason)
            return order.status
        if not isinstance(decision, FullFill):
            order.update_status(OrderStatus.CANCELED, REASON_FOK_PRICE)
            log_event(log, "fok_killed", order_id=order.order_id, output=quoted,
                      expected=order.min_output_amount)
            return order.status

        if cfg.liquidity_check_enabled:
            probe_amount = math.floor(order.input_amount * cfg.liquidity_probe_multiplier)
            try:
                probe_output = await _fetch_quote(order, ctx, probe_amount)
            except Exception as exc:
                log_event(log, "fok_liquidity_inconclusive", level=logging.WARNING,
                          order_id=order.order_id, probe_amount=probe_amount, err=str(exc))
            else:
                if probe_output <= 0:
                    order.update_status(OrderStatus.CANCELED, REASON_FOK_LIQUIDITY)
                    log_event(log, "fok_killed", order_id=order.order_id,
                              probe_amount=probe_amount, reason="liquidity")
                    return order.status

        return await _fill_remaining(order, ctx, decision.output)
    except Exception as exc:
        return _fail(order, exc)


POLICIES: Dict[TimeInForce, PolicyRunner] = {
    TimeInForce.GTC: run_gtc,
    TimeInForce.GTT: run_gtt,
    TimeInForce.IOC: run_ioc,
    TimeInForce.FOK: run_fok,
}


def get_policy(tif: TimeInForce) -> PolicyRunner:
    try:
        return POLICIES[tif]
    except (KeyError, TypeError):
        raise OrderValidationError(f"Unsupported TIF policy: {tif!r}") from None
