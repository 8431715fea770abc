"""
Tests for the time-in-force strategies.

Tests cover:
- IOC fill / cancel / fail
- FOK kill on price, kill on liquidity, inconclusive probe
- GTC fill after waiting, budget exhaustion, error threshold, cancellation
- GTT fill, expiry, cancellation
- Dispatch table
"""

import asyncio
from unittest.mock import AsyncMock

import pytest

from tifbot.core.errors import OrderValidationError, QuoteUnavailable, SettlementFailed
from tifbot.core.utils import now_ms
from tifbot.execution.order import OrderStatus, TimeInForce, create_order
from tifbot.execution.policies import (
    POLICIES,
    REASON_CANCELED_EXTERNALLY,
    REASON_EXPIRED,
    REASON_FOK_LIQUIDITY,
    REASON_FOK_PRICE,
    REASON_IOC_NOT_MET,
    REASON_MONITORING_LIMIT,
    REASON_PARTIAL_FILL,
    PolicyContext,
    get_policy,
    run_fok,
    run_gtc,
    run_gtt,
    run_ioc,
)
from tifbot.monitoring.metrics import EngineMetrics
from tifbot.venue.mock import MOCK_TX_HASH, DryRunSettlementSubmitter, MockQuoteSource

POOL = "0xbEbc44782C7dB0a1A60Cb6fe97d0b483032FF1C7"


def active(tif, amount=1_000_000, limit=0.95, slippage=0.005, expiry_ms=None):
    order = create_order(tif, "0xUSDC", "0xDAI", amount, limit, slippage,
                         pool=POOL, input_index=1, output_index=0,
                         expiry_ms=expiry_ms, order_id=f"TEST_{tif.value}")
    order.update_status(OrderStatus.ACTIVE)
    return order


def make_ctx(quotes, config, settlement=None, metrics=None):
    return PolicyContext(
        quotes=quotes,
        settlement=settlement or DryRunSettlementSubmitter(),
        config=config,
        cancel_event=asyncio.Event(),
        metrics=metrics,
    )


# =============================================================================
# IOC
# =============================================================================

class TestIOC:

    @pytest.mark.asyncio
    async def test_fills_when_price_met(self, fast_config):
        order = active(TimeInForce.IOC, limit=0.95)
        quotes = MockQuoteSource(script=[1_010_000])
        settlement = DryRunSettlementSubmitter()

        status = await run_ioc(order, make_ctx(quotes, fast_config, settlement))

        assert status is OrderStatus.FILLED
        assert order.filled_amount == 1_000_000
        assert order.received_amount == 1_010_000
        assert order.settlement_ref == MOCK_TX_HASH
        assert len(quotes.calls) == 1
        assert quotes.calls[0].amount == 1_000_000
        assert quotes.calls[0].i == 1 and quotes.calls[0].j == 0
        # Settlement floor is quote minus slippage
        assert settlement.submissions[0].min_output == 1_004_950

    @pytest.mark.asyncio
    async def test_cancels_when_price_not_met(self, fast_config):
        order = active(TimeInForce.IOC, limit=2.0)
        quotes = MockQuoteSource(rate=0.999)
        settlement = DryRunSettlementSubmitter()

        status = await run_ioc(order, make_ctx(quotes, fast_config, settlement))

        assert status is OrderStatus.CANCELED
        assert order.failure_reason == REASON_IOC_NOT_MET
        assert order.filled_amount == 0
        assert settlement.submissions == []

    @pytest.mark.asyncio
    async def test_quote_error_fails_without_retry(self, fast_config):
        order = active(TimeInForce.IOC)
        quotes = MockQuoteSource(script=[QuoteUnavailable("RPC Error: execution reverted")])

        status = await run_ioc(order, make_ctx(quotes, fast_config))

        assert status is OrderStatus.FAILED
        assert "execution reverted" in order.failure_reason
        assert len(quotes.calls) == 1

    @pytest.mark.asyncio
    async def test_partial_fill_requotes_fillable_amount(self, fast_config):
        order = active(TimeInForce.IOC, limit=0.95)
        order.filled_amount = 250_000
        quotes = MockQuoteSource(script=[1_010_000, 760_000])
        settlement = DryRunSettlementSubmitter()

        status = await run_ioc(order, make_ctx(quotes, fast_config, settlement))

        assert status is OrderStatus.PARTIALLY_FILLED
        assert order.failure_reason == REASON_PARTIAL_FILL
        assert [c.amount for c in quotes.calls] == [1_000_000, 750_000]
        assert settlement.submissions[0].amount == 750_000
        assert order.received_amount == 760_000

    @pytest.mark.asyncio
    async def test_not_executable_is_left_alone(self, fast_config):
        order = create_order(TimeInForce.IOC, "0xUSDC", "0xDAI", 1_000_000, 0.95, 0.005,
                             pool=POOL, order_id="IOC_PENDING")
        settlement = DryRunSettlementSubmitter()

        status = await run_ioc(order, make_ctx(MockQuoteSource(rate=1.01), fast_config, settlement))

        assert status is OrderStatus.PENDING
        assert settlement.submissions == []

    @pytest.mark.asyncio
    async def test_settlement_error_fails(self, fast_config):
        order = active(TimeInForce.IOC, limit=0.95)
        quotes = MockQuoteSource(script=[1_010_000])
        settlement = DryRunSettlementSubmitter(fail_with="nonce too low")

        status = await run_ioc(order, make_ctx(quotes, fast_config, settlement))

        assert status is OrderStatus.FAILED
        assert order.failure_reason == "nonce too low"
        assert order.filled_amount == 0


# =============================================================================
# FOK
# =============================================================================

class TestFOK:

    @pytest.mark.asyncio
    async def test_fills_with_liquidity_probe(self, fast_config):
        order = active(TimeInForce.FOK, limit=0.95)
        quotes = MockQuoteSource(script=[1_010_000, 1_020_000])

        status = await run_fok(order, make_ctx(quotes, fast_config))

        assert status is OrderStatus.FILLED
        assert [c.amount for c in quotes.calls] == [1_000_000, 1_010_000]
        assert order.quote_count == 1
        assert order.received_amount == 1_010_000

    @pytest.mark.asyncio
    async def test_killed_when_price_not_met(self, fast_config):
        order = active(TimeInForce.FOK, limit=2.0)
        quotes = MockQuoteSource(rate=0.999)

        status = await run_fok(order, make_ctx(quotes, fast_config))

        assert status is OrderStatus.CANCELED
        assert order.failure_reason == REASON_FOK_PRICE
        assert len(quotes.calls) == 1

    @pytest.mark.asyncio
    async def test_killed_on_zero_liquidity(self, fast_config):
        order = active(TimeInForce.FOK, limit=0.95)
        quotes = MockQuoteSource(script=[1_010_000, 0])
        settlement = DryRunSettlementSubmitter()

        status = await run_fok(order, make_ctx(quotes, fast_config, settlement))

        assert status is OrderStatus.CANCELED
        assert order.failure_reason == REASON_FOK_LIQUIDITY
        assert quotes.calls[1].amount == 1_010_000
        assert settlement.submissions == []
        assert order.filled_amount == 0

    @pytest.mark.asyncio
    async def test_probe_error_is_inconclusive(self, fast_config):
        order = active(TimeInForce.FOK, limit=0.95)
        quotes = MockQuoteSource(script=[1_010_000, QuoteUnavailable("probe failed")])

        status = await run_fok(order, make_ctx(quotes, fast_config))

        assert status is OrderStatus.FILLED
        assert order.filled_amount == order.input_amount

    @pytest.mark.asyncio
    async def test_probe_skipped_when_disabled(self, fast_config):
        fast_config.liquidity_check_enabled = False
        order = active(TimeInForce.FOK, limit=0.95)
        quotes = MockQuoteSource(script=[1_010_000, 0])

        status = await run_fok(order, make_ctx(quotes, fast_config))

        assert status is OrderStatus.FILLED
        assert len(quotes.calls) == 1

    @pytest.mark.asyncio
    async def test_never_partially_filled(self, fast_config):
        order = active(TimeInForce.FOK, limit=0.95)
        quotes = MockQuoteSource(script=[1_010_000])
        settlement = DryRunSettlementSubmitter(fail_with="reverted")

        status = await run_fok(order, make_ctx(quotes, fast_config, settlement))

        assert status is OrderStatus.FAILED
        assert order.filled_amount == 0


# =============================================================================
# GTC
# =============================================================================

class TestGTC:

    @pytest.mark.asyncio
    async def test_fills_once_price_improves(self, fast_config):
        order = active(TimeInForce.GTC, limit=1.0)
        quotes = MockQuoteSource(script=[990_000, 995_000, 1_001_000])

        status = await run_gtc(order, make_ctx(quotes, fast_config))

        assert status is OrderStatus.FILLED
        assert order.quote_count == 3
        assert order.received_amount == 1_001_000

    @pytest.mark.asyncio
    async def test_budget_exhaustion_cancels(self, fast_config):
        order = active(TimeInForce.GTC, limit=2.0)
        quotes = MockQuoteSource(rate=0.999)
        settlement = DryRunSettlementSubmitter()

        status = await run_gtc(order, make_ctx(quotes, fast_config, settlement))

        assert status is OrderStatus.CANCELED
        assert order.failure_reason == REASON_MONITORING_LIMIT
        assert order.quote_count == fast_config.gtc_max_checks
        assert settlement.submissions == []

    @pytest.mark.asyncio
    async def test_quote_errors_do_not_consume_budget(self, fast_config):
        fast_config.gtc_max_checks = 2
        order = active(TimeInForce.GTC, limit=1.0)
        quotes = MockQuoteSource(script=[
            QuoteUnavailable("timeout"),
            QuoteUnavailable("timeout"),
            990_000,
            1_000_000,
        ])

        status = await run_gtc(order, make_ctx(quotes, fast_config))

        assert status is OrderStatus.FILLED
        assert len(quotes.calls) == 4
        assert order.quote_count == 2

    @pytest.mark.asyncio
    async def test_error_threshold_exceeded_fails(self, fast_config):
        fast_config.max_consecutive_errors = 3
        order = active(TimeInForce.GTC, limit=1.0)
        quotes = MockQuoteSource(script=[QuoteUnavailable("connection refused")])

        status = await run_gtc(order, make_ctx(quotes, fast_config))

        assert status is OrderStatus.FAILED
        assert "too many consecutive quote errors" in order.failure_reason
        assert len(quotes.calls) == 4

    @pytest.mark.asyncio
    async def test_errors_up_to_threshold_are_tolerated(self, fast_config):
        fast_config.max_consecutive_errors = 3
        order = active(TimeInForce.GTC, limit=1.0)
        down = QuoteUnavailable("connection refused")
        quotes = MockQuoteSource(script=[down, down, down, 1_001_000])

        status = await run_gtc(order, make_ctx(quotes, fast_config))

        assert status is OrderStatus.FILLED
        assert len(quotes.calls) == 4

    @pytest.mark.asyncio
    async def test_settlement_failure_is_not_retried(self, fast_config):
        order = active(TimeInForce.GTC, limit=1.0)
        quotes = MockQuoteSource(script=[1_001_000])
        settlement = AsyncMock()
        settlement.submit.side_effect = SettlementFailed("replacement underpriced")

        status = await run_gtc(order, make_ctx(quotes, fast_config, settlement))

        assert status is OrderStatus.FAILED
        assert settlement.submit.await_count == 1
        assert order.filled_amount == 0

    @pytest.mark.asyncio
    async def test_cancel_before_start(self, fast_config):
        order = active(TimeInForce.GTC, limit=2.0)
        quotes = MockQuoteSource(rate=0.999)
        ctx = make_ctx(quotes, fast_config)
        ctx.cancel_event.set()

        status = await run_gtc(order, ctx)

        assert status is OrderStatus.CANCELED
        assert order.failure_reason == REASON_CANCELED_EXTERNALLY
        assert quotes.calls == []

    @pytest.mark.asyncio
    async def test_cancel_while_monitoring(self, fast_config):
        fast_config.gtc_max_checks = 0
        fast_config.poll_interval_sec = 5.0
        order = active(TimeInForce.GTC, limit=2.0)
        quotes = MockQuoteSource(rate=0.999)
        ctx = make_ctx(quotes, fast_config)

        task = asyncio.create_task(run_gtc(order, ctx))
        await asyncio.sleep(0.05)
        ctx.cancel_event.set()
        status = await asyncio.wait_for(task, timeout=1.0)

        assert status is OrderStatus.CANCELED
        assert order.failure_reason == REASON_CANCELED_EXTERNALLY
        assert len(quotes.calls) == 1

    @pytest.mark.asyncio
    async def test_metrics_count_quotes_and_errors(self, fast_config):
        fast_config.gtc_max_checks = 2
        metrics = EngineMetrics()
        order = active(TimeInForce.GTC, limit=2.0)
        quotes = MockQuoteSource(script=[QuoteUnavailable("x"), 900_000])

        await run_gtc(order, make_ctx(quotes, fast_config, metrics=metrics))

        assert metrics.registry.get_sample_value("quotes_total", {"tif": "GTC"}) == 2.0
        assert metrics.registry.get_sample_value("quote_errors_total", {"tif": "GTC"}) == 1.0


# =============================================================================
# GTT
# =============================================================================

class TestGTT:

    @pytest.mark.asyncio
    async def test_fills_before_deadline(self, fast_config):
        order = active(TimeInForce.GTT, limit=1.0, expiry_ms=now_ms() + 60_000)
        quotes = MockQuoteSource(script=[990_000, 1_002_000])

        status = await run_gtt(order, make_ctx(quotes, fast_config))

        assert status is OrderStatus.FILLED
        assert order.quote_count == 2

    @pytest.mark.asyncio
    async def test_expires_when_price_never_met(self, fast_config):
        order = active(TimeInForce.GTT, limit=2.0, expiry_ms=now_ms() + 200)
        quotes = MockQuoteSource(rate=0.999)

        status = await asyncio.wait_for(run_gtt(order, make_ctx(quotes, fast_config)), timeout=2.0)

        assert status is OrderStatus.EXPIRED
        assert order.failure_reason == REASON_EXPIRED
        assert order.filled_amount == 0
        assert order.quote_count >= 1

    @pytest.mark.asyncio
    async def test_wait_clipped_to_deadline(self, fast_config):
        fast_config.poll_interval_sec = 30.0
        order = active(TimeInForce.GTT, limit=2.0, expiry_ms=now_ms() + 100)
        quotes = MockQuoteSource(rate=0.999)

        status = await asyncio.wait_for(run_gtt(order, make_ctx(quotes, fast_config)), timeout=2.0)

        assert status is OrderStatus.EXPIRED

    @pytest.mark.asyncio
    async def test_errors_until_expiry(self, fast_config):
        order = active(TimeInForce.GTT, limit=1.0, expiry_ms=now_ms() + 150)
        quotes = MockQuoteSource(script=[QuoteUnavailable("down")])

        status = await asyncio.wait_for(run_gtt(order, make_ctx(quotes, fast_config)), timeout=2.0)

        assert status is OrderStatus.EXPIRED
        assert order.quote_count == 0

    @pytest.mark.asyncio
    async def test_quote_after_deadline_not_acted_on(self, fast_config):
        order = active(TimeInForce.GTT, limit=1.0, expiry_ms=now_ms() + 50)
        settlement = DryRunSettlementSubmitter()

        class LateQuotes:
            async def quote(self, pool, i, j, amount):
                await asyncio.sleep(0.1)
                return amount * 2

        status = await asyncio.wait_for(
            run_gtt(order, make_ctx(LateQuotes(), fast_config, settlement)), timeout=2.0
        )

        assert status is OrderStatus.EXPIRED
        assert settlement.submissions == []

    @pytest.mark.asyncio
    async def test_already_expired_skips_quoting(self, fast_config):
        order = active(TimeInForce.GTT, limit=1.0, expiry_ms=now_ms() - 1)
        quotes = MockQuoteSource(rate=1.01)

        status = await run_gtt(order, make_ctx(quotes, fast_config))

        assert status is OrderStatus.EXPIRED
        assert order.failure_reason == REASON_EXPIRED
        assert quotes.calls == []

    @pytest.mark.asyncio
    async def test_cancel_beats_expiry(self, fast_config):
        order = active(TimeInForce.GTT, limit=2.0, expiry_ms=now_ms() + 60_000)
        quotes = MockQuoteSource(rate=0.999)
        ctx = make_ctx(quotes, fast_config)
        ctx.cancel_event.set()

        status = await run_gtt(order, ctx)

        assert status is OrderStatus.CANCELED
        assert order.failure_reason == REASON_CANCELED_EXTERNALLY


# =============================================================================
# Dispatch
# =============================================================================

class TestDispatch:

    def test_every_tif_has_a_policy(self):
        assert set(POLICIES) == set(TimeInForce)

    @pytest.mark.parametrize("tif,runner", [
        (TimeInForce.GTC, run_gtc),
        (TimeInForce.GTT, run_gtt),
        (TimeInForce.IOC, run_ioc),
        (TimeInForce.FOK, run_fok),
    ])
    def test_get_policy(self, tif, runner):
        assert get_policy(tif) is runner

    def test_unknown_tif_rejected(self):
        with pytest.raises(OrderValidationError):
            get_policy("DAY")
