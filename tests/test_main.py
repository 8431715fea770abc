"""Tests for CLI parsing and wiring."""

import pytest

from tifbot.config.config import Settings
from tifbot.core.errors import OrderValidationError
from tifbot.core.utils import now_ms
from tifbot.execution.order import TimeInForce
from tifbot.main import apply_args, build_collaborators, build_order, parse_args
from tifbot.venue.base import SerializedQuoteSource, TimeoutQuoteSource, TimeoutSettlementSubmitter
from tifbot.venue.curve_pool import CurvePoolQuoteSource, DEFAULT_POOL

POOL = "0x" + "ab" * 20


@pytest.fixture
def settings(monkeypatch):
    import os

    for key in list(os.environ):
        if key.startswith("TIF_"):
            monkeypatch.delenv(key, raising=False)
    return Settings.load(dotenv=False)


class TestParseArgs:

    def test_no_args(self):
        args = parse_args([])
        assert args.pool is None
        assert args.tif is None
        assert args.mock is False

    def test_positional_args(self):
        args = parse_args([POOL, "0", "2", "5000000", "gtt", "0.99", "30", "--mock"])
        assert args.pool == POOL
        assert (args.in_idx, args.out_idx) == (0, 2)
        assert args.amount == 5_000_000
        assert args.tif == "gtt"
        assert args.limit_price == 0.99
        assert args.gtt_minutes == 30.0
        assert args.mock is True


class TestApplyArgs:

    def test_overrides_settings(self, settings):
        cfg = apply_args(settings, parse_args([POOL, "0", "2", "5000000", "ioc", "0.99"]))
        assert cfg.pool_address == POOL
        assert (cfg.token_in_index, cfg.token_out_index) == (0, 2)
        assert cfg.input_amount == 5_000_000
        assert cfg.tif_policy == "IOC"
        assert cfg.limit_price == 0.99

    def test_invalid_pool_ignored(self, settings):
        cfg = apply_args(settings, parse_args(["nope"]))
        assert cfg.pool_address == DEFAULT_POOL

    def test_mock_flag(self, settings):
        assert apply_args(settings, parse_args(["--mock"])).use_mock_pricing is True


class TestBuildOrder:

    def test_gtc_order(self, settings):
        order = build_order(settings)
        assert order.tif is TimeInForce.GTC
        assert order.order_id.startswith("GTC_")
        assert order.pool == DEFAULT_POOL
        assert (order.input_index, order.output_index) == (1, 0)
        assert order.expiry_time_ms is None

    def test_gtt_expiry_from_minutes(self, settings):
        cfg = settings.with_overrides(tif_policy="GTT", gtt_expiry_minutes=2)
        before = now_ms()
        order = build_order(cfg)
        assert before + 120_000 <= order.expiry_time_ms <= now_ms() + 120_000

    def test_unknown_tif(self, settings):
        with pytest.raises(OrderValidationError):
            build_order(settings.with_overrides(tif_policy="DAY"))


class TestBuildCollaborators:

    @pytest.mark.asyncio
    async def test_mock_pricing_has_no_rpc_client(self, settings):
        quotes, settlement, rpc = build_collaborators(settings.with_overrides(use_mock_pricing=True))
        assert rpc is None
        assert isinstance(quotes, TimeoutQuoteSource)
        assert isinstance(settlement, TimeoutSettlementSubmitter)
        assert await quotes.quote(DEFAULT_POOL, 1, 0, 1_000_000) == 999_000

    @pytest.mark.asyncio
    async def test_rpc_pricing(self, settings):
        quotes, _, rpc = build_collaborators(settings.with_overrides(serialize_rpc=True))
        try:
            assert isinstance(rpc, CurvePoolQuoteSource)
            assert isinstance(quotes, SerializedQuoteSource)
        finally:
            await rpc.close()
