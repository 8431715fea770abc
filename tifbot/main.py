"""
Entry point: build one order from CLI/environment and run it.

Usage:
    python -m tifbot.main [pool] [in_idx] [out_idx] [amount] [tif] [limit_price] [gtt_minutes]

    python -m tifbot.main                                     # GTC on the default pool
    python -m tifbot.main 0xPool 1 0 1000000 GTT 1.01 30
    TIF_POLICY=IOC TIF_LIMIT_PRICE=2.0 python -m tifbot.main  # cancels: limit too high
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from typing import List, Optional, Tuple

from tifbot.config.config import Settings
from tifbot.core.errors import OrderValidationError
from tifbot.core.utils import now_ms
from tifbot.execution.engine import OrderEngine
from tifbot.execution.order import Order, TimeInForce, create_order
from tifbot.infra.logging_cfg import build_logger, log_event
from tifbot.monitoring.metrics import EngineMetrics
from tifbot.venue.base import (
    QuoteSource,
    SerializedQuoteSource,
    SettlementSubmitter,
    TimeoutQuoteSource,
    TimeoutSettlementSubmitter,
)
from tifbot.venue.curve_pool import CurvePoolQuoteSource, is_valid_pool_address
from tifbot.venue.mock import DryRunSettlementSubmitter, MockQuoteSource


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="tifbot",
        description="Run a time-in-force limit swap order against a Curve pool.",
    )
    parser.add_argument("pool", nargs="?", help="Pool contract address")
    parser.add_argument("in_idx", nargs="?", type=int, help="Input token index in the pool")
    parser.add_argument("out_idx", nargs="?", type=int, help="Output token index in the pool")
    parser.add_argument("amount", nargs="?", type=int, help="Input amount in smallest units")
    parser.add_argument("tif", nargs="?", help="GTC, GTT, IOC or FOK")
    parser.add_argument("limit_price", nargs="?", type=float, help="Minimum output/input rate")
    parser.add_argument("gtt_minutes", nargs="?", type=float, help="GTT expiry in minutes")
    parser.add_argument("--mock", action="store_true", help="Use mock pricing instead of RPC")
    return parser.parse_args(argv)


def apply_args(cfg: Settings, args: argparse.Namespace) -> Settings:
    overrides = {
        "token_in_index": args.in_idx,
        "token_out_index": args.out_idx,
        "input_amount": args.amount,
        "tif_policy": args.tif.upper() if args.tif else None,
        "limit_price": args.limit_price,
        "gtt_expiry_minutes": args.gtt_minutes,
        "use_mock_pricing": True if args.mock else None,
    }
    if args.pool and is_valid_pool_address(args.pool):
        overrides["pool_address"] = args.pool
    return cfg.with_overrides(**overrides)


def build_order(cfg: Settings) -> Order:
    tif = TimeInForce.parse(cfg.tif_policy)
    expiry_ms = None
    if tif is TimeInForce.GTT:
        expiry_ms = now_ms() + int(cfg.gtt_expiry_minutes * 60_000)
    return create_order(
        tif,
        input_token=cfg.input_token,
        output_token=cfg.output_token,
        input_amount=cfg.input_amount,
        limit_price=cfg.limit_price,
        slippage=cfg.slippage,
        receiver=cfg.resolve_receiver(),
        pool=cfg.pool_address,
        input_index=cfg.token_in_index,
        output_index=cfg.token_out_index,
        expiry_ms=expiry_ms,
        order_id=f"{tif.value}_{now_ms()}",
    )


def build_collaborators(cfg: Settings) -> Tuple[QuoteSource, SettlementSubmitter, Optional[CurvePoolQuoteSource]]:
    """Returns (quotes, settlement, rpc client to close or None)."""
    rpc: Optional[CurvePoolQuoteSource] = None
    if cfg.use_mock_pricing:
        inner: QuoteSource = MockQuoteSource(rate=cfg.mock_rate)
    else:
        rpc = CurvePoolQuoteSource(cfg.rpc_url, timeout=cfg.http_timeout)
        inner = rpc
    quotes: QuoteSource = TimeoutQuoteSource(inner, timeout=cfg.http_timeout * 3)
    if cfg.serialize_rpc:
        quotes = SerializedQuoteSource(quotes)
    settlement = TimeoutSettlementSubmitter(
        DryRunSettlementSubmitter(receiver=cfg.resolve_receiver()),
        timeout=cfg.settlement_timeout,
    )
    return quotes, settlement, rpc


async def run(cfg: Settings, log: logging.Logger) -> int:
    try:
        order = build_order(cfg)
    except OrderValidationError as exc:
        log.error(str(exc))
        return 1

    quotes, settlement, rpc = build_collaborators(cfg)
    engine = OrderEngine(
        quotes,
        settlement,
        config=cfg.policy_config(),
        concurrent=cfg.concurrent,
        metrics=EngineMetrics(),
    )

    loop = asyncio.get_running_loop()

    def stop_all() -> None:
        loop.create_task(engine.cancel_all())

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_all)
        except NotImplementedError:
            pass

    try:
        try:
            await engine.admit(order)
        except OrderValidationError as exc:
            log.error(str(exc))
            return 1
        results = await engine.run_all()
        for summary in results:
            log_event(log, "final_order_status", **summary)
    finally:
        if rpc is not None:
            await rpc.close()
    return 0


async def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    try:
        cfg = apply_args(Settings.load(), args)
    except ValueError as exc:
        logging.getLogger("tifbot").error(f"Configuration error: {exc}")
        return 1
    log = build_logger(
        "tifbot",
        level=getattr(logging, cfg.log_level, logging.INFO),
        file_path=cfg.log_file,
        json_console=cfg.log_json,
    )
    log_event(log, "startup", **cfg.dump())
    return await run(cfg, log)


def cli() -> None:
    try:
        code = asyncio.run(main())
    except KeyboardInterrupt:
        print("\nStopped by user")
        code = 0
    sys.exit(code)


if __name__ == "__main__":
    cli()
