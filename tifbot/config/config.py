"""
Environment-driven configuration with validation.

Settings are read once at startup and passed explicitly to the engine and
collaborators; nothing in the decision logic reads the environment.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

from tifbot.execution.policies import PolicyConfig
from tifbot.venue.curve_pool import DEFAULT_MAINNET_RPC, DEFAULT_POOL, is_valid_pool_address

# Tokens of the default pool (Curve 3pool, mainnet)
DEFAULT_INPUT_TOKEN = "0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48"   # USDC
DEFAULT_OUTPUT_TOKEN = "0x6B175474E89094C44Da98b954EedeAC495271d0F"  # DAI


def env_bool(key: str, default: bool) -> bool:
    val = os.getenv(key)
    if val is None or val == "":
        return default
    return val.lower() in {"1", "true", "yes", "y"}


def _int_env(key: str, default: int) -> int:
    raw = os.getenv(key)
    if raw is None or raw == "":
        return default
    return int(raw)


def _float_env(key: str, default: float) -> float:
    raw = os.getenv(key)
    if raw is None or raw == "":
        return default
    return float(raw)


@dataclass(frozen=True)
class Settings:
    rpc_url: str
    pool_address: str
    token_in_index: int
    token_out_index: int
    input_token: str
    output_token: str
    input_amount: int
    tif_policy: str
    limit_price: float
    slippage: float
    gtt_expiry_minutes: float
    use_mock_pricing: bool
    mock_rate: float
    liquidity_check_enabled: bool
    liquidity_probe_multiplier: float
    poll_interval_sec: float
    error_backoff_sec: float
    gtc_max_checks: int
    max_consecutive_errors: int
    http_timeout: float
    settlement_timeout: float
    serialize_rpc: bool
    concurrent: bool
    user_address: Optional[str]
    private_key: Optional[str]
    log_file: Optional[str]
    log_level: str
    log_json: bool

    def dump(self) -> dict:
        """Settings as a dict with secrets masked."""
        out = self.__dict__.copy()
        if out.get("private_key"):
            out["private_key"] = "***"
        return out

    @classmethod
    def load(cls, dotenv: bool = True) -> "Settings":
        if dotenv:
            load_dotenv()

        pool = os.getenv("TIF_POOL_ADDRESS", "")
        in_idx = _int_env("TIF_TOKEN_IN_INDEX", 0)
        out_idx = _int_env("TIF_TOKEN_OUT_INDEX", 1)
        rpc_url = os.getenv("TIF_RPC_URL", "")
        if not is_valid_pool_address(pool):
            # Default to 3pool USDC -> DAI for read-only pricing
            pool, in_idx, out_idx = DEFAULT_POOL, 1, 0

        cfg = cls(
            rpc_url=rpc_url or DEFAULT_MAINNET_RPC,
            pool_address=pool,
            token_in_index=in_idx,
            token_out_index=out_idx,
            input_token=os.getenv("TIF_INPUT_TOKEN", DEFAULT_INPUT_TOKEN),
            output_token=os.getenv("TIF_OUTPUT_TOKEN", DEFAULT_OUTPUT_TOKEN),
            input_amount=_int_env("TIF_ORDER_INPUT_AMOUNT", 1_000_000),
            tif_policy=os.getenv("TIF_POLICY", "GTC").upper(),
            limit_price=_float_env("TIF_LIMIT_PRICE", 1.01),
            slippage=_float_env("TIF_SLIPPAGE", 0.005),
            gtt_expiry_minutes=_float_env("TIF_GTT_EXPIRY_MINUTES", 60),
            use_mock_pricing=env_bool("TIF_USE_MOCK_PRICING", False),
            mock_rate=_float_env("TIF_MOCK_RATE", 0.999),
            liquidity_check_enabled=not env_bool("TIF_SKIP_LIQUIDITY_CHECK", False),
            liquidity_probe_multiplier=_float_env("TIF_LIQUIDITY_PROBE_MULTIPLIER", 1.01),
            poll_interval_sec=_float_env("TIF_POLL_INTERVAL_SEC", 2.0),
            error_backoff_sec=_float_env("TIF_ERROR_BACKOFF_SEC", 5.0),
            gtc_max_checks=_int_env("TIF_GTC_MAX_CHECKS", 10),
            max_consecutive_errors=_int_env("TIF_MAX_CONSECUTIVE_ERRORS", 10),
            http_timeout=_float_env("TIF_HTTP_TIMEOUT", 10.0),
            settlement_timeout=_float_env("TIF_SETTLEMENT_TIMEOUT", 60.0),
            serialize_rpc=env_bool("TIF_SERIALIZE_RPC", False),
            concurrent=env_bool("TIF_CONCURRENT", True),
            user_address=os.getenv("TIF_USER_ADDRESS") or None,
            private_key=os.getenv("TIF_PRIVATE_KEY") or None,
            log_file=os.getenv("TIF_LOG_FILE") or None,
            log_level=os.getenv("TIF_LOG_LEVEL", "INFO").upper(),
            log_json=env_bool("TIF_LOG_JSON", False),
        )
        cfg._validate()
        _sanity_check(cfg)
        return cfg

    def with_overrides(self, **changes) -> "Settings":
        """Copy with CLI overrides applied, revalidated."""
        data = self.__dict__.copy()
        data.update({k: v for k, v in changes.items() if v is not None})
        cfg = Settings(**data)
        cfg._validate()
        return cfg

    def policy_config(self) -> PolicyConfig:
        return PolicyConfig(
            poll_interval_sec=self.poll_interval_sec,
            error_backoff_sec=self.error_backoff_sec,
            gtc_max_checks=self.gtc_max_checks,
            max_consecutive_errors=self.max_consecutive_errors,
            liquidity_check_enabled=self.liquidity_check_enabled,
            liquidity_probe_multiplier=self.liquidity_probe_multiplier,
        )

    def resolve_receiver(self) -> str:
        """Address that receives output tokens."""
        if self.private_key:
            from eth_account import Account

            return Account.from_key(self.private_key).address
        if self.user_address:
            return self.user_address
        return "0x" + "0" * 40

    def _validate(self) -> None:
        if self.input_amount <= 0:
            raise ValueError("TIF_ORDER_INPUT_AMOUNT must be > 0")
        if self.limit_price <= 0:
            raise ValueError("TIF_LIMIT_PRICE must be > 0")
        if not 0 <= self.slippage < 1:
            raise ValueError("TIF_SLIPPAGE must be in [0, 1)")
        if self.token_in_index == self.token_out_index:
            raise ValueError("TIF_TOKEN_IN_INDEX and TIF_TOKEN_OUT_INDEX must differ")
        if self.token_in_index < 0 or self.token_out_index < 0:
            raise ValueError("Token indices must be >= 0")
        if self.gtt_expiry_minutes <= 0:
            raise ValueError("TIF_GTT_EXPIRY_MINUTES must be > 0")
        if self.poll_interval_sec < 0 or self.error_backoff_sec < 0:
            raise ValueError("Polling intervals must be >= 0")
        if self.gtc_max_checks < 0 or self.max_consecutive_errors < 0:
            raise ValueError("TIF_GTC_MAX_CHECKS and TIF_MAX_CONSECUTIVE_ERRORS must be >= 0")
        if self.liquidity_probe_multiplier < 1.0:
            raise ValueError("TIF_LIQUIDITY_PROBE_MULTIPLIER must be >= 1.0")
        if self.http_timeout <= 0 or self.settlement_timeout <= 0:
            raise ValueError("Timeouts must be > 0")
        if self.mock_rate <= 0:
            raise ValueError("TIF_MOCK_RATE must be > 0")

        logger = logging.getLogger("tifbot")
        if self.slippage > 0.05:
            logger.warning(
                f"WARNING: TIF_SLIPPAGE is {self.slippage:.1%}. "
                "Settlement floor is far below the quote."
            )
        if self.gtc_max_checks == 0 and self.max_consecutive_errors == 0:
            logger.warning(
                "WARNING: GTC orders have no check budget and no error threshold; "
                "they stop only when filled or canceled."
            )
        if self.poll_interval_sec < 0.5:
            logger.warning(
                f"WARNING: TIF_POLL_INTERVAL_SEC={self.poll_interval_sec} is aggressive "
                "for a public RPC endpoint."
            )


def _sanity_check(cfg: Settings) -> None:
    """Log the effective settings once at startup so overrides are obvious."""
    logger = logging.getLogger("tifbot")
    payload = {
        "event": "config_loaded",
        "rpc_url": cfg.rpc_url,
        "pool": cfg.pool_address,
        "i": cfg.token_in_index,
        "j": cfg.token_out_index,
        "tif": cfg.tif_policy,
        "limit_price": cfg.limit_price,
        "mock_pricing": cfg.use_mock_pricing,
    }
    logger.info(json.dumps(payload))
