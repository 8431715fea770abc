"""
Curve pool quoting over Ethereum JSON-RPC.

Quotes come from the pool's get_dy(int128,int128,uint256) view via
eth_call. Arguments are ABI-encoded as 32-byte big-endian words.
"""

from __future__ import annotations

import asyncio
import itertools
import json
import logging
import random
from typing import Any, Optional

import httpx

from tifbot.core.errors import QuoteUnavailable

log = logging.getLogger("tifbot")

GET_DY_SELECTOR = "0x5e0d443f"
EXCHANGE_SELECTOR = "0x394747c5"

# Curve 3pool (mainnet): DAI=0, USDC=1, USDT=2
DEFAULT_POOL = "0xbEbc44782C7dB0a1A60Cb6fe97d0b483032FF1C7"
DEFAULT_MAINNET_RPC = "https://eth.llamarpc.com"


def encode_uint256(value: int) -> str:
    if value < 0:
        raise ValueError(f"uint256 cannot encode negative value {value}")
    return f"{value:064x}"


def encode_address(address: str) -> str:
    clean = address[2:] if address.startswith("0x") else address
    return clean.lower().rjust(64, "0")


def hex_to_int(raw: str) -> int:
    """
    Decode an eth_call hex result.

    An empty result ("0x") decodes to 0. Non-hex payloads raise ValueError.
    """
    clean = raw[2:] if raw.startswith("0x") else raw
    if clean == "":
        return 0
    return int(clean, 16)


def build_get_dy_calldata(i: int, j: int, dx: int) -> str:
    return GET_DY_SELECTOR + encode_uint256(i) + encode_uint256(j) + encode_uint256(dx)


def build_exchange_calldata(i: int, j: int, dx: int, min_dy: int, receiver: str) -> str:
    """Calldata for exchange(int128 i, int128 j, uint256 dx, uint256 min_dy, address receiver)."""
    return (EXCHANGE_SELECTOR + encode_uint256(i) + encode_uint256(j)
            + encode_uint256(dx) + encode_uint256(min_dy) + encode_address(receiver))


def is_valid_pool_address(address: Optional[str]) -> bool:
    if not address or not address.startswith("0x") or len(address) != 42:
        return False
    try:
        int(address[2:], 16)
    except ValueError:
        return False
    return True


class CurvePoolQuoteSource:
    """
    QuoteSource backed by eth_call against a Curve pool.

    Quotes are side-effect free, so transport failures are retried with
    jittered exponential backoff before surfacing QuoteUnavailable.
    """

    def __init__(
        self,
        rpc_url: str,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
        retries: int = 2,
        backoff_sec: float = 0.2,
    ) -> None:
        self.rpc_url = rpc_url
        if client is not None:
            self.client = client
            self._owns_client = False
        else:
            self.client = httpx.AsyncClient(http2=True, timeout=timeout)
            self._owns_client = True
        self._retries = retries
        self._backoff = backoff_sec
        self._ids = itertools.count(1)

    async def close(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    async def quote(self, pool: str, i: int, j: int, amount: int) -> int:
        params = [{"to": pool, "data": build_get_dy_calldata(i, j, amount)}, "latest"]
        result = await self._call("eth_call", params)
        if not isinstance(result, str):
            raise QuoteUnavailable(f"malformed eth_call result: {result!r}")
        try:
            return hex_to_int(result)
        except ValueError:
            raise QuoteUnavailable(f"malformed eth_call result: {result!r}") from None

    async def _call(self, method: str, params: list) -> Any:
        backoff = self._backoff
        for attempt in range(self._retries + 1):
            try:
                return await self._post(method, params)
            except (httpx.HTTPError, json.JSONDecodeError) as exc:
                if attempt >= self._retries:
                    raise QuoteUnavailable(f"{method} failed: {exc}") from exc
                log.debug(json.dumps({"event": "rpc_retry", "method": method,
                                      "attempt": attempt + 1, "err": str(exc)}))
                await asyncio.sleep(backoff + random.uniform(0, backoff * 0.5))
                backoff *= 2

    async def _post(self, method: str, params: list) -> Any:
        request = {"jsonrpc": "2.0", "method": method, "params": params, "id": next(self._ids)}
        resp = await self.client.post(self.rpc_url, json=request)
        resp.raise_for_status()
        data = resp.json()
        if not isinstance(data, dict):
            raise QuoteUnavailable(f"malformed RPC response: {data!r}")
        if "error" in data:
            err = data["error"]
            message = err.get("message", err) if isinstance(err, dict) else err
            # JSON-RPC errors (reverts, bad params) are not retried
            raise QuoteUnavailable(f"RPC Error: {message}")
        if "result" not in data:
            raise QuoteUnavailable(f"RPC response without result: {data!r}")
        return data["result"]
