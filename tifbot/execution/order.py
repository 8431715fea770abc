"""
Limit order model - immutable terms plus mutable execution state.

Provides:
- Time-in-force and status enums
- Valid status transitions with guards (terminal states are absorbing)
- Audit trail of status changes
- Fill recording that keeps filled_amount within [0, input_amount]

Only the strategy currently executing an order mutates its state. The
engine reads the final state for reporting.
"""

from __future__ import annotations

import math
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from tifbot.core.errors import InvalidTransition, OrderValidationError
from tifbot.core.utils import now_ms

DEFAULT_GTT_EXPIRY_MS = 60 * 60 * 1000


class TimeInForce(Enum):
    """Time-in-force policy tags."""
    GTC = "GTC"  # Good-Till-Canceled: monitor until filled or canceled
    GTT = "GTT"  # Good-Till-Time: monitor until filled or expiry
    IOC = "IOC"  # Immediate-Or-Cancel: single evaluation, may partially fill
    FOK = "FOK"  # Fill-Or-Kill: single evaluation, all or nothing

    @classmethod
    def parse(cls, raw: str) -> "TimeInForce":
        try:
            return cls(raw.strip().upper())
        except (ValueError, AttributeError):
            supported = ", ".join(t.value for t in cls)
            raise OrderValidationError(f"Unknown TIF policy: {raw!r} (supported: {supported})") from None


class OrderStatus(Enum):
    """
    Order lifecycle states.

    PENDING ──> ACTIVE ──┬──> FILLED
                         ├──> PARTIALLY_FILLED   (IOC only)
                         ├──> CANCELED
                         ├──> EXPIRED            (GTT only)
                         └──> FAILED
    """
    PENDING = "PENDING"                    # Created, not yet admitted
    ACTIVE = "ACTIVE"                      # Admitted and being monitored
    PARTIALLY_FILLED = "PARTIALLY_FILLED"  # Part executed (terminal)
    FILLED = "FILLED"                      # Fully executed (terminal)
    CANCELED = "CANCELED"                  # Canceled by policy or operator (terminal)
    EXPIRED = "EXPIRED"                    # Deadline reached (terminal)
    FAILED = "FAILED"                      # Error during execution (terminal)


TERMINAL_STATUSES = frozenset({
    OrderStatus.PARTIALLY_FILLED,
    OrderStatus.FILLED,
    OrderStatus.CANCELED,
    OrderStatus.EXPIRED,
    OrderStatus.FAILED,
})

FILL_STATUSES = frozenset({OrderStatus.PARTIALLY_FILLED, OrderStatus.FILLED})

VALID_TRANSITIONS: Dict[OrderStatus, List[OrderStatus]] = {
    OrderStatus.PENDING: [
        OrderStatus.ACTIVE,            # Admitted to the engine
        OrderStatus.CANCELED,          # Canceled before admission ran
        OrderStatus.FAILED,
    ],
    OrderStatus.ACTIVE: [
        OrderStatus.FILLED,
        OrderStatus.PARTIALLY_FILLED,
        OrderStatus.CANCELED,
        OrderStatus.EXPIRED,
        OrderStatus.FAILED,
    ],
    # Terminal states - no transitions allowed
    OrderStatus.PARTIALLY_FILLED: [],
    OrderStatus.FILLED: [],
    OrderStatus.CANCELED: [],
    OrderStatus.EXPIRED: [],
    OrderStatus.FAILED: [],
}


@dataclass
class StatusTransition:
    """Record of a status transition."""
    from_status: OrderStatus
    to_status: OrderStatus
    timestamp_ms: int
    reason: Optional[str] = None


@dataclass
class Order:
    """
    A limit swap order against a single pool.

    Terms (set at creation, never modified afterwards):
        input_amount: Amount of input token in smallest units
        limit_price: Minimum acceptable output/input rate
        slippage_tolerance: Fraction in [0, 1) shaved off quotes for the settlement floor
        tif: Time-in-force policy
        expiry_time_ms: Deadline (GTT only; defaults to creation + 1h)
        pool: Pool identifier (contract address)
        input_index / output_index: Token indices within the pool

    min_output_amount is derived once from the terms in __post_init__.
    """
    order_id: str
    input_token: str
    output_token: str
    input_amount: int
    limit_price: float
    slippage_tolerance: float
    tif: TimeInForce
    pool: str = ""
    input_index: int = 0
    output_index: int = 1
    receiver: str = ""
    expiry_time_ms: Optional[int] = None
    created_at_ms: int = 0

    min_output_amount: int = field(init=False, default=0)

    # Execution state
    status: OrderStatus = field(init=False, default=OrderStatus.PENDING)
    filled_amount: int = field(init=False, default=0)
    received_amount: int = field(init=False, default=0)
    settlement_ref: Optional[str] = field(init=False, default=None)
    failure_reason: str = field(init=False, default="")

    # Monitoring data
    last_quote_ms: Optional[int] = field(init=False, default=None)
    last_quoted_output: int = field(init=False, default=0)
    quote_count: int = field(init=False, default=0)

    transitions: List[StatusTransition] = field(init=False, default_factory=list)

    def __post_init__(self) -> None:
        if self.created_at_ms == 0:
            self.created_at_ms = now_ms()
        self.min_output_amount = math.floor(self.input_amount * self.limit_price)
        if self.tif is TimeInForce.GTT:
            if self.expiry_time_ms is None:
                self.expiry_time_ms = self.created_at_ms + DEFAULT_GTT_EXPIRY_MS
        else:
            self.expiry_time_ms = None

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def is_expired(self) -> bool:
        if self.tif is not TimeInForce.GTT or self.expiry_time_ms is None:
            return False
        return now_ms() >= self.expiry_time_ms

    def is_executable(self) -> bool:
        return self.status is OrderStatus.ACTIVE and not self.is_expired()

    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def remaining_amount(self) -> int:
        return self.input_amount - self.filled_amount

    def time_to_expiry_sec(self) -> Optional[float]:
        """Seconds until expiry (never negative), or None for non-GTT orders."""
        if self.expiry_time_ms is None:
            return None
        return max(0.0, (self.expiry_time_ms - now_ms()) / 1000.0)

    def get_fill_percentage(self) -> float:
        if self.input_amount == 0:
            return 0.0
        return self.filled_amount / self.input_amount * 100.0

    @property
    def tif_string(self) -> str:
        return self.tif.value if isinstance(self.tif, TimeInForce) else "UNKNOWN"

    @property
    def status_string(self) -> str:
        return self.status.value

    # ------------------------------------------------------------------
    # Mutations (owning strategy only)
    # ------------------------------------------------------------------

    def update_status(self, new_status: OrderStatus, reason: str = "") -> None:
        """
        Move the order to a new status.

        Raises:
            InvalidTransition: if the lifecycle does not allow the move, or a
                policy-specific terminal is requested for the wrong TIF.
        """
        self._check_transition(new_status)
        if self.filled_amount > 0 and new_status not in FILL_STATUSES:
            raise InvalidTransition(self.order_id, self.status.value, new_status.value)

        self.transitions.append(StatusTransition(
            from_status=self.status,
            to_status=new_status,
            timestamp_ms=now_ms(),
            reason=reason or None,
        ))
        self.status = new_status
        if reason:
            self.failure_reason = reason

    def record_fill(
        self,
        filled: int,
        received: int,
        settlement_ref: Optional[str],
        status: OrderStatus = OrderStatus.FILLED,
        reason: str = "",
    ) -> None:
        """
        Record an executed fill and move to a fill status in one step.

        Args:
            filled: Input amount executed (must be in (0, remaining])
            received: Output amount received (quoted)
            settlement_ref: Settlement reference (transaction hash)
            status: FILLED or PARTIALLY_FILLED
            reason: Optional reason text
        """
        if status not in FILL_STATUSES:
            raise InvalidTransition(self.order_id, self.status.value, status.value)
        if filled <= 0 or filled > self.remaining_amount:
            raise ValueError(
                f"order {self.order_id}: fill of {filled} outside (0, {self.remaining_amount}]"
            )
        self._check_transition(status)
        self.filled_amount += filled
        self.received_amount += received
        self.settlement_ref = settlement_ref
        self.update_status(status, reason)

    def _check_transition(self, new_status: OrderStatus) -> None:
        if new_status not in VALID_TRANSITIONS[self.status]:
            raise InvalidTransition(self.order_id, self.status.value, new_status.value)
        if new_status is OrderStatus.PARTIALLY_FILLED and self.tif is not TimeInForce.IOC:
            raise InvalidTransition(self.order_id, self.status.value, new_status.value)
        if new_status is OrderStatus.EXPIRED and self.tif is not TimeInForce.GTT:
            raise InvalidTransition(self.order_id, self.status.value, new_status.value)

    def record_quote(self, quoted_output: int) -> None:
        self.last_quote_ms = now_ms()
        self.last_quoted_output = quoted_output
        self.quote_count += 1

    def set_expiry_time(self, expiry_ms: int) -> None:
        """Set the deadline. Ignored for non-GTT orders."""
        if self.tif is TimeInForce.GTT:
            self.expiry_time_ms = expiry_ms

    def summary(self) -> Dict[str, Any]:
        """Flat dict for structured logging and reporting."""
        out: Dict[str, Any] = {
            "order_id": self.order_id,
            "status": self.status_string,
            "tif": self.tif_string,
            "input_amount": self.input_amount,
            "limit_price": self.limit_price,
            "min_output_amount": self.min_output_amount,
            "slippage_pct": self.slippage_tolerance * 100,
            "filled_pct": round(self.get_fill_percentage(), 4),
            "filled_amount": self.filled_amount,
            "received_amount": self.received_amount,
            "quote_count": self.quote_count,
        }
        if self.expiry_time_ms is not None:
            out["expiry_time_ms"] = self.expiry_time_ms
        if self.settlement_ref:
            out["settlement_ref"] = self.settlement_ref
        if self.failure_reason:
            out["reason"] = self.failure_reason
        return out


def new_order_id(tif: TimeInForce) -> str:
    return f"{tif.value}_{uuid.uuid4().hex[:8]}"


def create_order(
    tif: TimeInForce,
    input_token: str,
    output_token: str,
    input_amount: int,
    limit_price: float,
    slippage: float,
    receiver: str = "",
    pool: str = "",
    input_index: int = 0,
    output_index: int = 1,
    expiry_ms: Optional[int] = None,
    order_id: Optional[str] = None,
) -> Order:
    """Build an order for any TIF. expiry_ms is only honored for GTT."""
    return Order(
        order_id=order_id or new_order_id(tif),
        input_token=input_token,
        output_token=output_token,
        input_amount=input_amount,
        limit_price=limit_price,
        slippage_tolerance=slippage,
        tif=tif,
        pool=pool,
        input_index=input_index,
        output_index=output_index,
        receiver=receiver,
        expiry_time_ms=expiry_ms if tif is TimeInForce.GTT else None,
    )


def create_gtc(input_token: str, output_token: str, input_amount: int, limit_price: float,
               slippage: float, **kwargs: Any) -> Order:
    return create_order(TimeInForce.GTC, input_token, output_token, input_amount,
                        limit_price, slippage, **kwargs)


def create_gtt(input_token: str, output_token: str, input_amount: int, limit_price: float,
               slippage: float, expiry_ms: Optional[int] = None, **kwargs: Any) -> Order:
    return create_order(TimeInForce.GTT, input_token, output_token, input_amount,
                        limit_price, slippage, expiry_ms=expiry_ms, **kwargs)


def create_ioc(input_token: str, output_token: str, input_amount: int, limit_price: float,
               slippage: float, **kwargs: Any) -> Order:
    return create_order(TimeInForce.IOC, input_token, output_token, input_amount,
                        limit_price, slippage, **kwargs)


def create_fok(input_token: str, output_token: str, input_amount: int, limit_price: float,
               slippage: float, **kwargs: Any) -> Order:
    return create_order(TimeInForce.FOK, input_token, output_token, input_amount,
                        limit_price, slippage, **kwargs)
