"""
Fill evaluation - pure decision logic over an order and a quote.

All functions are side-effect free and never raise for valid inputs.
Integer amounts derived from real multiplications are floored, so the
evaluator never promises more output than the quote supports.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Union

from tifbot.execution.order import Order


@dataclass(frozen=True)
class NoFill:
    """Price not met; keep waiting (or give up, per policy)."""
    pass


@dataclass(frozen=True)
class FullFill:
    """Execute the whole remaining amount."""
    output: int


@dataclass(frozen=True)
class PartialFill:
    """Execute fillable_input of the order; output is the full-size quote scaled down to it."""
    fillable_input: int
    output: int


@dataclass(frozen=True)
class Reject:
    """Order cannot be evaluated (not executable, nothing left)."""
    reason: str


FillDecision = Union[NoFill, FullFill, PartialFill, Reject]


def is_price_met(order: Order, quoted_output: int) -> bool:
    """True iff quoted_output / input_amount >= limit_price (inclusive)."""
    if order.input_amount == 0:
        return False
    return quoted_output / order.input_amount >= order.limit_price


def is_price_met_for_amount(order: Order, quoted_output: int, amount: int) -> bool:
    """Same comparison against the amount actually quoted."""
    if amount == 0:
        return False
    return quoted_output / amount >= order.limit_price


def get_max_fillable_amount(order: Order, quoted_output: int) -> int:
    """
    Remaining amount if the full-size price check passes, else 0.

    No proportional sizing: a partial fill only ever means "whatever is
    left", never a reduced-size requote.
    """
    if order.input_amount == 0:
        return 0
    remaining = order.input_amount - order.filled_amount
    if remaining <= 0:
        return 0
    if is_price_met(order, quoted_output):
        return remaining
    return 0


def get_min_output_with_slippage(order: Order, quoted_output: int) -> int:
    """Settlement floor: floor(quoted_output * (1 - slippage_tolerance))."""
    return math.floor(quoted_output * (1.0 - order.slippage_tolerance))


def evaluate(order: Order, quoted_output: int) -> FillDecision:
    """Combine the checks above into one decision for a full-size quote."""
    if not order.is_executable():
        return Reject(reason=f"order not executable (status={order.status_string})")
    if order.remaining_amount <= 0:
        return Reject(reason="nothing left to fill")
    fillable = get_max_fillable_amount(order, quoted_output)
    if fillable == 0:
        return NoFill()
    if fillable == order.input_amount:
        return FullFill(output=quoted_output)
    return PartialFill(
        fillable_input=fillable,
        output=quoted_output * fillable // order.input_amount,
    )
