"""
Execution layer.

- Order: terms, execution state and lifecycle guards
- fill_evaluator: pure price/slippage decisions
- policies: GTC / GTT / IOC / FOK strategies and their dispatch table
- OrderEngine: admission, per-order isolation and reporting
"""

from tifbot.execution.order import (
    Order,
    OrderStatus,
    TimeInForce,
    create_fok,
    create_gtc,
    create_gtt,
    create_ioc,
    create_order,
)
from tifbot.execution.fill_evaluator import (
    FillDecision,
    FullFill,
    NoFill,
    PartialFill,
    Reject,
    evaluate,
    get_max_fillable_amount,
    get_min_output_with_slippage,
    is_price_met,
    is_price_met_for_amount,
)
from tifbot.execution.quote_history import Quote, QuoteHistory
from tifbot.execution.policies import POLICIES, PolicyConfig, PolicyContext, get_policy
from tifbot.execution.engine import OrderEngine, validate_order

__all__ = [
    "Order",
    "OrderStatus",
    "TimeInForce",
    "create_order",
    "create_gtc",
    "create_gtt",
    "create_ioc",
    "create_fok",
    "FillDecision",
    "FullFill",
    "NoFill",
    "PartialFill",
    "Reject",
    "evaluate",
    "get_max_fillable_amount",
    "get_min_output_with_slippage",
    "is_price_met",
    "is_price_met_for_amount",
    "Quote",
    "QuoteHistory",
    "POLICIES",
    "PolicyConfig",
    "PolicyContext",
    "get_policy",
    "OrderEngine",
    "validate_order",
]
