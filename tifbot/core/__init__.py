"""
Core utilities package.

Exception hierarchy and small time helpers shared by the execution layer.
"""

from tifbot.core.errors import (
    InvalidTransition,
    OrderValidationError,
    QuoteUnavailable,
    SettlementFailed,
    TifBotError,
)
from tifbot.core.utils import now_ms

__all__ = [
    "InvalidTransition",
    "OrderValidationError",
    "QuoteUnavailable",
    "SettlementFailed",
    "TifBotError",
    "now_ms",
]
