"""
Exception hierarchy for order execution.

Collaborator failures are normalized into two kinds so strategies can
decide per policy what is transient and what is terminal.
"""

from __future__ import annotations


class TifBotError(Exception):
    """Base class for all tifbot errors."""
    pass


class QuoteUnavailable(TifBotError):
    """Quote could not be obtained (network, malformed response, pool error, timeout)."""
    pass


class SettlementFailed(TifBotError):
    """Accepted fill could not be submitted for settlement."""
    pass


class OrderValidationError(TifBotError):
    """Order terms are malformed; raised at admission time."""
    pass


class InvalidTransition(TifBotError):
    """Raised when an order status change violates the lifecycle."""

    def __init__(self, order_id: str, from_status: str, to_status: str) -> None:
        super().__init__(f"order {order_id}: invalid transition {from_status} -> {to_status}")
        self.order_id = order_id
        self.from_status = from_status
        self.to_status = to_status
