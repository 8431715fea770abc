"""
Venue package.

Quote and settlement collaborators: contracts, Curve JSON-RPC quoting,
offline mocks, and timeout/serialization wrappers.
"""

from tifbot.venue.base import (
    QuoteSource,
    SerializedQuoteSource,
    SerializedSettlementSubmitter,
    SettlementSubmitter,
    TimeoutQuoteSource,
    TimeoutSettlementSubmitter,
)
from tifbot.venue.curve_pool import CurvePoolQuoteSource
from tifbot.venue.mock import DryRunSettlementSubmitter, MockQuoteSource

__all__ = [
    "QuoteSource",
    "SettlementSubmitter",
    "SerializedQuoteSource",
    "SerializedSettlementSubmitter",
    "TimeoutQuoteSource",
    "TimeoutSettlementSubmitter",
    "CurvePoolQuoteSource",
    "DryRunSettlementSubmitter",
    "MockQuoteSource",
]
