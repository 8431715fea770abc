"""
Prometheus metrics for the order engine.

Each EngineMetrics owns its registry unless one is passed in, so several
engines (and tests) never collide on metric names.
"""

from prometheus_client import Counter, Histogram, CollectorRegistry
from typing import Optional


class EngineMetrics:
    """Counters for order lifecycle, quoting and settlement."""

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        reg = registry or CollectorRegistry()
        self.registry = reg

        # === Lifecycle ===
        self.orders_admitted = Counter(
            'orders_admitted_total',
            'Orders admitted to the engine',
            labelnames=['tif'],
            registry=reg
        )
        self.orders_rejected = Counter(
            'orders_rejected_total',
            'Orders rejected at admission',
            labelnames=['reason'],
            registry=reg
        )
        self.orders_final = Counter(
            'orders_final_total',
            'Orders reaching a terminal status',
            labelnames=['tif', 'status'],
            registry=reg
        )

        # === Quoting ===
        self.quotes = Counter(
            'quotes_total',
            'Quotes received',
            labelnames=['tif'],
            registry=reg
        )
        self.quote_errors = Counter(
            'quote_errors_total',
            'Quote requests that failed',
            labelnames=['tif'],
            registry=reg
        )
        self.order_quote_count = Histogram(
            'order_quote_count',
            'Quotes observed per order before reaching a terminal status',
            buckets=[1, 2, 5, 10, 25, 50, 100, 500, 1000],
            registry=reg
        )

        # === Settlement ===
        self.settlements = Counter(
            'settlements_total',
            'Fills submitted for settlement',
            labelnames=['tif'],
            registry=reg
        )
        self.settlement_errors = Counter(
            'settlement_errors_total',
            'Settlement submissions that failed',
            labelnames=['tif'],
            registry=reg
        )
