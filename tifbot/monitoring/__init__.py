"""
Monitoring and observability package.
"""

from tifbot.monitoring.metrics import EngineMetrics

__all__ = [
    "EngineMetrics",
]
