"""
Risk controls package.

Consecutive-error tracking for long-running monitoring loops.
"""

from tifbot.risk.error_streak import ErrorStreak

__all__ = [
    "ErrorStreak",
]
