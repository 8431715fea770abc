"""
ErrorStreak: consecutive-error breaker for order monitoring loops.

GTC/GTT loops treat quote errors as transient. When a maximum number of
consecutive errors is configured, exceeding it ends the order as FAILED
instead of polling a dead upstream forever.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Callable, Optional

log = logging.getLogger("tifbot")


class ErrorStreak:
    """
    Tracks consecutive errors for one order.

    threshold <= 0 disables tripping; errors are still counted and logged.
    Not shared between orders, so no locking.
    """

    def __init__(self, threshold: int = 0, order_id: str = "",
                 log_event: Optional[Callable[..., None]] = None) -> None:
        self.threshold = threshold
        self.order_id = order_id
        self.streak: int = 0
        self.total_errors: int = 0
        self._tripped: bool = False
        self._log_event = log_event or self._default_log

    def _default_log(self, event: str, **kwargs: Any) -> None:
        log.warning(json.dumps({"event": event, **kwargs}))

    @property
    def is_tripped(self) -> bool:
        return self._tripped

    def record_error(self, where: str, error: Exception) -> bool:
        """
        Record an error. Returns True once the streak exceeds the threshold.
        """
        self.streak += 1
        self.total_errors += 1
        self._log_event("quote_error", order_id=self.order_id, where=where,
                        err=str(error), streak=self.streak)
        if self.threshold > 0 and self.streak > self.threshold:
            self._tripped = True
            self._log_event("error_streak_tripped", order_id=self.order_id,
                            streak=self.streak, threshold=self.threshold)
            return True
        return False

    def record_success(self) -> None:
        """Successful call resets the streak."""
        if self.streak > 0:
            self.streak = 0
