"""
Structured logging setup for tifbot.

Every engine event is logged as a JSON object with an "event" key
(order_admitted, quote, fill, order_final, ...). This module decides where
those lines go:

- console: rich output for humans, or one JSON object per line
- file: JSON lines written by a background thread so polling loops never
  block on disk
- repeated quote errors from a dead upstream are throttled per order
"""

from __future__ import annotations

import atexit
import json
import logging
import queue
import sys
import threading
import time
from datetime import datetime
from typing import Any, Dict, Optional, Set

from rich.logging import RichHandler

THROTTLED_EVENTS = frozenset({"quote_error", "rpc_retry"})

_STOP = object()


def _event_payload(record: logging.LogRecord) -> Optional[Dict[str, Any]]:
    """The JSON event carried by a record, or None for plain text."""
    try:
        data = json.loads(record.getMessage())
    except (json.JSONDecodeError, TypeError):
        return None
    if isinstance(data, dict) and "event" in data:
        return data
    return None


class JsonFormatter(logging.Formatter):
    """
    One JSON object per record.

    Event records are flattened into the line (so "order_id", "status"
    etc. sit next to "ts" and "level"); plain messages go under "msg".
    """

    def format(self, record: logging.LogRecord) -> str:
        ts = record.created
        out: Dict[str, Any] = {
            "ts": ts,
            "ts_iso": datetime.fromtimestamp(ts).isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "logger": record.name,
        }
        event = _event_payload(record)
        if event is None:
            out["msg"] = record.getMessage()
        else:
            out.update(event)
        if record.exc_info:
            out["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(out, separators=(",", ":"), default=str)


class AsyncQueueHandler(logging.Handler):
    """
    Hands records to a writer thread that owns the target handler.

    emit() never blocks: when the queue is full the record is dropped and
    counted. close() drains what is queued, then closes the target.
    """

    def __init__(self, target: logging.Handler, max_queue_size: int = 10000):
        super().__init__()
        self._queue: queue.Queue = queue.Queue(maxsize=max_queue_size)
        self._target = target
        self._closed = False
        self._dropped = 0
        self._thread = threading.Thread(target=self._drain, daemon=True, name="tifbot-log-writer")
        self._thread.start()
        atexit.register(self.close)

    @property
    def dropped(self) -> int:
        return self._dropped

    def emit(self, record: logging.LogRecord) -> None:
        if self._closed:
            return
        try:
            self._queue.put_nowait(record)
        except queue.Full:
            self._dropped += 1

    def _drain(self) -> None:
        while True:
            item = self._queue.get()
            if item is _STOP:
                return
            self._target.handle(item)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            self._queue.put(_STOP, timeout=2.0)
        except queue.Full:
            sys.stderr.write("[tifbot] log queue still full at shutdown\n")
        self._thread.join(timeout=2.0)
        if self._dropped:
            sys.stderr.write(f"[tifbot] dropped {self._dropped} log records (queue full)\n")
        self._target.close()
        super().close()


class ThrottledFilter(logging.Filter):
    """
    Lets one record per (event, order_id) through every cooldown_sec.

    Only events in throttled_events are affected. Suppressed records are
    counted per key so the next one that passes can report how many were
    hidden.
    """

    def __init__(self, cooldown_sec: float = 30.0, throttled_events: Optional[Set[str]] = None):
        super().__init__()
        self._cooldown = cooldown_sec
        self._events = frozenset(throttled_events) if throttled_events else THROTTLED_EVENTS
        self._last_pass: Dict[str, float] = {}
        self._suppressed: Dict[str, int] = {}

    def suppressed(self, event: str, order_id: str = "") -> int:
        return self._suppressed.get(f"{event}:{order_id}", 0)

    def filter(self, record: logging.LogRecord) -> bool:
        data = _event_payload(record)
        if data is None or data["event"] not in self._events:
            return True

        key = f"{data['event']}:{data.get('order_id', '')}"
        now = time.monotonic()
        last = self._last_pass.get(key)
        if last is not None and now - last < self._cooldown:
            self._suppressed[key] = self._suppressed.get(key, 0) + 1
            return False
        self._last_pass[key] = now
        return True


def _console_handler(json_console: bool) -> logging.Handler:
    if json_console:
        handler: logging.Handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(JsonFormatter())
        return handler
    handler = RichHandler(show_time=True, show_level=True, show_path=False, markup=False)
    handler.setFormatter(logging.Formatter("%(message)s"))
    return handler


def _file_handler(path: str, async_file: bool) -> logging.Handler:
    file_handler = logging.FileHandler(path)
    file_handler.setFormatter(JsonFormatter())
    if async_file:
        return AsyncQueueHandler(file_handler)
    return file_handler


def build_logger(
    name: str = "tifbot",
    level: int = logging.INFO,
    file_path: Optional[str] = None,
    json_console: bool = False,
    async_file: bool = True,
    throttle_warnings: bool = True,
) -> logging.Logger:
    """
    Configure the application logger.

    Args:
        name: Logger name
        level: Minimum log level for the logger and its handlers
        file_path: JSON-lines log file (None disables file logging)
        json_console: JSON on stdout instead of rich output
        async_file: Write the file from a background thread
        throttle_warnings: Throttle repeated quote errors on the console

    Returns:
        The logger. Calling again only updates levels.
    """
    logger = logging.getLogger(name)
    logger.setLevel(level)

    if logger.handlers:
        for h in logger.handlers:
            h.setLevel(level)
        return logger

    console = _console_handler(json_console)
    if throttle_warnings:
        console.addFilter(ThrottledFilter())
    handlers = [console]
    if file_path:
        handlers.append(_file_handler(file_path, async_file))

    for h in handlers:
        h.setLevel(level)
        logger.addHandler(h)
    logger.propagate = False
    return logger


def log_event(
    logger: logging.Logger,
    event: str,
    level: int = logging.INFO,
    **data
) -> None:
    """
    Log a structured event.

    Usage:
        log_event(log, "fill", order_id="GTC_1", filled=1000000)
    """
    logger.log(level, json.dumps({"event": event, **data}, default=str))
