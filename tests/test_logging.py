"""Tests for structured logging helpers."""

import json
import logging

from tifbot.infra.logging_cfg import (
    AsyncQueueHandler,
    JsonFormatter,
    ThrottledFilter,
    build_logger,
    log_event,
)


def make_record(msg, level=logging.WARNING):
    return logging.LogRecord("tifbot.test", level, __file__, 1, msg, None, None)


def event_record(event, **data):
    return make_record(json.dumps({"event": event, **data}))


class TestJsonFormatter:

    def test_plain_message(self):
        out = json.loads(JsonFormatter().format(make_record("hello")))
        assert out["msg"] == "hello"
        assert out["level"] == "WARNING"
        assert out["logger"] == "tifbot.test"
        assert "ts_iso" in out

    def test_event_is_flattened(self):
        out = json.loads(JsonFormatter().format(event_record("fill", order_id="IOC_1", filled=10)))
        assert out["event"] == "fill"
        assert out["order_id"] == "IOC_1"
        assert out["filled"] == 10
        assert "msg" not in out


class TestThrottledFilter:

    def test_repeats_suppressed_per_order(self):
        f = ThrottledFilter(cooldown_sec=60.0)
        assert f.filter(event_record("quote_error", order_id="A")) is True
        assert f.filter(event_record("quote_error", order_id="A")) is False
        assert f.filter(event_record("quote_error", order_id="A")) is False
        assert f.filter(event_record("quote_error", order_id="B")) is True
        assert f.suppressed("quote_error", "A") == 2
        assert f.suppressed("quote_error", "B") == 0

    def test_zero_cooldown_passes_everything(self):
        f = ThrottledFilter(cooldown_sec=0.0)
        assert f.filter(event_record("quote_error", order_id="A")) is True
        assert f.filter(event_record("quote_error", order_id="A")) is True

    def test_other_events_pass(self):
        f = ThrottledFilter(cooldown_sec=60.0)
        rec = event_record("fill", order_id="A")
        assert f.filter(rec) is True
        assert f.filter(rec) is True

    def test_plain_text_passes(self):
        assert ThrottledFilter().filter(make_record("not json")) is True


class TestAsyncQueueHandler:

    def test_drains_on_close(self, tmp_path):
        path = tmp_path / "out.jsonl"
        target = logging.FileHandler(path)
        target.setFormatter(JsonFormatter())
        handler = AsyncQueueHandler(target)
        handler.emit(make_record("first"))
        handler.emit(event_record("order_final", order_id="GTC_1"))
        handler.close()
        handler.close()

        lines = [json.loads(line) for line in path.read_text().strip().splitlines()]
        assert lines[0]["msg"] == "first"
        assert lines[1]["event"] == "order_final"
        assert handler.dropped == 0

    def test_emit_after_close_ignored(self, tmp_path):
        target = logging.FileHandler(tmp_path / "out.jsonl")
        handler = AsyncQueueHandler(target)
        handler.close()
        handler.emit(make_record("late"))
        assert handler.dropped == 0


class TestBuildLogger:

    def test_file_logging_and_idempotence(self, tmp_path):
        path = tmp_path / "tifbot.log"
        logger = build_logger("tifbot.test.file", file_path=str(path), async_file=False)
        again = build_logger("tifbot.test.file", file_path=str(path), async_file=False)
        assert again is logger
        assert len(logger.handlers) == 2
        assert logger.propagate is False

        log_event(logger, "order_admitted", order_id="GTC_1", input_amount=1_000_000)
        for h in logger.handlers:
            h.flush()

        line = json.loads(path.read_text().strip().splitlines()[-1])
        assert line["event"] == "order_admitted"
        assert line["order_id"] == "GTC_1"
        assert line["input_amount"] == 1_000_000

    def test_json_console(self):
        logger = build_logger("tifbot.test.console", json_console=True)
        assert isinstance(logger.handlers[0].formatter, JsonFormatter)
        assert any(isinstance(f, ThrottledFilter) for f in logger.handlers[0].filters)


def test_log_event_serializes_unknown_types(caplog):
    logger = logging.getLogger("tifbot.test.event")
    with caplog.at_level(logging.INFO, logger="tifbot.test.event"):
        log_event(logger, "startup", path=object.__new__(object))
    payload = json.loads(caplog.records[-1].getMessage())
    assert payload["event"] == "startup"
    assert payload["path"].startswith("<object")
