"""Tests for QuoteHistory statistics."""

import pytest

from tifbot.execution.quote_history import Quote, QuoteHistory


class TestQuote:

    def test_rate(self):
        assert Quote(timestamp_ms=1, input_amount=1000, output_amount=1010).rate == pytest.approx(1.01)

    def test_zero_input_rate(self):
        assert Quote(timestamp_ms=1, input_amount=0, output_amount=5).rate == 0.0


class TestQuoteHistory:

    def test_empty_history(self):
        history = QuoteHistory()
        assert len(history) == 0
        assert history.latest is None
        assert history.min_rate == 0.0
        assert history.max_rate == 0.0
        assert history.avg_rate == 0.0
        assert history.change_pct() == 0.0
        assert history.is_above(1.0) is False

    def test_stats(self):
        history = QuoteHistory()
        history.record(1000, 990)
        history.record(1000, 1010)
        history.record(1000, 1000)
        assert history.min_rate == pytest.approx(0.99)
        assert history.max_rate == pytest.approx(1.01)
        assert history.avg_rate == pytest.approx(1.0)
        assert history.stats()["samples"] == 3

    def test_change_pct_between_last_two(self):
        history = QuoteHistory()
        history.record(1000, 1000)
        history.record(1000, 1010)
        assert history.change_pct() == pytest.approx(1.0)

    def test_change_pct_zero_output(self):
        history = QuoteHistory()
        history.record(1000, 0)
        history.record(1000, 1010)
        assert history.change_pct() == 0.0

    def test_bounded_window_drops_oldest(self):
        history = QuoteHistory(max_size=3)
        for out in (500, 1000, 1001, 1002):
            history.record(1000, out)
        assert len(history) == 3
        assert history.min_rate == pytest.approx(1.0)
        assert history.latest.output_amount == 1002

    def test_is_above_uses_latest(self):
        history = QuoteHistory()
        history.record(1000, 1100)
        history.record(1000, 950)
        assert history.is_above(1.0) is False
        assert history.is_above(0.95) is True
