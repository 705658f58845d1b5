import logging
import time

import pytest

from edumetrics.metrics import MetricsAggregator
from edumetrics.tags import SeriesKey


def test_timer_round_trip(agg, clock):
    handle = agg.start_timer("agent.call", {"agent": "socratic"})
    clock.advance(250)
    assert agg.end_timer(handle) == 250
    s = agg.get_histogram_stats("agent.call", {"agent": "socratic"})
    assert s["count"] == 1
    assert s["sum"] == 250
    assert agg.timers == {}


def test_timer_with_wall_clock():
    agg = MetricsAggregator()
    handle = agg.start_timer("sleep")
    time.sleep(0.02)
    assert agg.end_timer(handle) >= 20
    assert agg.get_histogram_stats("sleep")["count"] == 1


def test_unknown_handle_returns_zero_and_warns(agg, caplog):
    with caplog.at_level(logging.WARNING, logger="edumetrics.metrics"):
        assert agg.end_timer(SeriesKey.of("never.started")) == 0
    assert "Timer not found" in caplog.text
    assert agg.histograms == {}


def test_double_end_does_not_add_samples(agg, clock):
    handle = agg.start_timer("t")
    clock.advance(5)
    agg.end_timer(handle)
    assert agg.end_timer(handle) == 0
    assert agg.get_histogram_stats("t")["count"] == 1


def test_restart_overwrites_pending_timer(agg, clock):
    first = agg.start_timer("t", {"k": "v"})
    clock.advance(100)
    second = agg.start_timer("t", {"k": "v"})
    assert first == second
    clock.advance(10)
    assert agg.end_timer(first) == 10


def test_timed_closes_on_error(agg, clock):
    with pytest.raises(ValueError):
        with agg.timed("agent.call", {"agent": "quiz"}):
            clock.advance(30)
            raise ValueError("llm down")
    assert agg.get_histogram_stats("agent.call", {"agent": "quiz"})["sum"] == 30
    assert agg.timers == {}
