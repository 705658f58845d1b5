import pytest

from edumetrics.config import MetricsConfig
from edumetrics.metrics import MetricsAggregator


class FakeClock:
    """Millisecond clock the tests move by hand."""

    def __init__(self, now: int = 1_000_000):
        self.now = now

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def agg(clock):
    # never started: no sweeper thread in unit tests
    return MetricsAggregator(MetricsConfig(), clock=clock)
