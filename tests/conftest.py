"""Shared test fixtures."""

import pytest

from smartpoll.alerts.sink import AlertSink
from smartpoll.cache.store import CacheStore
from smartpoll.scheduler.engine import PollingScheduler
from smartpoll.visibility import VisibilityGate


class FakeClock:
    """Manually advanced clock returning epoch seconds."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance_ms(self, ms: float) -> None:
        self.now += ms / 1000


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def cache(clock: FakeClock) -> CacheStore:
    return CacheStore(clock=clock)


@pytest.fixture
def alerts():
    sink = AlertSink()
    yield sink
    sink.close()


@pytest.fixture
def gate() -> VisibilityGate:
    return VisibilityGate()


@pytest.fixture
async def engine(cache: CacheStore, alerts: AlertSink, gate: VisibilityGate):
    """A scheduler that is never started: tests fire timers via ``_run_task``."""
    e = PollingScheduler(
        cache=cache,
        alerts=alerts,
        visibility=gate,
        timezone="UTC",
        stale_cache_alert_ms=300000,
        background_interval_multiplier=1.0,
    )
    yield e
    await e.stop()
