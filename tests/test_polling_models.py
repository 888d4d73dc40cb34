"""Tests for polling config, state and registration models."""

from unittest.mock import AsyncMock

import pytest
from pydantic import ValidationError

from smartpoll.config import Settings
from smartpoll.scheduler.models import (
    ErrorStats,
    PollingConfig,
    PollingRegistration,
    PollingState,
    TaskPhase,
    default_polling_config,
)

# -- PollingConfig -------------------------------------------------------------


class TestPollingConfig:
    def test_defaults(self):
        c = PollingConfig()
        assert c.interval_ms == 30000
        assert c.enabled is True
        assert c.pause_on_inactive is True
        assert c.max_retries == 3
        assert c.exponential_backoff is True
        assert c.circuit_breaker_threshold == 5
        assert c.enable_caching is True
        assert c.cache_ttl_ms == 300000
        assert c.enable_alerts is True
        assert c.graceful_degradation is True

    def test_is_frozen(self):
        c = PollingConfig()
        with pytest.raises(ValidationError):
            c.interval_ms = 5

    def test_rejects_non_positive_interval(self):
        with pytest.raises(ValidationError):
            PollingConfig(interval_ms=0)

    def test_rejects_zero_threshold(self):
        with pytest.raises(ValidationError):
            PollingConfig(circuit_breaker_threshold=0)

    def test_rejects_unknown_field(self):
        with pytest.raises(ValidationError):
            PollingConfig(interval=1000)

    def test_merged_returns_new_value(self):
        c = PollingConfig(interval_ms=1000)
        updated = c.merged(interval_ms=2000, enable_alerts=False)
        assert updated.interval_ms == 2000
        assert updated.enable_alerts is False
        assert c.interval_ms == 1000
        assert c.enable_alerts is True

    def test_merged_validates(self):
        with pytest.raises(ValidationError):
            PollingConfig().merged(interval_ms=-1)

    def test_from_settings(self):
        s = Settings(default_interval_ms=1234, default_circuit_breaker_threshold=2)
        c = PollingConfig.from_settings(s, enabled=False)
        assert c.interval_ms == 1234
        assert c.circuit_breaker_threshold == 2
        assert c.enabled is False

    def test_default_polling_config_overrides(self):
        c = default_polling_config(pause_on_inactive=False)
        assert c.pause_on_inactive is False
        assert c.interval_ms == 30000


# -- PollingState / registration ----------------------------------------------


def test_fresh_state() -> None:
    s = PollingState()
    assert s.active is True
    assert s.paused is False
    assert s.phase == TaskPhase.IDLE
    assert s.error_count == 0
    assert s.consecutive_errors == 0
    assert s.backoff_multiplier == 1
    assert s.circuit_breaker_open is False
    assert s.last_error is None


def test_registration_running_follows_phase() -> None:
    reg = PollingRegistration(id="t1", callback=AsyncMock(), config=PollingConfig())
    assert reg.running is False
    reg.state.phase = TaskPhase.RUNNING
    assert reg.running is True


def test_registrations_do_not_share_state_or_lock() -> None:
    a = PollingRegistration(id="a", callback=AsyncMock(), config=PollingConfig())
    b = PollingRegistration(id="b", callback=AsyncMock(), config=PollingConfig())
    assert a.state is not b.state
    assert a.lock is not b.lock


def test_error_stats_snapshot() -> None:
    err = RuntimeError("boom")
    state = PollingState(
        error_count=4,
        consecutive_errors=2,
        circuit_breaker_open=False,
        last_error=err,
        using_cached_data=True,
    )
    stats = ErrorStats.from_state(state)
    assert stats == ErrorStats(
        error_count=4,
        consecutive_errors=2,
        circuit_breaker_open=False,
        last_error=err,
        using_cached_data=True,
    )
    state.error_count = 9
    assert stats.error_count == 4
