"""Polling task data model — config, mutable state, and the registration record."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, Field

if TYPE_CHECKING:
    from apscheduler.job import Job

    from smartpoll.config import Settings

PollingCallback = Callable[[], Awaitable[Any]]


class PollingConfig(BaseModel):
    """Immutable per-task configuration.

    Use :meth:`merged` to derive an updated copy; fields are never mutated
    in place.

    Attributes:
        interval_ms: Base delay between executions, in milliseconds.
        enabled: Whether the task is scheduled at all.
        pause_on_inactive: Suspend the task while the host context is inactive.
        max_retries: Retry limit; changing it resets the circuit breaker.
        exponential_backoff: Double the delay after each failure (capped at 16x).
        circuit_breaker_threshold: Consecutive failures that open the circuit.
        enable_caching: Keep the last successful result in the cache.
        cache_ttl_ms: Freshness window for cached results.
        enable_alerts: Emit alerts for failures, circuit changes and recovery.
        graceful_degradation: Fall back to cached data while failing.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    interval_ms: int = Field(default=30000, gt=0)
    enabled: bool = True
    pause_on_inactive: bool = True
    max_retries: int = Field(default=3, ge=0)
    exponential_backoff: bool = True
    circuit_breaker_threshold: int = Field(default=5, ge=1)
    enable_caching: bool = True
    cache_ttl_ms: int = Field(default=300000, gt=0)
    enable_alerts: bool = True
    graceful_degradation: bool = True

    def merged(self, **changes: Any) -> PollingConfig:
        """Return a validated copy with *changes* applied."""
        return PollingConfig.model_validate({**self.model_dump(), **changes})

    @classmethod
    def from_settings(cls, settings: Settings, **overrides: Any) -> PollingConfig:
        """Build a config from the application defaults plus *overrides*."""
        base = {
            "interval_ms": settings.default_interval_ms,
            "max_retries": settings.default_max_retries,
            "circuit_breaker_threshold": settings.default_circuit_breaker_threshold,
            "cache_ttl_ms": settings.default_cache_ttl_ms,
        }
        return cls.model_validate({**base, **overrides})


def default_polling_config(**overrides: Any) -> PollingConfig:
    """Config built from the process-wide settings."""
    from smartpoll.config import settings

    return PollingConfig.from_settings(settings, **overrides)


class TaskPhase(StrEnum):
    """Where a task sits in its execution cycle."""

    IDLE = "idle"
    SCHEDULED = "scheduled"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SUSPENDED = "suspended"


@dataclass
class PollingState:
    """Mutable runtime state. Only the scheduler writes to it."""

    active: bool = True
    paused: bool = False
    paused_for_inactivity: bool = False
    phase: TaskPhase = TaskPhase.IDLE
    last_execution: datetime | None = None
    next_execution: datetime | None = None
    next_delay_ms: float | None = None
    error_count: int = 0
    consecutive_errors: int = 0
    circuit_breaker_open: bool = False
    backoff_multiplier: int = 1
    last_successful_execution: datetime | None = None
    last_error: BaseException | None = None
    using_cached_data: bool = False


@dataclass
class PollingRegistration:
    """A registered polling task.

    Attributes:
        id: Unique task identifier.
        callback: Zero-argument coroutine function invoked on each firing.
        config: Current immutable configuration.
        state: Runtime state owned by the scheduler.
        timer: The pending APScheduler job, or None when nothing is armed.
        lock: Serialises timer-driven and forced executions of this task.
    """

    id: str
    callback: PollingCallback
    config: PollingConfig
    state: PollingState = field(default_factory=PollingState)
    timer: Job | None = None
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)

    @property
    def running(self) -> bool:
        return self.state.phase == TaskPhase.RUNNING


@dataclass(frozen=True)
class ErrorStats:
    """Snapshot of a task's failure counters."""

    error_count: int
    consecutive_errors: int
    circuit_breaker_open: bool
    last_error: BaseException | None
    using_cached_data: bool

    @classmethod
    def from_state(cls, state: PollingState) -> ErrorStats:
        return cls(
            error_count=state.error_count,
            consecutive_errors=state.consecutive_errors,
            circuit_breaker_open=state.circuit_breaker_open,
            last_error=state.last_error,
            using_cached_data=state.using_cached_data,
        )
