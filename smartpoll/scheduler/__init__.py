"""Polling scheduler — models, backoff policy and the APScheduler-backed engine."""

from smartpoll.scheduler.engine import PollingScheduler
from smartpoll.scheduler.models import (
    ErrorStats,
    PollingCallback,
    PollingConfig,
    PollingRegistration,
    PollingState,
    TaskPhase,
    default_polling_config,
)
from smartpoll.scheduler.policy import (
    MAX_BACKOFF_MULTIPLIER,
    is_network_error,
    next_backoff_multiplier,
    next_delay_ms,
    should_open_circuit,
)

__all__ = [
    "MAX_BACKOFF_MULTIPLIER",
    "ErrorStats",
    "PollingCallback",
    "PollingConfig",
    "PollingRegistration",
    "PollingScheduler",
    "PollingState",
    "TaskPhase",
    "default_polling_config",
    "is_network_error",
    "next_backoff_multiplier",
    "next_delay_ms",
    "should_open_circuit",
]
