"""Backoff and circuit-breaker policy — pure functions over failure counters."""

from __future__ import annotations

from typing import TYPE_CHECKING

import httpx

if TYPE_CHECKING:
    from smartpoll.scheduler.models import PollingConfig

# Backoff never stretches an interval beyond this factor.
MAX_BACKOFF_MULTIPLIER = 16

_NETWORK_KEYWORDS = ("network", "fetch", "connection", "timeout", "timed out", "unreachable")
_NETWORK_ERROR_TYPES: tuple[type[BaseException], ...] = (
    httpx.TransportError,
    ConnectionError,
    TimeoutError,
)


def next_backoff_multiplier(current: int, *, exponential_backoff: bool) -> int:
    """Multiplier to use after one more failure."""
    if not exponential_backoff:
        return current
    return min(max(current, 1) * 2, MAX_BACKOFF_MULTIPLIER)


def next_delay_ms(
    config: PollingConfig,
    backoff_multiplier: int,
    *,
    scale: float = 1.0,
) -> float:
    """Delay before the next execution.

    *scale* stretches the base interval independently of backoff (used for
    tasks that keep running while the host context is inactive).
    """
    interval = config.interval_ms * scale
    if config.exponential_backoff and backoff_multiplier > 1:
        interval *= backoff_multiplier
    return interval


def should_open_circuit(consecutive_errors: int, threshold: int) -> bool:
    return consecutive_errors >= threshold


def is_network_error(error: BaseException) -> bool:
    """Heuristic: does *error* look like a transport problem rather than a bad response?"""
    if isinstance(error, _NETWORK_ERROR_TYPES):
        return True
    message = str(error).lower()
    return any(keyword in message for keyword in _NETWORK_KEYWORDS)
