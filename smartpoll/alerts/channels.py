"""NotificationChannel protocol — interface for system notification delivery."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Protocol, runtime_checkable

from smartpoll.alerts.models import AlertSeverity

if TYPE_CHECKING:
    from smartpoll.alerts.models import Alert

_LEVELS = {
    AlertSeverity.CRITICAL: logging.ERROR,
    AlertSeverity.HIGH: logging.WARNING,
}


@runtime_checkable
class NotificationChannel(Protocol):
    """Protocol that all notification channels must satisfy."""

    @property
    def name(self) -> str:
        """Unique channel identifier (e.g. 'log', 'webhook')."""
        ...

    async def notify(self, alert: Alert) -> bool:
        """Deliver *alert*. Returns True on success."""
        ...


class LogChannel:
    """Writes notifications to a dedicated logger.

    Useful as the always-available fallback when no external channel is
    configured.
    """

    def __init__(self, logger_name: str = "smartpoll.notifications") -> None:
        self._logger = logging.getLogger(logger_name)

    @property
    def name(self) -> str:
        return "log"

    async def notify(self, alert: Alert) -> bool:
        self._logger.log(
            _LEVELS.get(alert.severity, logging.INFO),
            "[%s] %s: %s",
            alert.severity,
            alert.title,
            alert.message,
        )
        return True
