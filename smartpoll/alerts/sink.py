"""AlertSink — collects, deduplicates and broadcasts task-health alerts."""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections import Counter
from collections.abc import Callable
from dataclasses import dataclass
from functools import partial
from typing import TYPE_CHECKING, Any

from smartpoll.alerts.models import (
    ActionStyle,
    Alert,
    AlertAction,
    AlertKind,
    AlertSeverity,
    AlertType,
)

if TYPE_CHECKING:
    from smartpoll.alerts.router import NotificationRouter
    from smartpoll.config import Settings

logger = logging.getLogger(__name__)

AlertListener = Callable[[list[Alert]], None]

_LOG_LEVELS = {
    AlertSeverity.CRITICAL: logging.ERROR,
    AlertSeverity.HIGH: logging.WARNING,
}


@dataclass(frozen=True)
class AlertStats:
    total: int
    active: int
    by_severity: dict[str, int]
    by_type: dict[str, int]
    by_task: dict[str, int]


def _describe_error(error: BaseException) -> str:
    return str(error) or type(error).__name__


def _format_age(age_ms: float) -> str:
    minutes = int(age_ms // 60000)
    if minutes > 60:
        return f"{minutes // 60} hours {minutes % 60} minutes"
    return f"{minutes} minutes"


class AlertSink:
    """Holds the most recent alerts and tells subscribers when they change.

    Alerts that share a ``(task_id, kind)`` pair replace the live
    (non-dismissed) alert in place instead of piling up. At most
    *max_alerts* are retained; the oldest is evicted first.

    Critical, circuit-breaker and recovery alerts are also pushed to the
    *router* as system notifications. Delivery runs as a background task on
    the current event loop and is skipped when there is no loop or no
    channel.

    Args:
        max_alerts: Retention bound.
        auto_hide_ms: Success/info alerts are dismissed after this delay
            (0 disables auto-hide).
        router: Optional NotificationRouter for system notifications.
        notifications_enabled: Master switch for system notifications.
        notify_on_circuit_breaker: Notify when a circuit opens.
        notify_on_recovery: Notify when a task recovers.
    """

    def __init__(
        self,
        *,
        max_alerts: int = 15,
        auto_hide_ms: int = 8000,
        router: NotificationRouter | None = None,
        notifications_enabled: bool = True,
        notify_on_circuit_breaker: bool = True,
        notify_on_recovery: bool = True,
    ) -> None:
        if max_alerts < 1:
            msg = f"max_alerts must be at least 1, got {max_alerts}"
            raise ValueError(msg)
        self._alerts: list[Alert] = []
        self._listeners: list[AlertListener] = []
        self._max_alerts = max_alerts
        self._auto_hide_ms = auto_hide_ms
        self._router = router
        self._notifications_enabled = notifications_enabled
        self._notify_on_circuit_breaker = notify_on_circuit_breaker
        self._notify_on_recovery = notify_on_recovery
        self._pending: set[asyncio.Task] = set()
        self._hide_handles: dict[str, asyncio.TimerHandle] = {}

    @classmethod
    def from_settings(
        cls, settings: Settings, router: NotificationRouter | None = None
    ) -> AlertSink:
        return cls(
            max_alerts=settings.alert_max_alerts,
            auto_hide_ms=settings.alert_auto_hide_ms,
            router=router,
            notifications_enabled=settings.alert_notifications_enabled,
            notify_on_circuit_breaker=settings.alert_notify_on_circuit_breaker,
            notify_on_recovery=settings.alert_notify_on_recovery,
        )

    # -- Creation --------------------------------------------------------------

    def create_alert(
        self,
        type: AlertType,
        severity: AlertSeverity,
        title: str,
        message: str,
        *,
        task_id: str | None = None,
        kind: AlertKind | None = None,
        actions: list[AlertAction] | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> Alert:
        """Record a new alert, collapsing it onto a live alert with the same key."""
        alert = Alert(
            type=type,
            severity=severity,
            title=title,
            message=message,
            task_id=task_id,
            kind=kind,
            actions=list(actions or []),
            metadata=dict(metadata or {}),
        )
        self._add(alert)
        return alert

    def polling_error(
        self,
        task_id: str,
        error: BaseException,
        consecutive_errors: int,
        retry: Callable[[], Any] | None = None,
    ) -> Alert:
        actions = [AlertAction("Retry Now", retry, ActionStyle.PRIMARY)] if retry else []
        return self._create_dismissible(
            AlertType.ERROR,
            AlertSeverity.HIGH if consecutive_errors >= 3 else AlertSeverity.MEDIUM,
            "Polling Error",
            f'Polling "{task_id}" failed: {_describe_error(error)}. '
            f"{consecutive_errors} consecutive errors.",
            task_id=task_id,
            kind=AlertKind.POLLING_ERROR,
            actions=actions,
            metadata={
                "consecutive_errors": consecutive_errors,
                "circuit_breaker_open": False,
                "last_error": error,
            },
        )

    def network_error(
        self,
        task_id: str,
        error: BaseException,
        consecutive_errors: int,
        retry: Callable[[], Any] | None = None,
    ) -> Alert:
        actions = [AlertAction("Retry", retry, ActionStyle.PRIMARY)] if retry else []
        return self._create_dismissible(
            AlertType.ERROR,
            AlertSeverity.HIGH,
            "Network Connection Error",
            f'Network error in polling "{task_id}": {_describe_error(error)}. '
            "Check the connection to the upstream service.",
            task_id=task_id,
            kind=AlertKind.NETWORK_ERROR,
            actions=actions,
            metadata={
                "consecutive_errors": consecutive_errors,
                "circuit_breaker_open": False,
                "last_error": error,
            },
        )

    def circuit_breaker_open(
        self,
        task_id: str,
        consecutive_errors: int,
        reset: Callable[[], Any] | None = None,
    ) -> Alert:
        actions = [AlertAction("Reset & Retry", reset, ActionStyle.DANGER)] if reset else []
        return self._create_dismissible(
            AlertType.ERROR,
            AlertSeverity.CRITICAL,
            "Circuit Breaker Activated",
            f'Polling "{task_id}" has been stopped after {consecutive_errors} '
            "consecutive failures. Manual intervention required.",
            task_id=task_id,
            kind=AlertKind.CIRCUIT_BREAKER_OPEN,
            actions=actions,
            metadata={
                "consecutive_errors": consecutive_errors,
                "circuit_breaker_open": True,
            },
        )

    def recovery(self, task_id: str) -> Alert:
        return self._create_dismissible(
            AlertType.SUCCESS,
            AlertSeverity.LOW,
            "Polling Recovered",
            f'Polling "{task_id}" has recovered and is working normally.',
            task_id=task_id,
            kind=AlertKind.POLLING_RECOVERY,
            metadata={"consecutive_errors": 0, "circuit_breaker_open": False},
        )

    def cached_data(
        self,
        task_id: str,
        age_ms: float,
        refresh: Callable[[], Any] | None = None,
    ) -> Alert:
        actions = [AlertAction("Force Refresh", refresh, ActionStyle.PRIMARY)] if refresh else []
        return self._create_dismissible(
            AlertType.WARNING,
            AlertSeverity.MEDIUM,
            "Using Cached Data",
            f'Showing cached data for "{task_id}" ({_format_age(age_ms)} old) '
            "due to polling errors.",
            task_id=task_id,
            kind=AlertKind.CACHED_DATA_WARNING,
            actions=actions,
            metadata={"cache_age_ms": age_ms},
        )

    # -- Mutation --------------------------------------------------------------

    def dismiss_alert(self, alert_id: str) -> bool:
        alert = self.get_alert(alert_id)
        if alert is None or alert.dismissed:
            return False
        alert.dismissed = True
        self._cancel_auto_hide(alert_id)
        self._notify_listeners()
        return True

    def clear_alert(self, alert_id: str) -> bool:
        before = len(self._alerts)
        self._alerts = [a for a in self._alerts if a.id != alert_id]
        self._cancel_auto_hide(alert_id)
        if len(self._alerts) == before:
            return False
        self._notify_listeners()
        return True

    def clear_all(self) -> None:
        for alert_id in list(self._hide_handles):
            self._cancel_auto_hide(alert_id)
        self._alerts = []
        self._notify_listeners()

    def clear_for_task(self, task_id: str) -> int:
        """Remove every alert for *task_id*. Returns the number removed."""
        doomed = [a for a in self._alerts if a.task_id == task_id]
        if not doomed:
            return 0
        for alert in doomed:
            self._cancel_auto_hide(alert.id)
        self._alerts = [a for a in self._alerts if a.task_id != task_id]
        self._notify_listeners()
        return len(doomed)

    async def run_action(self, alert_id: str, label: str) -> bool:
        """Invoke the action labelled *label* on an alert. False if either is missing."""
        alert = self.get_alert(alert_id)
        action = alert.get_action(label) if alert else None
        if action is None:
            logger.warning("No action %r on alert %s", label, alert_id)
            return False
        result = action.handler()
        if inspect.isawaitable(result):
            await result
        return True

    # -- Subscription ----------------------------------------------------------

    def subscribe(self, listener: AlertListener) -> Callable[[], None]:
        """Call *listener* with the active alerts after every change.

        Returns an unsubscribe function.
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    # -- Queries ---------------------------------------------------------------

    def get_alert(self, alert_id: str) -> Alert | None:
        for alert in self._alerts:
            if alert.id == alert_id:
                return alert
        return None

    def active_alerts(self) -> list[Alert]:
        return [a for a in self._alerts if not a.dismissed]

    def alerts_for_task(self, task_id: str) -> list[Alert]:
        return [a for a in self._alerts if a.task_id == task_id and not a.dismissed]

    def all_alerts(self) -> list[Alert]:
        return list(self._alerts)

    def stats(self) -> AlertStats:
        active = self.active_alerts()
        return AlertStats(
            total=len(self._alerts),
            active=len(active),
            by_severity=dict(Counter(a.severity.value for a in active)),
            by_type=dict(Counter(a.type.value for a in active)),
            by_task=dict(Counter(a.task_id or "unknown" for a in active)),
        )

    # -- Lifecycle -------------------------------------------------------------

    async def drain(self) -> None:
        """Wait for in-flight system notifications to finish."""
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)

    def close(self) -> None:
        """Cancel auto-hide timers and outstanding notification deliveries."""
        for alert_id in list(self._hide_handles):
            self._cancel_auto_hide(alert_id)
        for task in list(self._pending):
            task.cancel()

    # -- Internal --------------------------------------------------------------

    def _create_dismissible(
        self,
        type: AlertType,
        severity: AlertSeverity,
        title: str,
        message: str,
        *,
        task_id: str,
        kind: AlertKind,
        actions: list[AlertAction] | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> Alert:
        alert = Alert(
            type=type,
            severity=severity,
            title=title,
            message=message,
            task_id=task_id,
            kind=kind,
            actions=list(actions or []),
            metadata={"task_id": task_id, "kind": kind.value, **(metadata or {})},
        )
        alert.actions.append(AlertAction("Dismiss", partial(self.dismiss_alert, alert.id)))
        self._add(alert)
        return alert

    def _add(self, alert: Alert) -> None:
        index = self._find_live(alert.dedup_key)
        if index is not None:
            self._cancel_auto_hide(self._alerts[index].id)
            self._alerts[index] = alert
        else:
            while len(self._alerts) >= self._max_alerts:
                evicted = self._alerts.pop(0)
                self._cancel_auto_hide(evicted.id)
            self._alerts.append(alert)

        logger.log(
            _LOG_LEVELS.get(alert.severity, logging.INFO),
            "Polling alert [%s] %s: %s",
            alert.severity,
            alert.title,
            alert.message,
        )
        self._notify_listeners()

        if self._should_notify(alert):
            self._dispatch(alert)
        if alert.type in (AlertType.SUCCESS, AlertType.INFO) and self._auto_hide_ms > 0:
            self._schedule_auto_hide(alert)

    def _find_live(self, key: tuple[str, AlertKind] | None) -> int | None:
        if key is None:
            return None
        for index, existing in enumerate(self._alerts):
            if existing.dedup_key == key and not existing.dismissed:
                return index
        return None

    def _notify_listeners(self) -> None:
        active = self.active_alerts()
        for listener in list(self._listeners):
            try:
                listener(active)
            except Exception:
                logger.exception("Alert listener %r failed", listener)

    def _should_notify(self, alert: Alert) -> bool:
        if not self._notifications_enabled:
            return False
        if alert.severity == AlertSeverity.CRITICAL:
            return True
        if alert.kind == AlertKind.CIRCUIT_BREAKER_OPEN:
            return self._notify_on_circuit_breaker
        if alert.kind == AlertKind.POLLING_RECOVERY:
            return self._notify_on_recovery
        return False

    def _dispatch(self, alert: Alert) -> None:
        if self._router is None or not self._router.has_channels:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop; skipping notification for %s", alert.id)
            return
        task = loop.create_task(self._router.broadcast(alert))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    def _schedule_auto_hide(self, alert: Alert) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return
        self._hide_handles[alert.id] = loop.call_later(
            self._auto_hide_ms / 1000, self.dismiss_alert, alert.id
        )

    def _cancel_auto_hide(self, alert_id: str) -> None:
        handle = self._hide_handles.pop(alert_id, None)
        if handle is not None:
            handle.cancel()
