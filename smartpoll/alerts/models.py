"""Alert data model."""

from __future__ import annotations

import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any


class AlertType(StrEnum):
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"
    SUCCESS = "success"


class AlertSeverity(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class AlertKind(StrEnum):
    """What an alert is about. Alerts dedupe on ``(task_id, kind)``."""

    POLLING_ERROR = "polling_error"
    NETWORK_ERROR = "network_error"
    CIRCUIT_BREAKER_OPEN = "circuit_breaker_open"
    POLLING_RECOVERY = "polling_recovery"
    CACHED_DATA_WARNING = "cached_data_warning"


class ActionStyle(StrEnum):
    PRIMARY = "primary"
    SECONDARY = "secondary"
    DANGER = "danger"


@dataclass
class AlertAction:
    """A button-like action attached to an alert.

    ``handler`` may be a plain function or a coroutine function; the sink
    awaits the result when it is awaitable.
    """

    label: str
    handler: Callable[[], Any]
    style: ActionStyle = ActionStyle.SECONDARY


@dataclass
class Alert:
    """A task-health notification.

    Attributes:
        id: Unique alert identifier.
        type: Visual category (error/warning/info/success).
        severity: Urgency, drives logging level and system notifications.
        title: Short human-readable heading.
        message: Human-readable detail.
        task_id: The polling task this alert concerns, if any.
        kind: Dedup key together with ``task_id``.
        timestamp: Creation time (UTC).
        dismissed: Whether the alert has been acknowledged.
        actions: Optional actions offered to the user.
        metadata: Error counts, circuit flag, cache age, last error.
    """

    type: AlertType
    severity: AlertSeverity
    title: str
    message: str
    task_id: str | None = None
    kind: AlertKind | None = None
    id: str = field(default_factory=lambda: f"alert-{uuid.uuid4().hex[:12]}")
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))
    dismissed: bool = False
    actions: list[AlertAction] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def dedup_key(self) -> tuple[str, AlertKind] | None:
        if self.task_id is None or self.kind is None:
            return None
        return (self.task_id, self.kind)

    def get_action(self, label: str) -> AlertAction | None:
        for action in self.actions:
            if action.label == label:
                return action
        return None
