"""Task-health alerts and system notification channels."""

from smartpoll.alerts.channels import LogChannel, NotificationChannel
from smartpoll.alerts.models import (
    ActionStyle,
    Alert,
    AlertAction,
    AlertKind,
    AlertSeverity,
    AlertType,
)
from smartpoll.alerts.router import NotificationRouter
from smartpoll.alerts.sink import AlertSink, AlertStats
from smartpoll.alerts.webhook_channel import WebhookChannel

__all__ = [
    "ActionStyle",
    "Alert",
    "AlertAction",
    "AlertKind",
    "AlertSeverity",
    "AlertSink",
    "AlertStats",
    "AlertType",
    "LogChannel",
    "NotificationChannel",
    "NotificationRouter",
    "WebhookChannel",
]
