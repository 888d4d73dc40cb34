"""smartpoll — adaptive asyncio polling with backoff, circuit breaking and graceful degradation."""

from smartpoll.alerts import AlertSink, NotificationRouter
from smartpoll.cache import CacheStore
from smartpoll.context import PollingContext
from smartpoll.scheduler import PollingConfig, PollingScheduler, default_polling_config
from smartpoll.visibility import VisibilityGate

__all__ = [
    "AlertSink",
    "CacheStore",
    "NotificationRouter",
    "PollingConfig",
    "PollingContext",
    "PollingScheduler",
    "VisibilityGate",
    "default_polling_config",
]
