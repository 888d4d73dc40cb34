"""PollingContext — wires the scheduler to its cache, alert sink and visibility gate."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from smartpoll.alerts.channels import LogChannel
from smartpoll.alerts.router import NotificationRouter
from smartpoll.alerts.sink import AlertSink
from smartpoll.alerts.webhook_channel import WebhookChannel
from smartpoll.cache.store import CacheStore
from smartpoll.config import Settings
from smartpoll.config import settings as default_settings
from smartpoll.scheduler.engine import PollingScheduler
from smartpoll.visibility import VisibilityGate

logger = logging.getLogger(__name__)


@dataclass
class PollingContext:
    """Owns one scheduler and the collaborators it reports to.

    Attributes:
        scheduler: The polling engine.
        cache: Last-known-good results, shared with the scheduler.
        alerts: Alert sink the scheduler reports into.
        visibility: Gate the host flips when it becomes (in)active.
        router: System notification fan-out used by the alert sink.
    """

    scheduler: PollingScheduler
    cache: CacheStore
    alerts: AlertSink
    visibility: VisibilityGate
    router: NotificationRouter

    @classmethod
    def from_settings(
        cls,
        settings: Settings | None = None,
        *,
        visibility: VisibilityGate | None = None,
        router: NotificationRouter | None = None,
    ) -> PollingContext:
        """Build a context from *settings* (defaults to the process settings).

        When no router is given, one is created with a LogChannel and, if
        ``alert_webhook_url`` is set, a WebhookChannel.
        """
        settings = settings or default_settings
        if router is None:
            router = NotificationRouter()
            router.register_channel(LogChannel())
            if settings.alert_webhook_url:
                router.register_channel(
                    WebhookChannel(
                        settings.alert_webhook_url,
                        timeout=settings.get_webhook_timeout_seconds(),
                    )
                )
        gate = visibility or VisibilityGate()
        cache = CacheStore(
            default_ttl_ms=settings.default_cache_ttl_ms,
            max_entries=settings.cache_max_entries,
            stale_fraction=settings.cache_stale_fraction,
            retention_ms=settings.cache_retention_ms,
        )
        alerts = AlertSink.from_settings(settings, router=router)
        scheduler = PollingScheduler(
            cache=cache,
            alerts=alerts,
            visibility=gate,
            timezone=settings.scheduler_timezone,
            stale_cache_alert_ms=settings.stale_cache_alert_ms,
            background_interval_multiplier=settings.background_interval_multiplier,
        )
        logger.info("Polling context ready (channels=%s)", router.list_channels())
        return cls(
            scheduler=scheduler,
            cache=cache,
            alerts=alerts,
            visibility=gate,
            router=router,
        )

    async def start(self) -> None:
        await self.scheduler.start()

    async def stop(self) -> None:
        """Stop the scheduler, flush notifications and close HTTP channels."""
        await self.scheduler.stop()
        await self.alerts.drain()
        self.alerts.close()
        for name in self.router.list_channels():
            channel = self.router.get_channel(name)
            if isinstance(channel, WebhookChannel):
                await channel.aclose()
