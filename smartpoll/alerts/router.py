"""NotificationRouter — fans system notifications out to registered channels."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from smartpoll.alerts.channels import NotificationChannel
    from smartpoll.alerts.models import Alert

logger = logging.getLogger(__name__)


class NotificationRouter:
    """Routes alert notifications to one or all registered channels.

    Delivery is best-effort: a channel that raises or returns False is
    logged and skipped, never propagated to the caller.
    """

    def __init__(self) -> None:
        self._channels: dict[str, NotificationChannel] = {}
        self._default: str = ""

    def register_channel(self, channel: NotificationChannel) -> None:
        """Register a notification channel. Raises ValueError on duplicate name."""
        if channel.name in self._channels:
            msg = f"Channel '{channel.name}' is already registered"
            raise ValueError(msg)
        self._channels[channel.name] = channel

    def unregister_channel(self, name: str) -> bool:
        if self._default == name:
            self._default = ""
        return self._channels.pop(name, None) is not None

    def set_default_channel(self, name: str) -> None:
        """Set the default channel by name. Raises KeyError if not registered."""
        if name not in self._channels:
            msg = f"Channel '{name}' is not registered"
            raise KeyError(msg)
        self._default = name

    def get_channel(self, name: str) -> NotificationChannel | None:
        """Look up a channel by name."""
        return self._channels.get(name)

    def list_channels(self) -> list[str]:
        """Return names of all registered channels."""
        return list(self._channels.keys())

    @property
    def default_channel_name(self) -> str:
        """The name of the current default channel."""
        return self._default

    @property
    def has_channels(self) -> bool:
        return bool(self._channels)

    def _resolve_channel(self, name: str | None) -> NotificationChannel | None:
        """Resolve a channel: explicit name → default → only registered channel."""
        if name:
            return self._channels.get(name)
        if self._default:
            return self._channels.get(self._default)
        if len(self._channels) == 1:
            return next(iter(self._channels.values()))
        return None

    async def send(self, alert: Alert, *, channel: str | None = None) -> bool:
        """Deliver *alert* through a single resolved channel."""
        ch = self._resolve_channel(channel)
        if ch is None:
            logger.warning("No channel resolved for send (requested=%s)", channel)
            return False
        return await self._deliver(ch, alert)

    async def broadcast(self, alert: Alert) -> int:
        """Deliver *alert* through every channel. Returns the number that succeeded."""
        delivered = 0
        for ch in list(self._channels.values()):
            if await self._deliver(ch, alert):
                delivered += 1
        return delivered

    async def _deliver(self, ch: NotificationChannel, alert: Alert) -> bool:
        try:
            ok = await ch.notify(alert)
        except Exception:
            logger.exception("Channel %s failed to deliver alert %s", ch.name, alert.id)
            return False
        if not ok:
            logger.warning("Channel %s rejected alert %s", ch.name, alert.id)
        return ok
