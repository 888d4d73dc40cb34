"""Webhook implementation of the NotificationChannel protocol."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import httpx

if TYPE_CHECKING:
    from smartpoll.alerts.models import Alert

logger = logging.getLogger(__name__)


class WebhookChannel:
    """POSTs alerts as JSON to an HTTP endpoint (Slack-style incoming webhooks, ntfy, etc.).

    Args:
        url: Endpoint receiving the POST.
        client: Shared ``httpx.AsyncClient``. One is created lazily when omitted.
        timeout: Request timeout in seconds.
    """

    def __init__(
        self,
        url: str,
        *,
        client: httpx.AsyncClient | None = None,
        timeout: float = 5.0,
    ) -> None:
        self._url = url
        self._client = client
        self._owns_client = client is None
        self._timeout = timeout

    @property
    def name(self) -> str:
        return "webhook"

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self._timeout)
            self._owns_client = True
        return self._client

    @staticmethod
    def build_payload(alert: Alert) -> dict[str, str | None]:
        return {
            "id": alert.id,
            "title": alert.title,
            "text": alert.message,
            "severity": alert.severity.value,
            "type": alert.type.value,
            "task_id": alert.task_id,
            "kind": alert.kind.value if alert.kind else None,
            "tag": f"polling-alert-{alert.task_id or alert.id}",
            "timestamp": alert.timestamp.isoformat(),
        }

    async def notify(self, alert: Alert) -> bool:
        """POST the alert. Returns True on a 2xx response."""
        try:
            resp = await self._get_client().post(self._url, json=self.build_payload(alert))
        except httpx.HTTPError:
            logger.exception("WebhookChannel.notify failed for alert %s", alert.id)
            return False
        if resp.is_success:
            logger.info("Webhook notified for alert %s (%s)", alert.id, alert.title)
            return True
        logger.error(
            "Webhook rejected alert %s: status=%d body=%s",
            alert.id,
            resp.status_code,
            resp.text[:200],
        )
        return False

    async def aclose(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None
