"""HTTP polling callbacks built on httpx."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from smartpoll.scheduler.models import PollingCallback

logger = logging.getLogger(__name__)


def http_json_task(
    url: str,
    *,
    client: httpx.AsyncClient | None = None,
    timeout: float = 10.0,
    headers: dict[str, str] | None = None,
    params: dict[str, Any] | None = None,
) -> PollingCallback:
    """Build a polling callback that GETs *url* and returns the decoded JSON body.

    Transport failures propagate as ``httpx.TransportError`` (classified as
    network errors by the scheduler). Non-2xx responses raise
    ``httpx.HTTPStatusError``.

    Args:
        url: Endpoint to poll.
        client: Shared client; a short-lived one is opened per call when omitted.
        timeout: Request timeout in seconds (per-call clients only).
        headers: Extra request headers.
        params: Query parameters.
    """

    async def fetch(http: httpx.AsyncClient) -> Any:
        resp = await http.get(url, headers=headers, params=params)
        resp.raise_for_status()
        logger.debug("Polled %s: status=%d", url, resp.status_code)
        return resp.json()

    async def poll() -> Any:
        if client is not None:
            return await fetch(client)
        async with httpx.AsyncClient(timeout=timeout) as http:
            return await fetch(http)

    return poll
