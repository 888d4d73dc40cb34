"""smartpoll entry point — polls POLL_URL and reports task health through the log."""

import asyncio
import logging
import signal

from smartpoll.config import settings
from smartpoll.context import PollingContext
from smartpoll.scheduler.models import default_polling_config
from smartpoll.tasks.http import http_json_task

logging.basicConfig(
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    level=getattr(logging, settings.log_level),
)
logger = logging.getLogger(__name__)


async def run() -> None:
    """Register the configured URL as a polling task and run until interrupted."""
    context = PollingContext.from_settings(settings)
    context.scheduler.register(
        "poll_url",
        http_json_task(settings.poll_url, timeout=settings.get_poll_timeout_seconds()),
        default_polling_config(pause_on_inactive=False),
    )

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    await context.start()
    try:
        await stop.wait()
    finally:
        await context.stop()


def main() -> None:
    """Start polling the configured URL."""
    if not settings.poll_url:
        logger.error("POLL_URL is not set — nothing to poll")
        raise SystemExit(1)
    logger.info("Starting smartpoll against %s...", settings.poll_url)
    asyncio.run(run())


if __name__ == "__main__":
    main()
