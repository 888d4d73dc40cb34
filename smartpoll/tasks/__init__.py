"""Ready-made polling callbacks."""

from smartpoll.tasks.http import http_json_task

__all__ = ["http_json_task"]
