"""Application settings loaded from environment variables."""

import os

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _env_file() -> str | None:
    if os.getenv("PYTEST_CURRENT_TEST"):
        return None
    return ".env"


class Settings(BaseSettings):
    """smartpoll configuration. All values come from environment variables."""

    # Scheduler
    scheduler_timezone: str = Field(default="UTC")
    background_interval_multiplier: float = Field(default=1.0, ge=1.0)

    # Polling defaults (milliseconds)
    default_interval_ms: int = Field(default=30000, gt=0)
    default_max_retries: int = Field(default=3, ge=0)
    default_circuit_breaker_threshold: int = Field(default=5, ge=1)
    default_cache_ttl_ms: int = Field(default=300000, gt=0)

    # Graceful degradation
    stale_cache_alert_ms: int = Field(default=300000, ge=0)

    # Cache
    cache_max_entries: int = Field(default=100, ge=1)
    cache_stale_fraction: float = Field(default=0.8, gt=0.0, le=1.0)
    cache_retention_ms: int = Field(default=3600000, gt=0)

    # Alerts
    alert_max_alerts: int = Field(default=15, ge=1)
    alert_auto_hide_ms: int = Field(default=8000, ge=0)
    alert_notifications_enabled: bool = Field(default=True)
    alert_notify_on_circuit_breaker: bool = Field(default=True)
    alert_notify_on_recovery: bool = Field(default=True)

    # Webhook notification channel (disabled when empty)
    alert_webhook_url: str = Field(default="")
    alert_webhook_timeout_ms: int = Field(default=5000, gt=0)

    # Demo entry point
    poll_url: str = Field(default="")
    poll_timeout_ms: int = Field(default=10000, gt=0)

    # Logging
    log_level: str = Field(default="INFO")

    model_config = SettingsConfigDict(env_file=_env_file(), env_file_encoding="utf-8")

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        if os.getenv("PYTEST_CURRENT_TEST"):
            return (init_settings,)
        return (init_settings, env_settings, dotenv_settings, file_secret_settings)

    def get_poll_timeout_seconds(self) -> float:
        """POLL_TIMEOUT_MS as seconds, the unit httpx expects."""
        return self.poll_timeout_ms / 1000

    def get_webhook_timeout_seconds(self) -> float:
        """ALERT_WEBHOOK_TIMEOUT_MS as seconds."""
        return self.alert_webhook_timeout_ms / 1000


settings = Settings()
