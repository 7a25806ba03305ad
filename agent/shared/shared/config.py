"""Configuration management using Pydantic Settings."""

from __future__ import annotations

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict

from shared.schemas.notifications import NotifierConfig, RateLimitConfig


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Redis
    redis_url: str = "redis://redis:6379"

    # Platform tokens
    telegram_token: str = ""

    # Inter-service auth (empty = development mode, no check)
    service_auth_token: str = ""

    # Notification queue
    notifier_max_retries: int = 3
    notifier_retry_delay_ms: int = 5000
    notifier_batch_size: int = 10
    notifier_queue_size: int = 1000
    notifier_messages_per_minute: int = 30
    notifier_messages_per_hour: int = 1000
    notifier_loop_interval_seconds: float = 1.0
    # Pause inside a batch while the rate limiter refuses
    notifier_rate_limit_delay_seconds: float = 1.0
    # Hard cap on one transport call; 0 disables the timeout
    notifier_transport_timeout_seconds: float = 30.0

    # Retained history of finished notifications
    notifier_history_max_age_ms: int = 24 * 60 * 60 * 1000
    notifier_cleanup_interval_seconds: int = 3600

    # Redis pub/sub
    notifier_request_channel: str = "notifications:telegram"
    notifier_events_channel: str = "notifications:events"
    notifier_publish_events: bool = True

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    def notifier_config(self) -> NotifierConfig:
        """Build the queue configuration consumed by the notifier core."""
        return NotifierConfig(
            max_retries=self.notifier_max_retries,
            retry_delay_ms=self.notifier_retry_delay_ms,
            batch_size=self.notifier_batch_size,
            queue_size=self.notifier_queue_size,
            rate_limit=RateLimitConfig(
                messages_per_minute=self.notifier_messages_per_minute,
                messages_per_hour=self.notifier_messages_per_hour,
            ),
            loop_interval_seconds=self.notifier_loop_interval_seconds,
            rate_limit_delay_seconds=self.notifier_rate_limit_delay_seconds,
            transport_timeout_seconds=self.notifier_transport_timeout_seconds,
            history_max_age_ms=self.notifier_history_max_age_ms,
            cleanup_interval_seconds=self.notifier_cleanup_interval_seconds,
        )


@lru_cache
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
