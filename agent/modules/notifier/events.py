"""Lifecycle events for producers that would rather not poll ``get_status``."""

from __future__ import annotations

from typing import Awaitable, Callable

import structlog

from shared.schemas.notifications import NotificationEvent

logger = structlog.get_logger()

Listener = Callable[[NotificationEvent], Awaitable[None]]


class EventBus:
    """Fan-out of notification events to async listeners.

    A listener that raises is logged and skipped; it never affects delivery.
    """

    def __init__(self):
        self._listeners: list[Listener] = []

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register ``listener`` and return a function that removes it."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    async def emit(self, event: NotificationEvent) -> None:
        for listener in list(self._listeners):
            try:
                await listener(event)
            except Exception:
                logger.warning(
                    "notification_listener_failed",
                    notification_event=event.event,
                    notification_id=event.notification_id,
                    exc_info=True,
                )


class RedisEventPublisher:
    """Listener that publishes each event as JSON on a Redis channel."""

    def __init__(self, redis_client, channel: str = "notifications:events"):
        self._redis = redis_client
        self.channel = channel

    async def __call__(self, event: NotificationEvent) -> None:
        await self._redis.publish(self.channel, event.model_dump_json())
        logger.debug(
            "notification_event_published",
            channel=self.channel,
            notification_event=event.event,
            notification_id=event.notification_id,
        )
