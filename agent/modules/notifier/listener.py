"""Redis ingress: producers publish NotificationRequest JSON, we queue it."""

from __future__ import annotations

import structlog
from pydantic import ValidationError

from modules.notifier.errors import NotifierError
from modules.notifier.service import NotificationService
from shared.schemas.notifications import NotificationRequest

logger = structlog.get_logger()


async def handle_request_message(service: NotificationService, data: str | bytes) -> str | None:
    """Validate and queue one request. Returns the id, or None if it was rejected."""
    try:
        request = NotificationRequest.model_validate_json(data)
        notification_id = service.submit(request)
    except ValidationError as e:
        logger.warning("notification_request_invalid", error=str(e))
        return None
    except NotifierError as e:
        logger.warning(
            "notification_request_rejected",
            reason=e.__class__.__name__,
            error=str(e),
        )
        return None

    logger.info("notification_request_accepted", notification_id=notification_id)
    return notification_id


async def request_listener(service: NotificationService, redis_client, channel: str) -> None:
    """Subscribe to ``channel`` and feed every message into the service."""
    pubsub = redis_client.pubsub()
    try:
        await pubsub.subscribe(channel)
        logger.info("notification_request_listener_started", channel=channel)

        async for message in pubsub.listen():
            if message["type"] != "message":
                continue
            try:
                await handle_request_message(service, message["data"])
            except Exception as e:
                logger.error("notification_request_failed", error=str(e), exc_info=True)
    except Exception as e:
        logger.error("notification_listener_failed", channel=channel, error=str(e))
    finally:
        await pubsub.unsubscribe(channel)
        await pubsub.aclose()
