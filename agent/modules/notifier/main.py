"""Notifier module - FastAPI service with background delivery worker."""

from __future__ import annotations

import asyncio

import redis.asyncio as aioredis
import structlog
from fastapi import Depends, FastAPI, HTTPException, status
from pydantic import BaseModel

from modules.notifier.errors import CapacityExceeded, InvalidRecipient, InvalidRequest
from modules.notifier.events import RedisEventPublisher
from modules.notifier.listener import request_listener
from modules.notifier.service import NotificationService
from modules.notifier.transport import DryRunTransport, TelegramTransport, Transport
from shared.auth import require_service_auth
from shared.config import Settings, get_settings
from shared.schemas.common import HealthResponse
from shared.schemas.notifications import (
    BulkNotificationRequest,
    NotificationRecord,
    NotificationRequest,
    QueueStatusSnapshot,
    StatsSnapshot,
)

structlog.configure(
    processors=[
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.format_exc_info,
        structlog.processors.JSONRenderer(),
    ],
)

logger = structlog.get_logger()
app = FastAPI(title="Notifier Module", version="1.0.0")

service: NotificationService | None = None
_redis: aioredis.Redis | None = None
_listener_task: asyncio.Task | None = None


class QueuedResponse(BaseModel):
    id: str


class BulkQueuedResponse(BaseModel):
    ids: list[str]


class CancelResponse(BaseModel):
    id: str
    cancelled: bool


class CleanupResponse(BaseModel):
    removed: int


def build_transport(settings: Settings) -> Transport:
    if not settings.telegram_token:
        logger.warning(
            "telegram_token_not_set",
            msg="Set TELEGRAM_TOKEN to deliver messages. Running in dry-run mode.",
        )
        return DryRunTransport()
    return TelegramTransport(settings.telegram_token)


@app.on_event("startup")
async def startup():
    global service, _redis, _listener_task
    settings = get_settings()
    service = NotificationService(build_transport(settings), settings.notifier_config())

    _redis = aioredis.from_url(settings.redis_url, encoding="utf-8", decode_responses=True)
    if settings.notifier_publish_events:
        service.events.subscribe(
            RedisEventPublisher(_redis, settings.notifier_events_channel)
        )

    await service.start()
    _listener_task = asyncio.create_task(
        request_listener(service, _redis, settings.notifier_request_channel)
    )
    logger.info("notifier_module_ready")


@app.on_event("shutdown")
async def shutdown():
    global _listener_task, _redis
    if _listener_task and not _listener_task.done():
        _listener_task.cancel()
        try:
            await _listener_task
        except asyncio.CancelledError:
            pass
    _listener_task = None

    if service is not None:
        await service.stop()
    if _redis is not None:
        await _redis.aclose()
        _redis = None
    logger.info("notifier_module_shutdown")


def _require_service() -> NotificationService:
    if service is None:
        raise HTTPException(status_code=503, detail="Module not ready")
    return service


@app.get("/health", response_model=HealthResponse)
async def health():
    return HealthResponse(worker_running=service.is_running if service else None)


@app.post(
    "/notifications",
    response_model=QueuedResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_notification(request: NotificationRequest, _=Depends(require_service_auth)):
    """Queue a single notification."""
    svc = _require_service()
    try:
        return QueuedResponse(id=svc.submit(request))
    except (InvalidRecipient, InvalidRequest) as e:
        raise HTTPException(status_code=422, detail=str(e))
    except CapacityExceeded as e:
        raise HTTPException(status_code=503, detail=str(e))


@app.post(
    "/notifications/bulk",
    response_model=BulkQueuedResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_bulk(request: BulkNotificationRequest, _=Depends(require_service_auth)):
    """Queue the same text for many recipients at low priority."""
    svc = _require_service()
    try:
        return BulkQueuedResponse(ids=svc.send_bulk(request.recipients, request.text, request.type))
    except InvalidRecipient as e:
        raise HTTPException(status_code=422, detail=str(e))
    except CapacityExceeded as e:
        raise HTTPException(status_code=503, detail=str(e))


@app.get("/notifications/{notification_id}", response_model=NotificationRecord)
async def get_notification(notification_id: str, _=Depends(require_service_auth)):
    record = _require_service().get_status(notification_id)
    if record is None:
        raise HTTPException(status_code=404, detail="Notification not found")
    return record


@app.delete("/notifications/{notification_id}", response_model=CancelResponse)
async def cancel_notification(notification_id: str, _=Depends(require_service_auth)):
    svc = _require_service()
    if svc.get_status(notification_id) is None:
        raise HTTPException(status_code=404, detail="Notification not found")
    return CancelResponse(id=notification_id, cancelled=svc.cancel(notification_id))


@app.get("/stats", response_model=StatsSnapshot)
async def stats(_=Depends(require_service_auth)):
    return _require_service().get_stats()


@app.get("/queue", response_model=QueueStatusSnapshot)
async def queue(_=Depends(require_service_auth)):
    return _require_service().get_queue_status()


@app.post("/cleanup", response_model=CleanupResponse)
async def cleanup(max_age_ms: int | None = None, _=Depends(require_service_auth)):
    """Prune finished notifications older than ``max_age_ms``."""
    return CleanupResponse(removed=_require_service().cleanup(max_age_ms))
