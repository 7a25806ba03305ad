"""Pydantic schemas for the notifier service."""

from shared.schemas.common import HealthResponse
from shared.schemas.notifications import (
    BulkNotificationRequest,
    NotificationBatch,
    NotificationContent,
    NotificationEvent,
    NotificationMetadata,
    NotificationRecord,
    NotificationRequest,
    NotifierConfig,
    QueueStatusSnapshot,
    RateLimitConfig,
    Recipient,
    StatsSnapshot,
)

__all__ = [
    "BulkNotificationRequest",
    "HealthResponse",
    "NotificationBatch",
    "NotificationContent",
    "NotificationEvent",
    "NotificationMetadata",
    "NotificationRecord",
    "NotificationRequest",
    "NotifierConfig",
    "QueueStatusSnapshot",
    "RateLimitConfig",
    "Recipient",
    "StatsSnapshot",
]
