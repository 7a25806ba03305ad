"""Notification schemas for the outbound delivery queue and its Redis channels."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

Priority = Literal["low", "medium", "high", "critical"]
NotificationStatus = Literal["pending", "processing", "sent", "failed", "cancelled"]
BatchStatus = Literal["pending", "processing", "completed", "failed"]
ParseMode = Literal["HTML", "Markdown", "MarkdownV2"]

TERMINAL_STATUSES: frozenset[str] = frozenset({"sent", "failed", "cancelled"})


class RateLimitConfig(BaseModel):
    """Fixed-window ceilings for outbound messages."""

    model_config = ConfigDict(frozen=True)

    messages_per_minute: int = Field(default=30, ge=1)
    messages_per_hour: int = Field(default=1000, ge=1)


class NotifierConfig(BaseModel):
    """Tuning knobs for the delivery queue."""

    model_config = ConfigDict(frozen=True)

    max_retries: int = Field(default=3, ge=1)
    retry_delay_ms: int = Field(default=5000, ge=0)
    batch_size: int = Field(default=10, ge=1)
    queue_size: int = Field(default=1000, ge=1)
    rate_limit: RateLimitConfig = Field(default_factory=RateLimitConfig)
    loop_interval_seconds: float = Field(default=1.0, gt=0)
    rate_limit_delay_seconds: float = Field(default=1.0, gt=0)
    transport_timeout_seconds: float = Field(default=30.0, ge=0)
    history_max_age_ms: int = Field(default=24 * 60 * 60 * 1000, ge=0)
    cleanup_interval_seconds: int = Field(default=3600, ge=1)


class Recipient(BaseModel):
    """Where a notification goes: a numeric chat id or a textual handle, never both."""

    channel_id: int | None = None
    handle: str | None = None

    def is_valid(self) -> bool:
        has_channel = self.channel_id is not None
        has_handle = bool(self.handle and self.handle.strip("@ "))
        return has_channel != has_handle

    def describe(self) -> str:
        if self.channel_id is not None:
            return str(self.channel_id)
        return f"@{(self.handle or '').lstrip('@')}"


class NotificationContent(BaseModel):
    """Message body plus rendering hints for the transport."""

    text: str
    parse_mode: ParseMode | None = None
    options: dict[str, Any] = Field(default_factory=dict)


class NotificationMetadata(BaseModel):
    """Lifecycle bookkeeping for a single notification."""

    created_at: datetime
    scheduled_for: datetime | None = None
    retry_count: int = 0
    max_retries: int = Field(default=3, ge=1)
    last_attempt: datetime | None = None
    last_error: str | None = None
    next_attempt_at: datetime | None = None  # set while waiting out a retry delay
    completed_at: datetime | None = None


class NotificationRecord(BaseModel):
    """The unit of work owned by the queue."""

    id: str
    type: str = "custom"  # business event tag, e.g. "balance_change"
    priority: Priority = "medium"
    recipient: Recipient
    content: NotificationContent
    metadata: NotificationMetadata
    status: NotificationStatus = "pending"

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class NotificationBatch(BaseModel):
    """The slice of the queue handled by one processing cycle."""

    id: str
    messages: list[NotificationRecord]
    status: BatchStatus = "pending"
    created_at: datetime
    processed_at: datetime | None = None


class NotificationRequest(BaseModel):
    """Producer-facing request, accepted over HTTP and the Redis request channel.

    Exactly one of ``channel_id`` / ``handle`` must be set, and either ``text``
    or a ``template`` name (rendered with ``template_args``).
    """

    channel_id: int | None = None
    handle: str | None = None
    text: str | None = None
    template: str | None = None
    template_args: dict[str, Any] = Field(default_factory=dict)
    type: str = "custom"
    priority: Priority = "medium"
    parse_mode: ParseMode | None = None
    options: dict[str, Any] = Field(default_factory=dict)
    scheduled_for: datetime | None = None
    max_retries: int | None = Field(default=None, ge=1)


class BulkNotificationRequest(BaseModel):
    """The same text to many recipients, queued at low priority."""

    recipients: list[Recipient]
    text: str
    type: str = "custom"


class NotificationEvent(BaseModel):
    """Lifecycle transition pushed to observers."""

    event: Literal["sent", "retrying", "failed"]
    notification_id: str
    type: str
    priority: Priority
    recipient: Recipient
    retry_count: int
    max_retries: int
    error: str | None = None
    next_attempt_at: datetime | None = None
    occurred_at: datetime


class RateLimitSnapshot(BaseModel):
    minute: int
    hour: int


class StatsSnapshot(BaseModel):
    """Cumulative counters plus the live state of the worker."""

    total_sent: int
    total_failed: int
    total_queued: int
    total_cancelled: int
    total_retries: int
    batches_processed: int
    average_processing_time_ms: float
    queue_size: int
    is_processing: bool
    current_batch: str | None = None
    rate_limits: RateLimitSnapshot
    config: NotifierConfig


class QueueStatusSnapshot(BaseModel):
    """Composition of the live queue, computed by scanning it."""

    total: int
    pending: int
    processing: int
    failed: int
    cancelled: int
    waiting_retry: int
    priority_breakdown: dict[str, int]
    type_breakdown: dict[str, int]
