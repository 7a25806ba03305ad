"""Notification service, the entry point producers use to queue messages."""

from __future__ import annotations

import asyncio
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any

import structlog

from modules.notifier import templates
from modules.notifier.clock import Clock, SystemClock
from modules.notifier.errors import InvalidRecipient, InvalidRequest
from modules.notifier.events import EventBus
from modules.notifier.queue_store import QueueStore
from modules.notifier.rate_limiter import RateLimiter
from modules.notifier.retry import RetryPolicy
from modules.notifier.stats import StatsCollector, queue_status
from modules.notifier.transport import Transport
from modules.notifier.worker import NotificationWorker
from shared.schemas.notifications import (
    NotificationContent,
    NotificationMetadata,
    NotificationRecord,
    NotificationRequest,
    NotifierConfig,
    Priority,
    QueueStatusSnapshot,
    Recipient,
    StatsSnapshot,
)

logger = structlog.get_logger()


def _as_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class NotificationService:
    """Queue-backed delivery of notifications through a ``Transport``.

    The queue is strictly FIFO: ``priority`` is carried on each record and
    reported in the queue breakdown, but it does not change dispatch order.
    """

    def __init__(
        self,
        transport: Transport,
        config: NotifierConfig | None = None,
        clock: Clock | None = None,
        events: EventBus | None = None,
    ):
        self.config = config or NotifierConfig()
        self.clock = clock or SystemClock()
        self.transport = transport
        self.events = events or EventBus()
        self.store = QueueStore(self.config.queue_size)
        self.limiter = RateLimiter(
            self.clock,
            per_minute=self.config.rate_limit.messages_per_minute,
            per_hour=self.config.rate_limit.messages_per_hour,
        )
        self.stats = StatsCollector()
        self.worker = NotificationWorker(
            store=self.store,
            transport=transport,
            limiter=self.limiter,
            retry_policy=RetryPolicy(self.config.retry_delay_ms),
            stats=self.stats,
            events=self.events,
            clock=self.clock,
            config=self.config,
        )
        self._tasks: list[asyncio.Task] = []

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return any(not t.done() for t in self._tasks)

    async def start(self) -> None:
        """Open the transport and start the worker and history cleanup loops."""
        if self.is_running:
            return
        await self.transport.start()
        self.worker.resume_timers()
        self._tasks = [
            asyncio.create_task(self.worker.run()),
            asyncio.create_task(self.worker.cleanup_loop()),
        ]
        logger.info("notification_service_started")

    async def stop(self) -> None:
        for task in self._tasks:
            if not task.done():
                task.cancel()
        for task in self._tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._tasks = []
        self.worker.cancel_timers()
        await self.transport.close()
        logger.info("notification_service_stopped", queue_size=len(self.store))

    # ------------------------------------------------------------------
    # Sending
    # ------------------------------------------------------------------

    def send_to_channel(
        self,
        channel_id: int,
        text: str,
        type: str = "custom",
        priority: Priority = "medium",
        **kwargs: Any,
    ) -> str:
        """Queue a message for a numeric chat id."""
        record = self._build_record(Recipient(channel_id=channel_id), text, type, priority, **kwargs)
        return self.enqueue(record)

    def send_to_handle(
        self,
        handle: str,
        text: str,
        type: str = "custom",
        priority: Priority = "medium",
        **kwargs: Any,
    ) -> str:
        """Queue a message for a textual handle (``@name``)."""
        record = self._build_record(Recipient(handle=handle), text, type, priority, **kwargs)
        return self.enqueue(record)

    def send_scheduled(
        self,
        channel_id: int,
        text: str,
        scheduled_for: datetime,
        type: str = "custom",
    ) -> str:
        """Queue a message that must not go out before ``scheduled_for``."""
        record = self._build_record(
            Recipient(channel_id=channel_id), text, type, "medium", scheduled_for=scheduled_for
        )
        return self.enqueue(record)

    def send_bulk(
        self,
        recipients: list[Recipient],
        text: str,
        type: str = "custom",
    ) -> list[str]:
        """Queue the same text for every recipient at low priority.

        All or nothing: if any recipient is invalid or the queue cannot take
        every record, nothing is queued.
        """
        records = [self._build_record(r, text, type, "low") for r in recipients]
        for record in records:
            if not record.recipient.is_valid():
                raise InvalidRecipient(
                    f"Invalid bulk recipient: {record.recipient.model_dump()}"
                )
        self.store.ensure_capacity(len(records))
        return [self.enqueue(record) for record in records]

    def submit(self, request: NotificationRequest) -> str:
        """Queue a producer request received over HTTP or Redis."""
        parse_mode = request.parse_mode
        if request.template:
            try:
                text = templates.render(request.template, **request.template_args)
            except Exception as e:
                raise InvalidRequest(f"Cannot render template {request.template!r}: {e}") from e
            parse_mode = parse_mode or "Markdown"
        elif request.text:
            text = request.text
        else:
            raise InvalidRequest("Either text or template is required")

        record = self._build_record(
            Recipient(channel_id=request.channel_id, handle=request.handle),
            text,
            request.type,
            request.priority,
            scheduled_for=request.scheduled_for,
            parse_mode=parse_mode,
            options=request.options,
            max_retries=request.max_retries,
        )
        return self.enqueue(record)

    def enqueue(self, record: NotificationRecord) -> str:
        """Add a record to the queue; raises InvalidRecipient or CapacityExceeded."""
        self.store.enqueue(record)
        self.stats.record_queued()
        logger.info(
            "notification_queued",
            notification_id=record.id,
            notification_type=record.type,
            priority=record.priority,
            scheduled_for=record.metadata.scheduled_for.isoformat()
            if record.metadata.scheduled_for
            else None,
        )
        return record.id

    # ------------------------------------------------------------------
    # Queries and control
    # ------------------------------------------------------------------

    def get_status(self, notification_id: str) -> NotificationRecord | None:
        """Return a copy of the record, or None if unknown or pruned."""
        record = self.store.find(notification_id)
        return record.model_copy(deep=True) if record is not None else None

    def cancel(self, notification_id: str) -> bool:
        """Cancel a pending or processing record; finished records stay finished."""
        cancelled = self.store.cancel(notification_id)
        if cancelled:
            self.stats.record_cancelled()
            logger.info("notification_cancelled", notification_id=notification_id)
        return cancelled

    def get_stats(self) -> StatsSnapshot:
        batch = self.store.current_batch
        return StatsSnapshot(
            total_sent=self.stats.total_sent,
            total_failed=self.stats.total_failed,
            total_queued=self.stats.total_queued,
            total_cancelled=self.stats.total_cancelled,
            total_retries=self.stats.total_retries,
            batches_processed=self.stats.batches_processed,
            average_processing_time_ms=self.stats.average_processing_time_ms,
            queue_size=len(self.store),
            is_processing=self.worker.is_processing,
            current_batch=batch.id if batch else None,
            rate_limits=self.limiter.snapshot(),
            config=self.config,
        )

    def get_queue_status(self) -> QueueStatusSnapshot:
        return queue_status(self.store.records(), waiting_retry=self.store.waiting_count)

    def cleanup(self, max_age_ms: int | None = None) -> int:
        """Forget finished records older than ``max_age_ms`` (default from config)."""
        if max_age_ms is None:
            max_age_ms = self.config.history_max_age_ms
        return self.store.cleanup(timedelta(milliseconds=max_age_ms), self.clock.now())

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _build_record(
        self,
        recipient: Recipient,
        text: str,
        type: str,
        priority: Priority,
        scheduled_for: datetime | None = None,
        parse_mode: str | None = None,
        options: dict[str, Any] | None = None,
        max_retries: int | None = None,
    ) -> NotificationRecord:
        return NotificationRecord(
            id=f"notif_{uuid.uuid4().hex}",
            type=type,
            priority=priority,
            recipient=recipient,
            content=NotificationContent(
                text=text,
                parse_mode=parse_mode,
                options=options or {},
            ),
            metadata=NotificationMetadata(
                created_at=self.clock.now(),
                scheduled_for=_as_utc(scheduled_for) if scheduled_for else None,
                max_retries=max_retries or self.config.max_retries,
            ),
        )
