"""Notification worker: drains the queue in batches on a fixed interval."""

from __future__ import annotations

import asyncio
import uuid
from datetime import timedelta
from functools import partial

import structlog

from modules.notifier.clock import Clock, TimerHandle
from modules.notifier.errors import SchedulerFault, TransportFailure
from modules.notifier.events import EventBus
from modules.notifier.queue_store import QueueStore
from modules.notifier.rate_limiter import RateLimiter
from modules.notifier.retry import RetryPolicy
from modules.notifier.stats import StatsCollector
from modules.notifier.transport import Transport
from shared.schemas.notifications import (
    NotificationBatch,
    NotificationEvent,
    NotificationRecord,
    NotifierConfig,
)

logger = structlog.get_logger()


class NotificationWorker:
    """Batch processor plus the loop that drives it.

    At most one batch is in flight. Records inside a batch are handled one
    after another so the rate limiter sees every send in order.
    """

    def __init__(
        self,
        store: QueueStore,
        transport: Transport,
        limiter: RateLimiter,
        retry_policy: RetryPolicy,
        stats: StatsCollector,
        events: EventBus,
        clock: Clock,
        config: NotifierConfig,
    ):
        self._store = store
        self._transport = transport
        self._limiter = limiter
        self._retry = retry_policy
        self._stats = stats
        self._events = events
        self._clock = clock
        self._config = config
        self._timers: dict[str, TimerHandle] = {}
        self.is_processing = False

    @property
    def pending_retries(self) -> int:
        return len(self._timers)

    async def run(self) -> None:
        """Tick forever; a failing cycle is logged and the loop carries on."""
        logger.info(
            "notification_worker_started",
            interval_seconds=self._config.loop_interval_seconds,
            batch_size=self._config.batch_size,
        )
        while True:
            try:
                await self.tick()
            except Exception as e:
                logger.error("notification_loop_error", error=str(e), exc_info=True)

            await self._clock.sleep(self._config.loop_interval_seconds)

    async def cleanup_loop(self) -> None:
        """Periodically prune finished records from the retained history."""
        max_age = timedelta(milliseconds=self._config.history_max_age_ms)
        while True:
            await self._clock.sleep(self._config.cleanup_interval_seconds)
            try:
                self._store.cleanup(max_age, self._clock.now())
            except Exception as e:
                logger.error("notification_cleanup_error", error=str(e))

    def cancel_timers(self) -> None:
        """Drop pending retry timers (shutdown). Parked records stay parked."""
        for handle in self._timers.values():
            handle.cancel()
        self._timers.clear()

    def resume_timers(self) -> int:
        """Re-arm a retry timer for every parked record that has none.

        Records whose ``next_attempt_at`` has already passed are released on
        the next timer turn.
        """
        now = self._clock.now()
        resumed = 0
        for record in self._store.waiting():
            if record.id in self._timers:
                continue
            due = record.metadata.next_attempt_at or now
            delay = max((due - now).total_seconds(), 0.0)
            self._timers[record.id] = self._clock.call_later(
                delay, partial(self._release, record.id)
            )
            resumed += 1
        if resumed:
            logger.info("notification_retry_timers_resumed", count=resumed)
        return resumed

    async def tick(self) -> NotificationBatch | None:
        """Run one processing cycle if the queue has work and nothing is in flight.

        Raises ``SchedulerFault`` if something unexpected breaks the cycle;
        records the cycle had not finished go back to the head of the queue.
        """
        if self.is_processing or len(self._store) == 0:
            return None

        self.is_processing = True
        batch: NotificationBatch | None = None
        finished: set[str] = set()
        try:
            batch = self._store.pull_batch(
                self._config.batch_size,
                f"batch_{uuid.uuid4().hex}",
                self._clock.now(),
            )
            if batch is None:
                return None

            logger.info("processing_batch", batch_id=batch.id, size=len(batch.messages))
            started = self._clock.now()

            for record in batch.messages:
                await self._process_record(record)
                finished.add(record.id)

            batch.status = "completed"
            batch.processed_at = self._clock.now()
            duration_ms = (batch.processed_at - started).total_seconds() * 1000
            self._stats.record_batch(duration_ms)
            logger.info("batch_completed", batch_id=batch.id, duration_ms=duration_ms)
            return batch
        except Exception as e:
            if batch is not None:
                batch.status = "failed"
            raise SchedulerFault(f"Batch processing failed: {e}") from e
        finally:
            unfinished = []
            if batch is not None:
                for record in batch.messages:
                    if record.id in finished:
                        continue
                    if record.is_terminal:
                        # cancelled while the batch was in flight
                        self._store.retire(record)
                    else:
                        unfinished.append(record)
            if unfinished:
                logger.warning(
                    "batch_records_restored",
                    batch_id=batch.id if batch else None,
                    count=len(unfinished),
                )
            self._store.finish_batch(unfinished)
            self.is_processing = False

    # ------------------------------------------------------------------
    # Per-record handling
    # ------------------------------------------------------------------

    async def _process_record(self, record: NotificationRecord) -> None:
        if record.status == "cancelled":
            self._store.retire(record)
            return

        scheduled_for = record.metadata.scheduled_for
        if scheduled_for is not None and scheduled_for > self._clock.now():
            self._store.requeue(record)
            return

        while True:
            # may be cancelled during the back-off; it must not take a slot
            if record.status == "cancelled":
                self._store.retire(record)
                return
            if self._limiter.allow():
                break
            logger.warning(
                "rate_limit_reached",
                notification_id=record.id,
                delay_seconds=self._config.rate_limit_delay_seconds,
            )
            await self._clock.sleep(self._config.rate_limit_delay_seconds)

        record.status = "processing"
        record.metadata.last_attempt = self._clock.now()
        error = await self._deliver(record)

        # Cancelled while the transport call was running: discard the outcome
        if record.status == "cancelled":
            logger.info("notification_result_discarded", notification_id=record.id)
            record.metadata.completed_at = self._clock.now()
            self._store.retire(record)
            return

        if error is None:
            await self._mark_sent(record)
        else:
            await self._handle_failure(record, error)

    async def _deliver(self, record: NotificationRecord) -> TransportFailure | None:
        """Call the transport under the per-call timeout; return the failure, if any."""
        timeout = self._config.transport_timeout_seconds or None
        try:
            await asyncio.wait_for(
                self._transport.deliver(
                    record.recipient,
                    record.content.text,
                    parse_mode=record.content.parse_mode,
                    options=record.content.options,
                ),
                timeout=timeout,
            )
        except asyncio.TimeoutError:
            return TransportFailure(f"Transport timed out after {timeout}s")
        except Exception as e:
            return TransportFailure(str(e) or e.__class__.__name__)
        return None

    async def _mark_sent(self, record: NotificationRecord) -> None:
        record.status = "sent"
        record.metadata.completed_at = self._clock.now()
        self._store.retire(record)
        self._stats.record_sent()
        logger.info(
            "notification_sent",
            notification_id=record.id,
            notification_type=record.type,
            recipient=record.recipient.describe(),
        )
        await self._events.emit(self._event("sent", record))

    async def _handle_failure(self, record: NotificationRecord, error: TransportFailure) -> None:
        decision = self._retry.register_failure(record, str(error))
        meta = record.metadata

        if decision.retry:
            record.status = "pending"
            meta.next_attempt_at = self._clock.now() + timedelta(seconds=decision.delay_seconds)
            self._store.hold(record)
            self._timers[record.id] = self._clock.call_later(
                decision.delay_seconds, partial(self._release, record.id)
            )
            self._stats.record_retry()
            logger.warning(
                "notification_retry_scheduled",
                notification_id=record.id,
                attempt=meta.retry_count,
                max_retries=meta.max_retries,
                delay_seconds=decision.delay_seconds,
                error=meta.last_error,
            )
            await self._events.emit(self._event("retrying", record))
            return

        record.status = "failed"
        meta.completed_at = self._clock.now()
        self._store.retire(record)
        self._stats.record_failed()
        logger.error(
            "notification_permanently_failed",
            notification_id=record.id,
            attempts=meta.retry_count,
            error=meta.last_error,
        )
        await self._events.emit(self._event("failed", record))

    def _release(self, record_id: str) -> None:
        self._timers.pop(record_id, None)
        if self._store.release(record_id):
            logger.info("notification_requeued", notification_id=record_id)

    def _event(self, name: str, record: NotificationRecord) -> NotificationEvent:
        return NotificationEvent(
            event=name,
            notification_id=record.id,
            type=record.type,
            priority=record.priority,
            recipient=record.recipient,
            retry_count=record.metadata.retry_count,
            max_retries=record.metadata.max_retries,
            error=record.metadata.last_error if name != "sent" else None,
            next_attempt_at=record.metadata.next_attempt_at,
            occurred_at=self._clock.now(),
        )
