"""In-memory store for notification records.

A record lives in exactly one place at a time:

- the FIFO queue (pending, or cancelled but not yet swept),
- the in-flight batch of the current processing cycle,
- the waiting room (pending, sitting out a retry delay),
- the history (terminal: sent, failed or cancelled).

Capacity is counted over the first three, so records coming back from a
batch or a retry delay can always re-enter the queue without overflowing it.
"""

from __future__ import annotations

from collections import deque
from datetime import datetime, timedelta
from typing import Iterator

import structlog

from modules.notifier.errors import CapacityExceeded, InvalidRecipient
from shared.schemas.notifications import NotificationBatch, NotificationRecord

logger = structlog.get_logger()


class QueueStore:
    """Owns every live record; the worker borrows them one batch at a time."""

    def __init__(self, max_size: int = 1000):
        self.max_size = max_size
        self._queue: deque[NotificationRecord] = deque()
        self._waiting: dict[str, NotificationRecord] = {}
        self._history: dict[str, NotificationRecord] = {}
        self._batch: NotificationBatch | None = None

    def __len__(self) -> int:
        return len(self._queue)

    @property
    def occupancy(self) -> int:
        """Live records counted against ``max_size``.

        Cancelled records still sitting in the queue waiting to be swept do
        not count.
        """
        queued = sum(1 for r in self._queue if r.status != "cancelled")
        in_flight = 0
        if self._batch is not None:
            in_flight = sum(1 for r in self._batch.messages if not r.is_terminal)
        return queued + len(self._waiting) + in_flight

    @property
    def waiting_count(self) -> int:
        return len(self._waiting)

    @property
    def history_count(self) -> int:
        return len(self._history)

    @property
    def current_batch(self) -> NotificationBatch | None:
        return self._batch

    def records(self) -> Iterator[NotificationRecord]:
        """Iterate the live queue in dispatch order."""
        return iter(list(self._queue))

    # ------------------------------------------------------------------
    # Producer side
    # ------------------------------------------------------------------

    def ensure_capacity(self, count: int = 1) -> None:
        if self.occupancy + count > self.max_size:
            raise CapacityExceeded(self.max_size)

    def enqueue(self, record: NotificationRecord) -> str:
        if not record.recipient.is_valid():
            raise InvalidRecipient(
                "Exactly one of channel_id or handle must be set"
            )
        self.ensure_capacity()
        self._queue.append(record)
        return record.id

    # ------------------------------------------------------------------
    # Worker side
    # ------------------------------------------------------------------

    def pull_batch(self, size: int, batch_id: str, now: datetime) -> NotificationBatch | None:
        """Take up to ``size`` records off the head of the queue.

        Cancelled records in that slice go straight to history. Returns None
        when nothing active was taken.
        """
        taken = [self._queue.popleft() for _ in range(min(size, len(self._queue)))]
        active = []
        for record in taken:
            if record.status == "cancelled":
                self.retire(record)
            else:
                active.append(record)

        if not active:
            return None

        self._batch = NotificationBatch(
            id=batch_id,
            messages=active,
            status="processing",
            created_at=now,
        )
        return self._batch

    def finish_batch(self, unfinished: list[NotificationRecord] | None = None) -> None:
        """Drop the in-flight batch, putting ``unfinished`` back at the head."""
        for record in reversed(unfinished or []):
            record.status = "pending"
            self._queue.appendleft(record)
        self._batch = None

    def requeue(self, record: NotificationRecord) -> None:
        """Put a record back at the tail unchanged (scheduled and not yet due)."""
        self._queue.append(record)

    def hold(self, record: NotificationRecord) -> None:
        """Park a record while its retry delay runs."""
        self._waiting[record.id] = record

    def waiting(self) -> list[NotificationRecord]:
        """Records currently sitting out a retry delay."""
        return list(self._waiting.values())

    def release(self, record_id: str) -> bool:
        """Move a parked record back onto the queue once its delay is over."""
        record = self._waiting.pop(record_id, None)
        if record is None:
            return False
        if record.status == "cancelled":
            self.retire(record)
            return False
        record.status = "pending"
        record.metadata.next_attempt_at = None
        self._queue.append(record)
        return True

    def retire(self, record: NotificationRecord) -> None:
        """Record a terminal record in history."""
        self._history[record.id] = record

    # ------------------------------------------------------------------
    # Lookup, cancellation, housekeeping
    # ------------------------------------------------------------------

    def find(self, record_id: str) -> NotificationRecord | None:
        """Look in the queue, the in-flight batch, the waiting room, then history."""
        for record in self._queue:
            if record.id == record_id:
                return record
        if self._batch is not None:
            for record in self._batch.messages:
                if record.id == record_id:
                    return record
        return self._waiting.get(record_id) or self._history.get(record_id)

    def cancel(self, record_id: str) -> bool:
        """Mark a pending or processing record cancelled.

        Queued records stay in place until the next batch sweeps them; an
        in-flight record keeps its slot so the worker can discard its result.
        """
        record = self.find(record_id)
        if record is None or record.is_terminal:
            return False

        record.status = "cancelled"
        waiting = self._waiting.pop(record_id, None)
        if waiting is not None:
            self.retire(waiting)
        return True

    def cleanup(self, max_age: timedelta, now: datetime) -> int:
        """Forget terminal records created more than ``max_age`` ago."""
        cutoff = now - max_age
        expired = [
            record_id
            for record_id, record in self._history.items()
            if record.metadata.created_at < cutoff
        ]
        for record_id in expired:
            del self._history[record_id]
        if expired:
            logger.info("notification_history_pruned", removed=len(expired))
        return len(expired)
