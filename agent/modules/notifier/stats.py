"""Counters and queue snapshots for observability."""

from __future__ import annotations

from collections import Counter
from typing import Iterable

from shared.schemas.notifications import NotificationRecord, QueueStatusSnapshot


class StatsCollector:
    """Cumulative delivery counters; they only ever go up."""

    def __init__(self):
        self.total_sent = 0
        self.total_failed = 0
        self.total_queued = 0
        self.total_cancelled = 0
        self.total_retries = 0
        self.batches_processed = 0
        self.average_processing_time_ms = 0.0

    def record_queued(self, count: int = 1) -> None:
        self.total_queued += count

    def record_sent(self) -> None:
        self.total_sent += 1

    def record_failed(self) -> None:
        self.total_failed += 1

    def record_cancelled(self) -> None:
        self.total_cancelled += 1

    def record_retry(self) -> None:
        self.total_retries += 1

    def record_batch(self, duration_ms: float) -> None:
        """Fold one batch duration into the running mean."""
        self.batches_processed += 1
        self.average_processing_time_ms += (
            duration_ms - self.average_processing_time_ms
        ) / self.batches_processed


def queue_status(records: Iterable[NotificationRecord], waiting_retry: int = 0) -> QueueStatusSnapshot:
    """Scan the live queue; O(n) in its length."""
    statuses: Counter[str] = Counter()
    priorities: Counter[str] = Counter()
    types: Counter[str] = Counter()
    total = 0
    for record in records:
        total += 1
        statuses[record.status] += 1
        priorities[record.priority] += 1
        types[record.type] += 1

    return QueueStatusSnapshot(
        total=total,
        pending=statuses["pending"],
        processing=statuses["processing"],
        failed=statuses["failed"],
        cancelled=statuses["cancelled"],
        waiting_retry=waiting_retry,
        priority_breakdown=dict(priorities),
        type_breakdown=dict(types),
    )
