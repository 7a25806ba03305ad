"""Retry decisions for failed deliveries."""

from __future__ import annotations

from typing import NamedTuple

from shared.schemas.notifications import NotificationRecord


class RetryDecision(NamedTuple):
    retry: bool
    delay_seconds: float


class RetryPolicy:
    """Linear back-off: the Nth retry waits ``base_delay_ms * N``.

    Every transport failure counts toward ``retry_count``; there is no
    allow-list of expected errors here.
    """

    def __init__(self, base_delay_ms: int = 5000):
        self.base_delay_ms = base_delay_ms

    def delay_for(self, retry_number: int) -> float:
        """Seconds to wait before retry number ``retry_number`` (1-based)."""
        return self.base_delay_ms * retry_number / 1000

    def register_failure(self, record: NotificationRecord, error: str) -> RetryDecision:
        """Count a failed attempt on ``record`` and decide what happens next.

        ``retry_count`` ends equal to the number of failed attempts and never
        exceeds ``max_retries``.
        """
        meta = record.metadata
        meta.retry_count = min(meta.retry_count + 1, meta.max_retries)
        meta.last_error = error

        if meta.retry_count < meta.max_retries:
            return RetryDecision(True, self.delay_for(meta.retry_count))
        return RetryDecision(False, 0.0)
