"""Fixed-window rate limiter for outbound messages."""

from __future__ import annotations

from datetime import timedelta

import structlog

from modules.notifier.clock import Clock
from shared.schemas.notifications import RateLimitSnapshot

logger = structlog.get_logger()

MINUTE_WINDOW = timedelta(seconds=60)
HOUR_WINDOW = timedelta(seconds=3600)


class RateLimiter:
    """Counts sends in a minute window and an hour window.

    Each counter resets once more than its window length has passed since
    the window opened. Bursts straddling a window boundary are accepted.
    """

    def __init__(self, clock: Clock, per_minute: int = 30, per_hour: int = 1000):
        self._clock = clock
        self.per_minute = per_minute
        self.per_hour = per_hour
        now = clock.now()
        self._minute_count = 0
        self._hour_count = 0
        self._minute_start = now
        self._hour_start = now

    def allow(self) -> bool:
        """Take one slot if both windows have room; return False otherwise."""
        now = self._clock.now()

        if now - self._minute_start > MINUTE_WINDOW:
            self._minute_count = 0
            self._minute_start = now
        if now - self._hour_start > HOUR_WINDOW:
            self._hour_count = 0
            self._hour_start = now

        if self._minute_count >= self.per_minute or self._hour_count >= self.per_hour:
            return False

        self._minute_count += 1
        self._hour_count += 1
        return True

    def snapshot(self) -> RateLimitSnapshot:
        return RateLimitSnapshot(minute=self._minute_count, hour=self._hour_count)
