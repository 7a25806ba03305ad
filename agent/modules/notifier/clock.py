"""Time source for the notifier.

Everything time-dependent in the queue (rate-limit windows, scheduled sends,
retry delays, the loop interval) goes through a ``Clock`` so that tests can
drive time by hand instead of sleeping.
"""

from __future__ import annotations

import abc
import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Protocol


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Clock(abc.ABC):
    """Abstract clock: wall time, suspension and deferred callbacks."""

    @abc.abstractmethod
    def now(self) -> datetime:
        """Current time as a timezone-aware UTC datetime."""

    @abc.abstractmethod
    async def sleep(self, seconds: float) -> None:
        """Suspend the calling task without blocking the event loop."""

    @abc.abstractmethod
    def call_later(self, seconds: float, callback: Callable[[], None]) -> TimerHandle:
        """Run ``callback`` once after ``seconds``."""


class SystemClock(Clock):
    """Real time, backed by the running asyncio loop."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)

    def call_later(self, seconds: float, callback: Callable[[], None]) -> TimerHandle:
        return asyncio.get_running_loop().call_later(max(seconds, 0.0), callback)


@dataclass(order=True)
class _ManualTimer:
    due: datetime
    seq: int
    callback: Callable[[], None] = field(compare=False)
    cancelled: bool = field(default=False, compare=False)

    def cancel(self) -> None:
        self.cancelled = True


class ManualClock(Clock):
    """Deterministic clock that only moves when told to.

    ``sleep()`` advances time by the requested amount and yields once, so
    code that waits (rate-limit back-off, the loop interval) runs instantly
    while still observing the passage of time. Timers registered with
    ``call_later`` fire from ``advance()`` in due order.
    """

    def __init__(self, start: datetime | None = None):
        self._now = start or datetime(2026, 1, 1, tzinfo=timezone.utc)
        self._timers: list[_ManualTimer] = []
        self._seq = 0
        self.sleeps: list[float] = []

    def now(self) -> datetime:
        return self._now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.advance(seconds)
        await asyncio.sleep(0)

    def call_later(self, seconds: float, callback: Callable[[], None]) -> _ManualTimer:
        self._seq += 1
        timer = _ManualTimer(self._now + timedelta(seconds=max(seconds, 0.0)), self._seq, callback)
        self._timers.append(timer)
        return timer

    def advance(self, seconds: float) -> None:
        target = self._now + timedelta(seconds=seconds)
        while True:
            due = sorted(t for t in self._timers if not t.cancelled and t.due <= target)
            if not due:
                break
            timer = due[0]
            self._timers.remove(timer)
            self._now = max(self._now, timer.due)
            timer.callback()
        self._timers = [t for t in self._timers if not t.cancelled]
        self._now = target

    @property
    def pending_timers(self) -> list[datetime]:
        """Due times of timers that have not fired yet."""
        return sorted(t.due for t in self._timers if not t.cancelled)
