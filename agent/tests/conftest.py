"""Shared test fixtures for the notifier test suite.

Provides a hand-driven clock, a recording transport and a service factory
so queue behaviour can be exercised without Telegram, Redis or real time.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any
from unittest.mock import AsyncMock

import pytest

from modules.notifier.clock import ManualClock
from modules.notifier.service import NotificationService
from modules.notifier.transport import Transport
from shared.schemas.notifications import NotifierConfig, RateLimitConfig, Recipient

START = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Transport double
# ---------------------------------------------------------------------------


@dataclass
class Delivery:
    recipient: Recipient
    text: str
    at: datetime
    parse_mode: str | None = None


class RecordingTransport(Transport):
    """Records every delivery attempt with the clock time it happened at.

    ``fail_times`` makes the first N attempts raise; ``always_fail`` makes
    every attempt raise. ``hook`` runs inside the call (before failing) so a
    test can act while a delivery is in flight.
    """

    def __init__(self, clock: ManualClock, fail_times: int = 0, always_fail: bool = False):
        self.clock = clock
        self.fail_times = fail_times
        self.always_fail = always_fail
        self.hook = None
        self.attempts: list[Delivery] = []
        self.started = False
        self.closed = False

    @property
    def delivered(self) -> list[Delivery]:
        return self.attempts

    async def start(self) -> None:
        self.started = True

    async def close(self) -> None:
        self.closed = True

    async def deliver(
        self,
        recipient: Recipient,
        text: str,
        *,
        parse_mode: str | None = None,
        options: dict[str, Any] | None = None,
    ) -> None:
        self.attempts.append(Delivery(recipient, text, self.clock.now(), parse_mode))
        if self.hook is not None:
            await self.hook()
        if self.always_fail:
            raise RuntimeError("chat not found")
        if self.fail_times > 0:
            self.fail_times -= 1
            raise RuntimeError("telegram unavailable")


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def clock():
    return ManualClock(START)


@pytest.fixture
def transport(clock):
    return RecordingTransport(clock)


@pytest.fixture
def make_config():
    """Factory for NotifierConfig with test-friendly overrides."""

    def _make(
        per_minute: int = 30,
        per_hour: int = 1000,
        **overrides: Any,
    ) -> NotifierConfig:
        return NotifierConfig(
            rate_limit=RateLimitConfig(
                messages_per_minute=per_minute,
                messages_per_hour=per_hour,
            ),
            **overrides,
        )

    return _make


@pytest.fixture
def make_service(clock, transport, make_config):
    """Factory for a NotificationService on the manual clock."""

    def _make(transport_override: Transport | None = None, **config: Any) -> NotificationService:
        return NotificationService(
            transport_override or transport,
            config=make_config(**config),
            clock=clock,
        )

    return _make


@pytest.fixture
def service(make_service):
    return make_service()


@pytest.fixture
def mock_redis():
    """Mock async Redis client with common operations."""
    redis = AsyncMock()
    redis.get = AsyncMock(return_value=None)
    redis.set = AsyncMock()
    redis.delete = AsyncMock()
    redis.publish = AsyncMock()
    return redis


@pytest.fixture
def make_transport(clock):
    """Factory for RecordingTransport instances sharing the test clock."""

    def _make(fail_times: int = 0, always_fail: bool = False) -> RecordingTransport:
        return RecordingTransport(clock, fail_times=fail_times, always_fail=always_fail)

    return _make


@pytest.fixture
def drain(clock):
    """Run N worker cycles, advancing the clock by ``step`` seconds after each."""

    async def _drain(service: NotificationService, ticks: int, step: float = 1.0) -> None:
        for _ in range(ticks):
            await service.worker.tick()
            clock.advance(step)

    return _drain
