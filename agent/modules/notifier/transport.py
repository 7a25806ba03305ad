"""Delivery transports.

The queue depends only on ``Transport.deliver``: it returns on success and
raises on failure. What the exception is does not matter to the caller.
"""

from __future__ import annotations

import abc
from typing import Any

import structlog
from telegram import Bot

from shared.schemas.notifications import Recipient

logger = structlog.get_logger()


class Transport(abc.ABC):
    """Abstract base class for outbound message channels."""

    @abc.abstractmethod
    async def deliver(
        self,
        recipient: Recipient,
        text: str,
        *,
        parse_mode: str | None = None,
        options: dict[str, Any] | None = None,
    ) -> None:
        """Send ``text`` to ``recipient``; raise on any failure."""

    async def start(self) -> None:
        """Open connections before the first delivery."""

    async def close(self) -> None:
        """Release connections."""


class TelegramTransport(Transport):
    """Sends messages through the Telegram Bot API."""

    def __init__(self, token: str):
        self._bot = Bot(token=token)

    @staticmethod
    def chat_id_for(recipient: Recipient) -> int | str:
        if recipient.channel_id is not None:
            return recipient.channel_id
        return f"@{(recipient.handle or '').lstrip('@')}"

    async def start(self) -> None:
        await self._bot.initialize()
        logger.info("telegram_transport_started")

    async def close(self) -> None:
        await self._bot.shutdown()
        logger.info("telegram_transport_closed")

    async def deliver(
        self,
        recipient: Recipient,
        text: str,
        *,
        parse_mode: str | None = None,
        options: dict[str, Any] | None = None,
    ) -> None:
        message = await self._bot.send_message(
            chat_id=self.chat_id_for(recipient),
            text=text,
            parse_mode=parse_mode,
            **(options or {}),
        )
        logger.debug(
            "telegram_message_sent",
            chat_id=message.chat_id,
            message_id=message.message_id,
        )


class DryRunTransport(Transport):
    """Logs instead of sending. Used when no bot token is configured."""

    def __init__(self):
        self.delivered: list[tuple[Recipient, str]] = []

    async def deliver(
        self,
        recipient: Recipient,
        text: str,
        *,
        parse_mode: str | None = None,
        options: dict[str, Any] | None = None,
    ) -> None:
        self.delivered.append((recipient, text))
        logger.info(
            "notification_dry_run",
            recipient=recipient.describe(),
            parse_mode=parse_mode,
            length=len(text),
        )
