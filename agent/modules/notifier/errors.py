"""Errors raised by the notification queue."""

from __future__ import annotations


class NotifierError(Exception):
    """Base class for notifier errors."""


class CapacityExceeded(NotifierError):
    """The queue already holds its configured maximum of live records."""

    def __init__(self, limit: int):
        super().__init__(f"Queue size limit reached ({limit})")
        self.limit = limit


class InvalidRecipient(NotifierError):
    """Neither or both of channel_id / handle were supplied."""


class TransportFailure(NotifierError):
    """A delivery attempt failed or timed out."""


class SchedulerFault(NotifierError):
    """An unexpected error escaped one processing cycle."""


class InvalidRequest(NotifierError):
    """A producer request has no usable body (no text, unknown template)."""
