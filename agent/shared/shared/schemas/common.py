"""Common schemas used across services."""

from __future__ import annotations

from pydantic import BaseModel


class HealthResponse(BaseModel):
    """Health check response; ``worker_running`` is None when no worker is attached."""

    status: str = "ok"
    worker_running: bool | None = None
