"""Validated configuration for the render queue."""
from __future__ import annotations

from typing import Dict, Mapping

from pydantic import BaseModel, Field, ValidationError


class QueueConfig(BaseModel):
    """Options recognised by `RenderQueue`."""

    max_concurrent_renders: int = Field(default=1, gt=0)
    max_queue_size: int = Field(default=100, gt=0)
    # Enforced by the render worker, not by the queue.
    job_timeout_seconds: float = Field(default=3600.0, gt=0)
    retry_failed_jobs: bool = True
    max_retries: int = Field(default=2, ge=0)
    retry_backoff_seconds: float = Field(default=0.0, ge=0)
    tick_interval_seconds: float = Field(default=1.0, gt=0)
    cancelled_history: int = Field(default=100, ge=0)

    @classmethod
    def from_settings(cls, settings: Mapping[str, object]) -> "QueueConfig":
        """Build from the `[queue]` table of the settings file."""
        table: Dict[str, object] = dict(settings.get("queue", {}) or {})
        try:
            return cls(**table)
        except ValidationError as exc:
            raise ValueError(f"Invalid [queue] settings: {exc}") from exc
