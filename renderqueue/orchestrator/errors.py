"""Errors raised by the render queue."""
from __future__ import annotations

from typing import Optional


class QueueError(Exception):
    """Base class for recoverable queue errors."""


class QueueFullError(QueueError):
    """Admission refused because the queue holds `max_queue_size` jobs."""

    def __init__(self, max_queue_size: int) -> None:
        super().__init__(f"Queue is full ({max_queue_size} jobs)")
        self.max_queue_size = max_queue_size


class JobNotFoundError(QueueError):
    """The referenced job id is not tracked by the queue."""

    def __init__(self, job_id: str) -> None:
        super().__init__(f"Job {job_id} not found")
        self.job_id = job_id


class InvalidStateError(QueueError):
    """The job exists but is not in the state the operation requires."""

    def __init__(self, job_id: str, status: str, expected: Optional[str] = None) -> None:
        message = f"Job {job_id} is {status}"
        if expected:
            message += f", expected {expected}"
        super().__init__(message)
        self.job_id = job_id
        self.status = status
        self.expected = expected


class DuplicateJobError(InvalidStateError):
    """A job with the same id is already tracked."""

    def __init__(self, job_id: str, status: str) -> None:
        super().__init__(job_id, status)
        self.args = (f"Job {job_id} already exists ({status})",)
