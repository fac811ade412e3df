"""Retry policy applied when a render worker reports a failure."""
from __future__ import annotations

import traceback
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional, Tuple

from renderqueue.orchestrator.jobs import Job


@dataclass(frozen=True)
class RetryDecision:
    """Outcome of evaluating a failed job."""

    retry: bool
    attempt: int
    retry_after: Optional[datetime] = None


class RetryPolicy:
    """Decides whether a failed job goes back to pending or fails for good."""

    def __init__(self, *, enabled: bool = True, max_retries: int = 2, backoff_seconds: float = 0.0) -> None:
        self.enabled = enabled
        self.max_retries = max_retries
        self.backoff_seconds = backoff_seconds

    def should_retry(self, job: Job) -> bool:
        """Return True when the job is eligible for another attempt."""
        return self.enabled and job.metadata.retry_count < self.max_retries

    def decide(self, job: Job, now: datetime) -> RetryDecision:
        if not self.should_retry(job):
            return RetryDecision(retry=False, attempt=job.metadata.retry_count)
        retry_after = None
        if self.backoff_seconds > 0:
            retry_after = now + timedelta(seconds=self.backoff_seconds)
        return RetryDecision(retry=True, attempt=job.metadata.retry_count + 1, retry_after=retry_after)


def describe_error(error: object) -> Tuple[str, str]:
    """Split a worker failure into a short message and full diagnostic text."""
    if isinstance(error, BaseException):
        message = str(error) or type(error).__name__
        if error.__traceback__ is not None:
            details = "".join(traceback.format_exception(type(error), error, error.__traceback__))
        else:
            details = repr(error)
        return message, details
    if isinstance(error, dict):
        message = str(error.get("message") or error.get("error") or error)
        return message, str(error.get("details") or error.get("stack") or message)
    return str(error), str(error)
