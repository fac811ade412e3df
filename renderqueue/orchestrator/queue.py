"""In-memory render queue: job store, priority dispatch and lifecycle."""
from __future__ import annotations

import copy
import itertools
from collections import Counter, deque
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Deque, Dict, List, Optional, Union

import structlog

from renderqueue.orchestrator.config import QueueConfig
from renderqueue.orchestrator.errors import (
    DuplicateJobError,
    InvalidStateError,
    JobNotFoundError,
    QueueError,
    QueueFullError,
)
from renderqueue.orchestrator.events import EventBus, EventKind, LifecycleEvent
from renderqueue.orchestrator.jobs import Job, JobMetadata, JobStatus
from renderqueue.orchestrator.priority import PriorityOrder
from renderqueue.orchestrator.retry import RetryPolicy, describe_error

LOGGER = structlog.get_logger(__name__)

DEFAULT_CLEANUP_AGE = timedelta(hours=24)


class ConcurrencyLimitError(QueueError):
    """Explicit dispatch refused because every render slot is busy."""

    def __init__(self, job_id: str, limit: int) -> None:
        super().__init__(f"Cannot dispatch {job_id}: {limit} renders already active")
        self.job_id = job_id
        self.limit = limit


@dataclass
class QueueStatus:
    """Point-in-time counts for dashboards. Never used to gate dispatch."""

    pending: int
    processing: int
    completed: int
    failed: int
    total: int
    active_workers: int
    max_concurrent_renders: int
    queue_length: int
    cancelled: int

    def to_dict(self) -> Dict[str, int]:
        return asdict(self)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RenderQueue:
    """Admits render jobs and releases them to a bounded number of slots.

    Every operation is synchronous and must be called from the thread that
    runs the event loop; that single thread is what makes "check for a free
    slot, then dispatch" atomic. Transitions are published on `events`.
    """

    def __init__(
        self,
        config: Optional[QueueConfig] = None,
        *,
        events: Optional[EventBus] = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.config = config or QueueConfig()
        self.events = events or EventBus()
        self.retry_policy = RetryPolicy(
            enabled=self.config.retry_failed_jobs,
            max_retries=self.config.max_retries,
            backoff_seconds=self.config.retry_backoff_seconds,
        )
        self._clock = clock
        self._jobs: Dict[str, Job] = {}
        self._order = PriorityOrder()
        self._seq = itertools.count()
        self._admission_seq: Dict[str, int] = {}
        self._cancelled: Deque[Job] = deque(maxlen=self.config.cancelled_history)
        self._active_workers = 0
        self._held = False

    @property
    def active_workers(self) -> int:
        return self._active_workers

    @property
    def dispatch_held(self) -> bool:
        return self._held

    # ---------------- transitions ----------------
    def admit(
        self,
        job_id: str,
        payload: Any = None,
        *,
        priority: int = 0,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Record a new pending job and try to dispatch it."""
        existing = self._jobs.get(job_id)
        if existing is not None:
            raise DuplicateJobError(job_id, existing.status.value)
        if len(self._jobs) >= self.config.max_queue_size:
            raise QueueFullError(self.config.max_queue_size)

        meta = JobMetadata.from_mapping(metadata)
        meta.created_at = self._clock()
        meta.started_at = meta.completed_at = meta.failed_at = meta.cancelled_at = None
        meta.retry_count = 0
        meta.retry_after = None
        meta.error = meta.error_details = meta.result = None
        job = Job(id=job_id, payload=copy.deepcopy(payload), priority=int(priority), metadata=meta)

        seq = next(self._seq)
        self._jobs[job_id] = job
        self._admission_seq[job_id] = seq
        self._order.insert(job_id, priority=job.priority, created_at=meta.created_at, seq=seq)

        position = self._order.position(job_id)
        LOGGER.info("job_added", job_id=job_id, priority=job.priority, position=position)
        snapshot = job.snapshot()
        self._emit(EventKind.JOB_ADDED, snapshot, position=position)
        self.process_next()
        return snapshot

    def dispatch(self, job_id: str) -> Dict[str, Any]:
        """Move a pending job into processing."""
        job = self._require(job_id, JobStatus.PENDING)
        if self._active_workers >= self.config.max_concurrent_renders:
            raise ConcurrencyLimitError(job_id, self.config.max_concurrent_renders)
        self._order.remove(job_id)
        job.mark_started(self._clock())
        self._active_workers += 1
        LOGGER.info("job_started", job_id=job_id, active_workers=self._active_workers)
        snapshot = job.snapshot()
        self._emit(EventKind.JOB_STARTED, snapshot, active_workers=self._active_workers)
        return snapshot

    def complete(self, job_id: str, result: Any = None) -> Dict[str, Any]:
        """Record a successful render and free its slot."""
        job = self._require(job_id, JobStatus.PROCESSING)
        job.mark_completed(self._clock(), copy.deepcopy(result))
        self._release_slot()
        LOGGER.info("job_completed", job_id=job_id, active_workers=self._active_workers)
        snapshot = job.snapshot()
        self._emit(EventKind.JOB_COMPLETED, snapshot, active_workers=self._active_workers)
        self.process_next()
        return snapshot

    def fail(self, job_id: str, error: object) -> Dict[str, Any]:
        """Record a failed render, then retry or fail permanently."""
        job = self._require(job_id, JobStatus.PROCESSING)
        now = self._clock()
        message, details = describe_error(error)
        job.record_error(now, message, details)
        decision = self.retry_policy.decide(job, now)
        self._release_slot()

        if decision.retry:
            job.mark_retry(decision.retry_after)
            self._order.insert(
                job_id,
                priority=job.priority,
                created_at=job.metadata.created_at,
                seq=self._admission_seq[job_id],
            )
            LOGGER.warning(
                "job_retry",
                job_id=job_id,
                attempt=job.metadata.retry_count,
                max_retries=self.retry_policy.max_retries,
                error=message,
            )
            snapshot = job.snapshot()
            self._emit(
                EventKind.JOB_RETRY,
                snapshot,
                retry_count=job.metadata.retry_count,
                max_retries=self.retry_policy.max_retries,
            )
        else:
            job.mark_failed()
            LOGGER.error("job_failed", job_id=job_id, retry_count=job.metadata.retry_count, error=message)
            snapshot = job.snapshot()
            self._emit(EventKind.JOB_FAILED, snapshot, retry_count=job.metadata.retry_count)

        self.process_next()
        return snapshot

    def cancel(self, job_id: str) -> Dict[str, Any]:
        """Withdraw a pending job. In-flight work is never preempted."""
        job = self._require(job_id, JobStatus.PENDING)
        self._order.remove(job_id)
        del self._jobs[job_id]
        self._admission_seq.pop(job_id, None)
        job.mark_cancelled(self._clock())
        self._cancelled.append(job)
        LOGGER.info("job_cancelled", job_id=job_id)
        snapshot = job.snapshot()
        self._emit(EventKind.JOB_CANCELLED, snapshot)
        self.process_next()
        return snapshot

    def update_priority(self, job_id: str, priority: int) -> Dict[str, Any]:
        job = self._require(job_id, JobStatus.PENDING)
        previous = job.priority
        job.priority = int(priority)
        self._order.reprioritise(job_id, job.priority)
        position = self._order.position(job_id)
        LOGGER.info("job_priority_updated", job_id=job_id, priority=job.priority, previous=previous, position=position)
        snapshot = job.snapshot()
        self._emit(EventKind.JOB_PRIORITY_UPDATED, snapshot, previous_priority=previous, position=position)
        return snapshot

    def remove_project(self, project_id: str) -> int:
        """Drop every pending, completed or failed job of a project.

        Processing jobs are left alone so their worker can still report.
        """
        removed = [
            job_id
            for job_id, job in self._jobs.items()
            if job.metadata.project_id == project_id and job.status is not JobStatus.PROCESSING
        ]
        for job_id in removed:
            self._order.remove(job_id)
            del self._jobs[job_id]
            self._admission_seq.pop(job_id, None)
        LOGGER.info("project_removed", project_id=project_id, count=len(removed))
        return len(removed)

    # ---------------- dispatcher ----------------
    def hold_dispatch(self) -> None:
        """Stop handing pending jobs to workers until `release_dispatch`."""
        self._held = True
        LOGGER.info("dispatch_held", pending=len(self._order), active_workers=self._active_workers)

    def release_dispatch(self) -> None:
        """Resume hand-offs. Call `process_next` to fill free slots."""
        self._held = False
        LOGGER.info("dispatch_released", pending=len(self._order))

    def process_next(self) -> List[Dict[str, Any]]:
        """Fill free render slots from the head of the priority order.

        Each dispatched job is announced with a `process_job` event, the
        hand-off to whichever render worker is subscribed.
        """
        dispatched: List[Dict[str, Any]] = []
        if self._held:
            return dispatched
        while self._active_workers < self.config.max_concurrent_renders:
            job_id = self._next_eligible()
            if job_id is None:
                break
            snapshot = self.dispatch(job_id)
            self._emit(EventKind.PROCESS_JOB, snapshot)
            dispatched.append(snapshot)
        return dispatched

    def _next_eligible(self) -> Optional[str]:
        now = self._clock()
        for job_id in self._order:
            retry_after = self._jobs[job_id].metadata.retry_after
            if retry_after is None or retry_after <= now:
                return job_id
        return None

    def _release_slot(self) -> None:
        self._active_workers = max(0, self._active_workers - 1)

    # ---------------- queries ----------------
    def get(self, job_id: str) -> Optional[Dict[str, Any]]:
        """Return a snapshot of a pending, processing, completed or failed job."""
        job = self._jobs.get(job_id)
        return job.snapshot() if job else None

    def position(self, job_id: str) -> Optional[int]:
        return self._order.position(job_id)

    def pending_ids(self) -> List[str]:
        """Pending job ids in dispatch order."""
        return list(self._order)

    def status(self) -> QueueStatus:
        counts = Counter(job.status for job in self._jobs.values())
        return QueueStatus(
            pending=counts[JobStatus.PENDING],
            processing=counts[JobStatus.PROCESSING],
            completed=counts[JobStatus.COMPLETED],
            failed=counts[JobStatus.FAILED],
            total=len(self._jobs),
            active_workers=self._active_workers,
            max_concurrent_renders=self.config.max_concurrent_renders,
            queue_length=len(self._order),
            cancelled=len(self._cancelled),
        )

    def project_jobs(self, project_id: str) -> List[Dict[str, Any]]:
        """All tracked jobs of a project ordered by dataset row."""
        jobs = [job for job in self._jobs.values() if job.metadata.project_id == project_id]
        jobs.sort(key=lambda job: (job.metadata.row_index is None, job.metadata.row_index or 0))
        return [job.snapshot() for job in jobs]

    def cancelled_jobs(self) -> List[Dict[str, Any]]:
        """Recently cancelled jobs, oldest first."""
        return [job.snapshot() for job in self._cancelled]

    def is_idle(self) -> bool:
        return not self._order and self._active_workers == 0

    def cleanup(self, max_age: Union[timedelta, float, None] = None) -> int:
        """Purge completed jobs whose completion is older than `max_age`."""
        if max_age is None:
            max_age = DEFAULT_CLEANUP_AGE
        elif not isinstance(max_age, timedelta):
            max_age = timedelta(seconds=float(max_age))
        cutoff = self._clock() - max_age
        expired = [
            job_id
            for job_id, job in self._jobs.items()
            if job.status is JobStatus.COMPLETED
            and job.metadata.completed_at is not None
            and job.metadata.completed_at < cutoff
        ]
        for job_id in expired:
            del self._jobs[job_id]
            self._admission_seq.pop(job_id, None)
        LOGGER.info("completed_jobs_cleaned", count=len(expired))
        return len(expired)

    # ---------------- helpers ----------------
    def _require(self, job_id: str, expected: JobStatus) -> Job:
        job = self._jobs.get(job_id)
        if job is None:
            raise JobNotFoundError(job_id)
        if job.status is not expected:
            raise InvalidStateError(job_id, job.status.value, expected.value)
        return job

    def _emit(self, kind: EventKind, snapshot: Dict[str, Any], **context: Any) -> None:
        self.events.publish(LifecycleEvent(kind=kind, job=snapshot, context=context, emitted_at=self._clock()))
