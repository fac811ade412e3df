"""Definitions for render jobs and their lifecycle."""
from __future__ import annotations

import copy
from dataclasses import dataclass, field, fields
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional


class JobStatus(str, Enum):
    """Lifecycle states of a render job."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class JobMetadata:
    """Correlation data and lifecycle timestamps for one job."""

    project_id: Optional[str] = None
    template_id: Optional[str] = None
    row_index: Optional[int] = None
    row_data: Dict[str, Any] = field(default_factory=dict)
    output_path: Optional[str] = None
    output_filename: Optional[str] = None
    created_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    failed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    retry_count: int = 0
    error: Optional[str] = None
    error_details: Optional[str] = None
    result: Any = None
    retry_after: Optional[datetime] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_mapping(cls, values: Optional[Dict[str, Any]]) -> "JobMetadata":
        """Build metadata from caller input, keeping unknown keys under `extra`."""
        known = {item.name for item in fields(cls)} - {"extra"}
        data = copy.deepcopy(dict(values or {}))
        nested = data.pop("extra", {}) or {}
        kwargs = {key: data.pop(key) for key in list(data) if key in known}
        extra = {key: value for key, value in nested.items() if key not in known}
        extra.update(data)
        return cls(**kwargs, extra=extra)


@dataclass
class Job:
    """Represents one render of one dataset row."""

    id: str
    payload: Any = None
    priority: int = 0
    status: JobStatus = JobStatus.PENDING
    metadata: JobMetadata = field(default_factory=JobMetadata)

    def mark_started(self, now: datetime) -> None:
        """Transition the job into processing."""
        self.status = JobStatus.PROCESSING
        self.metadata.started_at = now

    def mark_completed(self, now: datetime, result: Any) -> None:
        self.status = JobStatus.COMPLETED
        self.metadata.completed_at = now
        self.metadata.result = result

    def record_error(self, now: datetime, error: str, details: str) -> None:
        """Capture the failure reported by the render worker."""
        self.metadata.error = error
        self.metadata.error_details = details
        self.metadata.failed_at = now

    def mark_retry(self, retry_after: Optional[datetime] = None) -> None:
        """Send the job back to pending for another attempt."""
        self.status = JobStatus.PENDING
        self.metadata.retry_count += 1
        self.metadata.started_at = None
        self.metadata.retry_after = retry_after

    def mark_failed(self) -> None:
        self.status = JobStatus.FAILED
        self.metadata.retry_after = None

    def mark_cancelled(self, now: datetime) -> None:
        self.status = JobStatus.CANCELLED
        self.metadata.cancelled_at = now

    def snapshot(self) -> Dict[str, Any]:
        """Return a detached, JSON-friendly copy of the job."""
        meta = self.metadata
        # caller keys first so lifecycle fields always win
        metadata: Dict[str, Any] = copy.deepcopy(meta.extra)
        metadata.update({
            "project_id": meta.project_id,
            "template_id": meta.template_id,
            "row_index": meta.row_index,
            "row_data": copy.deepcopy(meta.row_data),
            "output_path": meta.output_path,
            "output_filename": meta.output_filename,
            "retry_count": meta.retry_count,
            "error": meta.error,
            "error_details": meta.error_details,
            "result": copy.deepcopy(meta.result),
        })
        for name in ("created_at", "started_at", "completed_at", "failed_at", "cancelled_at", "retry_after"):
            value = getattr(meta, name)
            metadata[name] = value.isoformat() if value else None
        return {
            "id": self.id,
            "priority": self.priority,
            "status": self.status.value,
            "payload": copy.deepcopy(self.payload),
            "metadata": metadata,
        }
