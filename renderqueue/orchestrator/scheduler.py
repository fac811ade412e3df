"""Scheduler helpers for turning dataset rows into render jobs."""
from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from renderqueue.orchestrator.queue import RenderQueue
from renderqueue.templates.registry import RenderTemplate


@dataclass
class PlannedJob:
    """Everything `RenderQueue.admit` needs for one row."""

    job_id: str
    payload: Dict[str, Any]
    priority: int = 0
    metadata: Dict[str, Any] = field(default_factory=dict)


def plan_render_jobs(
    *,
    template: RenderTemplate,
    rows: Iterable[Dict[str, str]],
    project_id: str,
    output_root: Path,
    priority: int = 0,
    limit: Optional[int] = None,
) -> List[PlannedJob]:
    """Produce one render job per row, constrained by the limit supplied."""
    project_dir = output_root / project_id
    jobs: List[PlannedJob] = []
    for index, row in enumerate(rows, start=1):
        job_id = f"{project_id}_{index}_{uuid.uuid4()}"
        output_filename = f"{job_id}.{template.output_ext}"
        jobs.append(
            PlannedJob(
                job_id=job_id,
                payload=template.build_render_job(row),
                priority=priority,
                metadata={
                    "project_id": project_id,
                    "template_id": template.template_id,
                    "row_index": index,
                    "row_data": dict(row),
                    "output_path": str(project_dir / output_filename),
                    "output_filename": output_filename,
                },
            )
        )
        if limit is not None and len(jobs) >= limit:
            break
    return jobs


def admit_planned(queue: RenderQueue, planned: Iterable[PlannedJob]) -> List[Dict[str, Any]]:
    """Admit planned jobs in order; stops at the first queue error."""
    return [
        queue.admit(job.job_id, job.payload, priority=job.priority, metadata=job.metadata)
        for job in planned
    ]
