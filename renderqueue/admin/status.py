"""Administrative status helpers."""
from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, Iterable, List

from renderqueue.orchestrator.queue import RenderQueue

_SUMMARY_STATES = ("pending", "processing", "completed", "failed")


def _job_row(job: Dict[str, Any]) -> Dict[str, Any]:
    meta = job["metadata"]
    result_path = meta.get("result") if isinstance(meta.get("result"), str) else None
    file_path = result_path or meta.get("output_path")
    return {
        "id": job["id"],
        "row_index": meta.get("row_index"),
        "status": job["status"],
        "priority": job["priority"],
        "row_data": meta.get("row_data"),
        "created_at": meta.get("created_at"),
        "started_at": meta.get("started_at"),
        "completed_at": meta.get("completed_at"),
        "failed_at": meta.get("failed_at"),
        "retry_count": meta.get("retry_count"),
        "error": meta.get("error"),
        "error_details": meta.get("error_details"),
        "output_filename": meta.get("output_filename"),
        "output_path": meta.get("output_path"),
        "result": meta.get("result"),
        "file_exists": bool(file_path) and Path(file_path).exists(),
    }


def summarise_project(queue: RenderQueue, project_id: str) -> Dict[str, Any]:
    """Per-row job status for one project plus a count per state."""
    rows = [_job_row(job) for job in queue.project_jobs(project_id)]
    summary = {"total": len(rows)}
    for state in _SUMMARY_STATES:
        summary[state] = sum(1 for row in rows if row["status"] == state)
    return {"project_id": project_id, "summary": summary, "jobs": rows}


def load_manifests(manifest_dir: Path) -> List[Dict[str, Any]]:
    """Run manifests, newest first; unreadable files are skipped."""
    manifests: List[Dict[str, Any]] = []
    if not manifest_dir.exists():
        return manifests
    for path in sorted(manifest_dir.glob("run-*.json"), reverse=True):
        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError:
            continue
        payload["__path__"] = str(path)
        manifests.append(payload)
    return manifests


def summarise_runs(manifest_dir: Path) -> List[Dict[str, Any]]:
    """One line per `generate` run, newest first."""
    return [
        {
            "run_id": manifest.get("run_id"),
            "project_id": manifest.get("project_id"),
            "template_id": manifest.get("template_id"),
            "summary": manifest.get("summary", {}),
            "path": manifest["__path__"],
        }
        for manifest in load_manifests(manifest_dir)
    ]


def _output_entry(row: Dict[str, Any]) -> Dict[str, Any]:
    result = row.get("result") if isinstance(row.get("result"), str) else None
    file_path = result or row.get("output_path")
    size = Path(file_path).stat().st_size if file_path and Path(file_path).exists() else 0
    return {
        "id": row["id"],
        "row_index": row.get("row_index"),
        "output_filename": row.get("output_filename"),
        "output_path": file_path,
        "row_data": row.get("row_data"),
        "file_size": size,
    }


def _outputs(rows: Iterable[Dict[str, Any]]) -> List[Dict[str, Any]]:
    completed = [_output_entry(row) for row in rows if row.get("status") == "completed"]
    completed.sort(key=lambda entry: (entry["row_index"] is None, entry["row_index"] or 0))
    return completed


def list_project_outputs(queue: RenderQueue, project_id: str) -> List[Dict[str, Any]]:
    """Completed renders of a project by row, with the size of each output file."""
    return _outputs(_job_row(job) for job in queue.project_jobs(project_id))


def manifest_outputs(manifest: Dict[str, Any]) -> List[Dict[str, Any]]:
    """Completed renders recorded in a run manifest; sizes are read now."""
    return _outputs(manifest.get("jobs", []))


def purge_project_runs(manifest_dir: Path, project_id: str) -> List[str]:
    """Delete a project's run manifests and their event journals."""
    removed: List[str] = []
    for manifest in load_manifests(manifest_dir):
        if manifest.get("project_id") != project_id:
            continue
        journal = manifest.get("journal")
        if journal and Path(journal).exists():
            Path(journal).unlink()
        Path(manifest["__path__"]).unlink()
        removed.append(str(manifest.get("run_id")))
    return removed
