"""Administrative CLI utilities."""
from __future__ import annotations

import argparse
import json
from collections import Counter
from pathlib import Path
from typing import Dict, List, Optional

from renderqueue.admin.status import load_manifests, manifest_outputs, purge_project_runs
from renderqueue.observability.log import configure_logging


def cmd_status(args: argparse.Namespace) -> None:
    manifests = load_manifests(Path(args.manifests))
    latest: Dict[str, Dict[str, object]] = {}
    for manifest in manifests:
        project_id = str(manifest.get("project_id"))
        if args.project_id and project_id != args.project_id:
            continue
        if project_id in latest:
            continue
        latest[project_id] = {
            "project_id": project_id,
            "last_run": manifest.get("run_id"),
            **manifest.get("summary", {}),
        }
    print(json.dumps(list(latest.values()), indent=2))


def _failure_reasons(manifests: List[Dict[str, object]], *, project_id: Optional[str], last: int) -> Dict[str, int]:
    counter: Counter[str] = Counter()
    for manifest in manifests[:last]:
        if project_id and manifest.get("project_id") != project_id:
            continue
        for job in manifest.get("jobs", []):
            if job.get("status") == "failed":
                counter[job.get("error") or "unknown"] += 1
    return dict(counter)


def cmd_failures(args: argparse.Namespace) -> None:
    manifests = load_manifests(Path(args.manifests))
    reasons = _failure_reasons(manifests, project_id=args.project_id, last=args.last)
    print(json.dumps(reasons, indent=2))


def cmd_explain(args: argparse.Namespace) -> None:
    for manifest in load_manifests(Path(args.manifests)):
        match = next((job for job in manifest.get("jobs", []) if job.get("id") == args.job_id), None)
        if match is not None:
            print(json.dumps({"job_id": args.job_id, "found": True, "run_id": manifest.get("run_id"), "job": match}, indent=2))
            return
    print(json.dumps({"job_id": args.job_id, "found": False}))


def cmd_outputs(args: argparse.Namespace) -> None:
    manifest = next(
        (item for item in load_manifests(Path(args.manifests)) if item.get("project_id") == args.project_id),
        None,
    )
    if manifest is None:
        raise SystemExit(f"No runs recorded for project {args.project_id}")
    outputs = manifest_outputs(manifest)
    report = {
        "project_id": args.project_id,
        "run_id": manifest.get("run_id"),
        "video_count": len(outputs),
        "videos": outputs,
    }
    print(json.dumps(report, indent=2))


def cmd_purge(args: argparse.Namespace) -> None:
    removed = purge_project_runs(Path(args.manifests), args.project_id)
    print(json.dumps({"project_id": args.project_id, "removed_runs": removed}, indent=2))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="renderqueue.admin.cli", description="Administration commands")
    sub = parser.add_subparsers(dest="command", required=True)

    status = sub.add_parser("status", help="Show the latest run summary per project")
    status.add_argument("--manifests", default="data/manifests")
    status.add_argument("--project-id")

    failures = sub.add_parser("inspect-failures", help="Count permanent failure reasons")
    failures.add_argument("--manifests", default="data/manifests")
    failures.add_argument("--project-id")
    failures.add_argument("--last", type=int, default=10, help="Number of most recent runs to scan")

    explain = sub.add_parser("explain", help="Show the recorded state of one job")
    explain.add_argument("--job-id", required=True)
    explain.add_argument("--manifests", default="data/manifests")

    outputs = sub.add_parser("outputs", help="List completed renders from the latest run of a project")
    outputs.add_argument("--project-id", required=True)
    outputs.add_argument("--manifests", default="data/manifests")

    purge = sub.add_parser("purge-project", help="Delete a project's run manifests and journals")
    purge.add_argument("--project-id", required=True)
    purge.add_argument("--manifests", default="data/manifests")

    return parser


def main(argv: Optional[List[str]] = None) -> None:
    configure_logging(Path("config/logging.yaml"))
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.command == "status":
        cmd_status(args)
        return
    if args.command == "inspect-failures":
        cmd_failures(args)
        return
    if args.command == "explain":
        cmd_explain(args)
        return
    if args.command == "outputs":
        cmd_outputs(args)
        return
    if args.command == "purge-project":
        cmd_purge(args)
        return


if __name__ == "__main__":
    main()
