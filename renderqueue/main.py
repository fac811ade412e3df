"""Command-line entrypoints for the render queue."""
from __future__ import annotations

import argparse
import asyncio
import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional

import structlog
import tomllib
from dotenv import load_dotenv

try:
    import uvloop
except ImportError:  # pragma: no cover - uvloop is unavailable on Windows
    uvloop = None

from renderqueue.admin.status import list_project_outputs, summarise_project, summarise_runs
from renderqueue.observability.journal import EventJournal
from renderqueue.observability.log import configure_logging
from renderqueue.observability.metrics import MetricsRegistry, record_duration
from renderqueue.observability.tracing import span
from renderqueue.orchestrator.config import QueueConfig
from renderqueue.orchestrator.dataset_loader import load_rows, validate_rows
from renderqueue.orchestrator.queue import RenderQueue
from renderqueue.orchestrator.schedule_loop import SafetyNetTicker
from renderqueue.orchestrator.scheduler import admit_planned, plan_render_jobs
from renderqueue.render.executor import Renderer, create_renderer
from renderqueue.render.worker import RenderWorker
from renderqueue.templates.registry import DEFAULT_SCHEMA_PATH, TemplateRegistry, write_data_model

LOGGER = structlog.get_logger(__name__)

DEFAULT_SETTINGS = Path("config/settings.toml")


def load_settings(path: Path) -> Dict[str, object]:
    """Read the TOML configuration file."""
    with path.open("rb") as handle:
        return tomllib.load(handle)


def build_arg_parser() -> argparse.ArgumentParser:
    """Create the CLI argument parser."""
    parser = argparse.ArgumentParser(prog="renderqueue", description="Render jobs from dataset rows")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("seed-templates", help="Write a demo template pair and dataset")
    sub.add_parser("templates", help="List available template pairs")

    model = sub.add_parser("data-model", help="Write a header-only CSV for a template")
    model.add_argument("--template", required=True, help="Template id (file stem)")
    model.add_argument("--output", help="Destination CSV path")

    inspect = sub.add_parser("inspect-csv", help="Parse a dataset and report rows and columns")
    inspect.add_argument("--csv", required=True, help="Dataset CSV path")
    inspect.add_argument("--template", help="Check rows against this template's data fields")

    generate = sub.add_parser("generate", help="Render one job per dataset row")
    generate.add_argument("--project", required=True, help="Project id")
    generate.add_argument("--template", required=True, help="Template id (file stem)")
    generate.add_argument("--csv", required=True, help="Dataset CSV path")
    generate.add_argument("--priority", type=int, default=0, help="Priority for every job of this run")
    generate.add_argument("--limit", type=int, help="Render at most this many rows")
    generate.add_argument("--dry-run", action="store_true", help="Print planned jobs without rendering")

    status = sub.add_parser("status", help="Summarise run manifests")
    status.add_argument("--manifests", help="Manifest directory")

    return parser


def _registry(settings: Dict[str, object]) -> TemplateRegistry:
    app = settings["app"]
    return TemplateRegistry(
        Path(app["templates_dir"]),
        schema_path=Path(app.get("template_schema", DEFAULT_SCHEMA_PATH)),
    )


def _load_template(settings: Dict[str, object], template_id: str):
    try:
        return _registry(settings).get(template_id)
    except (FileNotFoundError, ValueError) as exc:
        raise SystemExit(f"Failed to load template: {exc}")


async def run_generate(
    args: argparse.Namespace,
    settings: Dict[str, object],
    *,
    renderer: Optional[Renderer] = None,
) -> Dict[str, object]:
    """Plan, admit and render every row of the dataset, then write a manifest."""
    app = settings["app"]
    template = _load_template(settings, args.template)
    try:
        dataset = load_rows(Path(args.csv))
    except (OSError, ValueError) as exc:
        raise SystemExit(f"Failed to load dataset: {exc}")

    for row_index, ok, detail in validate_rows(dataset.rows, template.data_fields):
        if not ok:
            LOGGER.warning("dataset_row_incomplete", row_index=row_index, detail=detail)

    planned = plan_render_jobs(
        template=template,
        rows=dataset.rows,
        project_id=args.project,
        output_root=Path(app["output_root"]),
        priority=getattr(args, "priority", 0),
        limit=getattr(args, "limit", None),
    )

    if getattr(args, "dry_run", False):
        summary = [
            {
                "job_id": job.job_id,
                "row_index": job.metadata["row_index"],
                "priority": job.priority,
                "output_filename": job.metadata["output_filename"],
            }
            for job in planned
        ]
        print(json.dumps(summary, indent=2))
        return {"planned": len(planned)}

    if not planned:
        print("No rows to render")
        return {"planned": 0}

    config = QueueConfig.from_settings(settings)
    if len(planned) > config.max_queue_size:
        raise SystemExit(f"Dataset has {len(planned)} rows but the queue holds at most {config.max_queue_size} jobs")

    run_id = getattr(args, "run_id", None) or datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%f")
    queue = RenderQueue(config)
    metrics = MetricsRegistry()
    journal = EventJournal(Path(app["journal_dir"]) / f"events-{run_id}.jsonl")
    journal_feed = queue.events.subscribe()
    journal_task = asyncio.create_task(journal.follow(journal_feed, metrics=metrics))
    worker = RenderWorker(queue, renderer or create_renderer(settings), metrics=metrics)
    ticker = SafetyNetTicker(queue)

    with record_duration(metrics, "run_duration_ms"), span(name="generate"):
        worker.start()
        ticker.start()
        try:
            admit_planned(queue, planned)
            await worker.run_until_idle()
        finally:
            await ticker.stop()
            await worker.stop()
            journal_feed.close()
            await journal_task

    project = summarise_project(queue, args.project)
    manifest_dir = Path(app["manifest_dir"])
    manifest_dir.mkdir(parents=True, exist_ok=True)
    manifest = {
        "run_id": run_id,
        "project_id": args.project,
        "template_id": template.template_id,
        "summary": project["summary"],
        "jobs": project["jobs"],
        "outputs": list_project_outputs(queue, args.project),
        "queue": queue.status().to_dict(),
        "metrics": metrics.snapshot(),
        "journal": str(journal.path),
    }
    (manifest_dir / f"run-{run_id}.json").write_text(json.dumps(manifest, indent=2, default=str), encoding="utf-8")
    metrics.export(path=Path(app["metrics_dir"]) / f"run_{run_id}.json", run_id=run_id)
    # jobs live on in the manifest
    queue.remove_project(args.project)
    print(json.dumps({"run_id": run_id, "project_id": args.project, **project["summary"]}, indent=2))
    return manifest


def main(argv: Optional[List[str]] = None) -> None:
    """Entry point for the CLI."""
    load_dotenv()
    parser = build_arg_parser()
    args = parser.parse_args(argv)
    settings = load_settings(DEFAULT_SETTINGS)
    configure_logging(Path("config/logging.yaml"))

    if uvloop is not None:
        uvloop.install()

    if args.command == "seed-templates":
        from scripts.seed_templates import seed_templates

        seed_templates(Path(settings["app"]["templates_dir"]), Path("data/sample_rows.csv"))
        return

    if args.command == "templates":
        print(json.dumps([template.summary() for template in _registry(settings).list_templates()], indent=2))
        return

    if args.command == "data-model":
        template = _load_template(settings, args.template)
        output = Path(args.output) if args.output else Path(f"{template.template_id}_data_model.csv")
        try:
            write_data_model(template, output)
        except ValueError as exc:
            raise SystemExit(str(exc))
        print(str(output))
        return

    if args.command == "inspect-csv":
        try:
            dataset = load_rows(Path(args.csv))
        except (OSError, ValueError) as exc:
            raise SystemExit(f"Failed to load dataset: {exc}")
        report: Dict[str, object] = {"row_count": dataset.row_count, "columns": dataset.columns}
        if args.template:
            template = _load_template(settings, args.template)
            report["rows"] = [
                {"row_index": index, "ok": ok, "detail": detail}
                for index, ok, detail in validate_rows(dataset.rows, template.data_fields)
            ]
        print(json.dumps(report, indent=2))
        return

    if args.command == "status":
        manifests = summarise_runs(Path(args.manifests or settings["app"]["manifest_dir"]))
        print(json.dumps({"manifests": manifests}, indent=2))
        return

    if args.command == "generate":
        asyncio.run(run_generate(args, settings))


if __name__ == "__main__":
    main()
