"""Render backends invoked by the render worker."""
from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Protocol, Sequence

import orjson
import structlog

LOGGER = structlog.get_logger(__name__)

DEFAULT_COMMAND = ["nexrender-cli", "--file", "{job_file}"]


class RenderError(RuntimeError):
    """The render backend reported a failure."""

    def __init__(self, message: str, *, details: str = "", returncode: Optional[int] = None) -> None:
        super().__init__(message)
        self.details = details
        self.returncode = returncode


class Renderer(Protocol):
    async def render(self, job: Dict[str, Any]) -> Any:
        """Render one job snapshot and return a result reference."""


class CommandRenderer:
    """Runs an external render command once per job.

    The job payload is written to `<work_dir>/<job id>.json` and removed once
    the command exits. Command arguments are formatted with `job_file`,
    `job_id` and `output_path`.
    """

    def __init__(self, *, command: Sequence[str], work_dir: Path, env: Optional[Mapping[str, str]] = None) -> None:
        if not command:
            raise ValueError("Render command must not be empty")
        self._command = list(command)
        self._work_dir = work_dir
        self._env = dict(env) if env is not None else None

    def _job_file(self, job: Dict[str, Any]) -> Path:
        self._work_dir.mkdir(parents=True, exist_ok=True)
        path = self._work_dir / f"{job['id']}.json"
        path.write_bytes(orjson.dumps(job["payload"], option=orjson.OPT_INDENT_2))
        return path

    def build_args(self, job: Dict[str, Any], job_file: Path) -> List[str]:
        values = {
            "job_file": str(job_file),
            "job_id": job["id"],
            "output_path": job["metadata"].get("output_path") or "",
        }
        return [part.format(**values) for part in self._command]

    async def render(self, job: Dict[str, Any]) -> Any:
        job_file = self._job_file(job)
        args = self.build_args(job, job_file)
        LOGGER.info("render_command", job_id=job["id"], args=args)
        try:
            process = await asyncio.create_subprocess_exec(
                *args,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=self._env,
            )
            try:
                stdout, stderr = await process.communicate()
            except asyncio.CancelledError:
                process.kill()
                await process.wait()
                raise
        finally:
            job_file.unlink(missing_ok=True)
        out_text = stdout.decode("utf-8", errors="replace")
        err_text = stderr.decode("utf-8", errors="replace")
        if process.returncode != 0:
            message = (err_text.strip().splitlines() or [f"exit code {process.returncode}"])[-1]
            raise RenderError(message, details=err_text or out_text, returncode=process.returncode)
        return job["metadata"].get("output_path") or out_text.strip()


def create_renderer(settings: Mapping[str, object]) -> CommandRenderer:
    """Build the command renderer described by the `[render]` table."""
    render_cfg: Dict[str, Any] = dict(settings.get("render", {}) or {})
    return CommandRenderer(
        command=render_cfg.get("command", DEFAULT_COMMAND),
        work_dir=Path(render_cfg.get("work_dir", "data/work")),
    )
