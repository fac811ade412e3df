"""Render worker: consumes `process_job` events and reports outcomes."""
from __future__ import annotations

import asyncio
from typing import Any, Dict, Optional, Set

import structlog

from renderqueue.observability.metrics import MetricsRegistry, record_duration
from renderqueue.observability.tracing import bind_job_context, clear_job_context
from renderqueue.orchestrator.errors import QueueError
from renderqueue.orchestrator.events import EventKind
from renderqueue.orchestrator.queue import RenderQueue
from renderqueue.render.executor import RenderError, Renderer

LOGGER = structlog.get_logger(__name__)


class RenderWorker:
    """Executes dispatched jobs and calls `complete` or `fail` exactly once each.

    The worker subscribes on construction so no dispatch published after that
    point is missed. It also owns the job timeout: a render that outlives
    `job_timeout` is cancelled and reported as a failure, which then follows
    the queue's retry policy.
    """

    def __init__(
        self,
        queue: RenderQueue,
        renderer: Renderer,
        *,
        job_timeout: Optional[float] = None,
        metrics: Optional[MetricsRegistry] = None,
    ) -> None:
        self._queue = queue
        self._renderer = renderer
        self._timeout = job_timeout if job_timeout is not None else queue.config.job_timeout_seconds
        self._metrics = metrics
        self._subscription = queue.events.subscribe([EventKind.PROCESS_JOB])
        self._consumer: Optional[asyncio.Task] = None
        self._running: Set[asyncio.Task] = set()

    @property
    def in_flight(self) -> int:
        return len(self._running)

    def start(self) -> None:
        if self._consumer is not None:
            return
        self._consumer = asyncio.get_running_loop().create_task(self._consume())

    async def stop(self, *, cancel_running: bool = False) -> None:
        """Stop consuming; wait for in-flight renders unless told to cancel them.

        Dispatch is held while the worker winds down, so a slot freed by a
        finishing or cancelled render is not handed to a closed channel.
        Jobs retried in that window stay pending.
        """
        already_held = self._queue.dispatch_held
        self._queue.hold_dispatch()
        try:
            self._subscription.close()
            consumer, self._consumer = self._consumer, None
            if consumer is not None:
                await consumer
            if cancel_running:
                for task in list(self._running):
                    task.cancel()
            if self._running:
                await asyncio.gather(*self._running, return_exceptions=True)
        finally:
            if not already_held:
                self._queue.release_dispatch()

    async def run_until_idle(self, *, poll_interval: float = 0.05) -> None:
        """Start if needed and return once nothing is pending or rendering."""
        self.start()
        while not self._queue.is_idle() or self._running:
            await asyncio.sleep(poll_interval)

    async def _consume(self) -> None:
        async for event in self._subscription:
            task = asyncio.get_running_loop().create_task(self._execute(event.job))
            self._running.add(task)
            task.add_done_callback(self._running.discard)

    async def _execute(self, job: Dict[str, Any]) -> None:
        job_id = job["id"]
        bind_job_context(job_id=job_id, project_id=job["metadata"].get("project_id"))
        try:
            try:
                if self._metrics is not None:
                    with record_duration(self._metrics, "render_duration_ms"):
                        result = await asyncio.wait_for(self._renderer.render(job), timeout=self._timeout)
                else:
                    result = await asyncio.wait_for(self._renderer.render(job), timeout=self._timeout)
            except asyncio.TimeoutError:
                LOGGER.warning("render_timeout", job_id=job_id, timeout_seconds=self._timeout)
                self._report(job_id, RenderError(f"Render timed out after {self._timeout:g}s"))
            except asyncio.CancelledError:
                self._report(job_id, RenderError("Render cancelled"))
                raise
            except Exception as exc:
                LOGGER.warning("render_failed", job_id=job_id, error=str(exc))
                self._report(job_id, exc)
            else:
                self._settle(job_id, result)
        finally:
            clear_job_context()

    def _settle(self, job_id: str, result: Any) -> None:
        try:
            self._queue.complete(job_id, result)
        except QueueError as exc:
            LOGGER.error("render_result_rejected", job_id=job_id, error=str(exc))

    def _report(self, job_id: str, error: BaseException) -> None:
        if isinstance(error, RenderError) and error.details:
            payload: object = {"message": str(error), "details": error.details}
        else:
            payload = error
        try:
            self._queue.fail(job_id, payload)
        except QueueError as exc:
            LOGGER.error("render_failure_rejected", job_id=job_id, error=str(exc))
