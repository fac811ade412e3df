"""Periodic safety-net tick for the dispatcher, built on asyncio."""
from __future__ import annotations

import asyncio
from typing import Optional

import structlog

from renderqueue.orchestrator.queue import RenderQueue

LOGGER = structlog.get_logger(__name__)


class SafetyNetTicker:
    """Calls `RenderQueue.process_next` on a fixed interval.

    Dispatch is driven by the queue's own transitions; this tick only
    catches jobs a missed trigger left behind and retries whose backoff
    has elapsed.
    """

    def __init__(self, queue: RenderQueue, *, interval_seconds: Optional[float] = None) -> None:
        self._queue = queue
        self._interval = interval_seconds or queue.config.tick_interval_seconds
        self._task: Optional[asyncio.Task] = None
        self.ticks = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Schedule the tick on the running loop; a second call is a no-op."""
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run())
        LOGGER.info("safety_tick_started", interval_seconds=self._interval)

    async def stop(self) -> None:
        """Cancel the tick; safe to call when it never started."""
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        LOGGER.info("safety_tick_stopped", ticks=self.ticks)

    def tick(self) -> int:
        """Run one dispatch pass, returning how many jobs it released."""
        self.ticks += 1
        dispatched = self._queue.process_next()
        if dispatched:
            LOGGER.info("safety_tick_dispatched", count=len(dispatched))
        return len(dispatched)

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            self.tick()
