"""Lightweight in-process metrics suitable for exporting later."""
from __future__ import annotations

import contextlib
import json
import time
from collections import defaultdict
from pathlib import Path
from typing import Dict

import structlog

from renderqueue.orchestrator.events import EventKind, LifecycleEvent

LOGGER = structlog.get_logger(__name__)

_EVENT_COUNTERS = {
    EventKind.JOB_ADDED: "jobs_added",
    EventKind.JOB_STARTED: "jobs_started",
    EventKind.JOB_COMPLETED: "jobs_completed",
    EventKind.JOB_FAILED: "jobs_failed",
    EventKind.JOB_RETRY: "jobs_retried",
    EventKind.JOB_CANCELLED: "jobs_cancelled",
    EventKind.JOB_PRIORITY_UPDATED: "priority_updates",
}


class MetricsRegistry:
    """Holds mutable counters for the current process."""

    def __init__(self) -> None:
        self._counters: Dict[str, int] = defaultdict(int)
        self._register_defaults()

    def _register_defaults(self) -> None:
        for key in list(_EVENT_COUNTERS.values()) + ["render_duration_ms", "run_duration_ms"]:
            self._counters[key] = 0

    def incr(self, name: str, value: int = 1) -> None:
        """Increment the named counter by the supplied value."""
        self._counters[name] += value

    def get(self, name: str) -> int:
        """Return the current value for the counter, defaulting to zero."""
        return self._counters.get(name, 0)

    def snapshot(self) -> Dict[str, int]:
        """Return a shallow copy of all counters for reporting."""
        return dict(self._counters)

    def record_event(self, event: LifecycleEvent) -> None:
        counter = _EVENT_COUNTERS.get(event.kind)
        if counter:
            self.incr(counter)

    def export(self, *, path: Path, run_id: str) -> Path:
        """Write counters to a JSON file under the provided directory."""
        path.parent.mkdir(parents=True, exist_ok=True)
        payload = {
            "run_id": run_id,
            "counters": self.snapshot(),
            "generated_at": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
        }
        path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
        return path


@contextlib.contextmanager
def record_duration(registry: MetricsRegistry, metric_name: str):
    """Measure elapsed time for a block and emit it when done."""
    start = time.perf_counter()
    try:
        yield
    finally:
        elapsed = time.perf_counter() - start
        registry.incr(metric_name, int(elapsed * 1000))
        LOGGER.info("timer_stop", metric=metric_name, duration_ms=int(elapsed * 1000))
