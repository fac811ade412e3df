"""Tracing helpers binding job context onto structured logs."""
from __future__ import annotations

import contextlib
import time
from typing import Iterator, Optional

import structlog
from structlog.contextvars import bind_contextvars, unbind_contextvars

_CONTEXT_KEYS = ("job_id", "project_id")


def _logger():
    return structlog.get_logger("renderqueue.trace")


def bind_job_context(*, job_id: str, project_id: Optional[str] = None) -> None:
    bind_contextvars(job_id=job_id, project_id=project_id)
    _logger().debug("trace_context")


def clear_job_context() -> None:
    unbind_contextvars(*_CONTEXT_KEYS)


@contextlib.contextmanager
def span(*, name: str, job_id: Optional[str] = None) -> Iterator[None]:
    start = time.perf_counter()
    try:
        yield
    finally:
        elapsed_ms = int((time.perf_counter() - start) * 1000)
        _logger().info("trace_span", span=name, job_id=job_id, elapsed_ms=elapsed_ms)
