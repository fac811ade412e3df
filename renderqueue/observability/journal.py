"""JSONL journal of lifecycle events for post-run inspection."""
from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List, Optional

import orjson

from renderqueue.observability.metrics import MetricsRegistry
from renderqueue.orchestrator.events import LifecycleEvent, Subscription


class EventJournal:
    """Appends each event it is given as one JSON line."""

    def __init__(self, path: Path) -> None:
        self._path = path
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self.written = 0

    @property
    def path(self) -> Path:
        return self._path

    def write(self, event: LifecycleEvent) -> None:
        line = orjson.dumps(event.to_dict(), default=str)
        with self._path.open("ab") as handle:
            handle.write(line + b"\n")
        self.written += 1

    async def follow(self, subscription: Subscription, *, metrics: Optional[MetricsRegistry] = None) -> None:
        """Record events from the subscription until it is closed."""
        async for event in subscription:
            self.write(event)
            if metrics is not None:
                metrics.record_event(event)


def read_journal(path: Path) -> List[Dict[str, Any]]:
    if not path.exists():
        return []
    records: List[Dict[str, Any]] = []
    for line in path.read_text(encoding="utf-8").splitlines():
        if line.strip():
            records.append(orjson.loads(line))
    return records
