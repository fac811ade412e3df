"""Typed lifecycle events and the outbound channels that carry them."""
from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, AsyncIterator, Dict, FrozenSet, Iterable, List, Optional

import structlog

LOGGER = structlog.get_logger(__name__)


class EventKind(str, Enum):
    JOB_ADDED = "job_added"
    JOB_STARTED = "job_started"
    PROCESS_JOB = "process_job"
    JOB_COMPLETED = "job_completed"
    JOB_FAILED = "job_failed"
    JOB_RETRY = "job_retry"
    JOB_CANCELLED = "job_cancelled"
    JOB_PRIORITY_UPDATED = "job_priority_updated"


@dataclass(frozen=True)
class LifecycleEvent:
    """A single job transition, carrying a detached job snapshot."""

    kind: EventKind
    job: Dict[str, Any]
    context: Dict[str, Any] = field(default_factory=dict)
    emitted_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def job_id(self) -> str:
        return self.job["id"]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "job": self.job,
            "context": self.context,
            "emitted_at": self.emitted_at.isoformat(),
        }


class Subscription:
    """One consumer's channel of lifecycle events."""

    def __init__(self, bus: "EventBus", kinds: Optional[FrozenSet[EventKind]], maxsize: int) -> None:
        self._bus = bus
        self.kinds = kinds
        self.dropped = 0
        # None is the end-of-stream marker written by close().
        self._queue: asyncio.Queue[Optional[LifecycleEvent]] = asyncio.Queue(maxsize=maxsize)
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def accepts(self, event: LifecycleEvent) -> bool:
        return not self._closed and (self.kinds is None or event.kind in self.kinds)

    def offer(self, event: LifecycleEvent) -> None:
        """Enqueue without blocking; a full channel loses its oldest event."""
        self._make_room()
        self._queue.put_nowait(event)

    def _make_room(self) -> None:
        if not self._queue.full():
            return
        lost = self._queue.get_nowait()
        self.dropped += 1
        LOGGER.warning(
            "event_dropped",
            kind=lost.kind.value if lost else None,
            job_id=lost.job_id if lost else None,
            dropped=self.dropped,
        )

    async def get(self) -> Optional[LifecycleEvent]:
        """Wait for the next event; None once the subscription is closed."""
        return await self._queue.get()

    def get_nowait(self) -> Optional[LifecycleEvent]:
        return self._queue.get_nowait()

    def drain(self) -> List[LifecycleEvent]:
        """Return every event currently buffered."""
        events: List[LifecycleEvent] = []
        while not self._queue.empty():
            event = self._queue.get_nowait()
            if event is not None:
                events.append(event)
        return events

    def pending(self) -> int:
        return self._queue.qsize()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._bus.unsubscribe(self)
        self._make_room()
        self._queue.put_nowait(None)

    def __aiter__(self) -> AsyncIterator[LifecycleEvent]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[LifecycleEvent]:
        while True:
            event = await self._queue.get()
            if event is None:
                return
            yield event


class EventBus:
    """Fans lifecycle events out to independent subscriptions."""

    def __init__(self) -> None:
        self._subscriptions: List[Subscription] = []

    def subscribe(self, kinds: Optional[Iterable[EventKind]] = None, *, maxsize: int = 0) -> Subscription:
        """Open a channel, optionally limited to the given event kinds."""
        selected = frozenset(kinds) if kinds is not None else None
        subscription = Subscription(self, selected, maxsize)
        self._subscriptions.append(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)

    def publish(self, event: LifecycleEvent) -> None:
        for subscription in list(self._subscriptions):
            if subscription.accepts(event):
                subscription.offer(event)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)
