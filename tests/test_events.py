import asyncio

from renderqueue.orchestrator.config import QueueConfig
from renderqueue.orchestrator.events import EventBus, EventKind, LifecycleEvent
from renderqueue.orchestrator.queue import RenderQueue


def _event(job_id: str, kind: EventKind = EventKind.JOB_ADDED) -> LifecycleEvent:
    return LifecycleEvent(kind=kind, job={"id": job_id})


def test_admission_publishes_added_started_and_process_job():
    queue = RenderQueue()
    feed = queue.events.subscribe()
    queue.admit("a")
    events = feed.drain()
    assert [event.kind for event in events] == [
        EventKind.JOB_ADDED,
        EventKind.JOB_STARTED,
        EventKind.PROCESS_JOB,
    ]
    assert events[0].job["status"] == "pending"
    assert events[0].context == {"position": 1}
    assert events[2].job["status"] == "processing"


def test_full_lifecycle_event_stream():
    queue = RenderQueue(QueueConfig(max_concurrent_renders=1, max_retries=1))
    feed = queue.events.subscribe()
    queue.admit("a")
    queue.admit("b")
    queue.update_priority("b", 2)
    queue.fail("a", "first")
    queue.complete("b")
    queue.fail("a", "second")
    events = feed.drain()
    assert [(event.kind.value, event.job_id) for event in events] == [
        ("job_added", "a"), ("job_started", "a"), ("process_job", "a"),
        ("job_added", "b"),
        ("job_priority_updated", "b"),
        ("job_retry", "a"), ("job_started", "b"), ("process_job", "b"),
        ("job_completed", "b"), ("job_started", "a"), ("process_job", "a"),
        ("job_failed", "a"),
    ]


def test_filtered_subscriptions_are_independent():
    queue = RenderQueue(QueueConfig(max_concurrent_renders=1))
    dispatches = queue.events.subscribe([EventKind.PROCESS_JOB])
    cancellations = queue.events.subscribe([EventKind.JOB_CANCELLED])
    queue.admit("a")
    queue.admit("b")
    queue.cancel("b")
    assert [event.job_id for event in dispatches.drain()] == ["a"]
    assert [event.job_id for event in cancellations.drain()] == ["b"]


def test_bounded_subscription_drops_oldest():
    bus = EventBus()
    feed = bus.subscribe(maxsize=2)
    for job_id in ("a", "b", "c"):
        bus.publish(_event(job_id))
    assert feed.dropped == 1
    assert [event.job_id for event in feed.drain()] == ["b", "c"]


def test_closed_subscription_stops_receiving_and_iteration_ends():
    bus = EventBus()
    feed = bus.subscribe()

    async def _run():
        seen = []

        async def consume():
            async for event in feed:
                seen.append(event.job_id)

        task = asyncio.create_task(consume())
        bus.publish(_event("a"))
        await asyncio.sleep(0)
        feed.close()
        bus.publish(_event("b"))
        await asyncio.wait_for(task, timeout=1)
        return seen

    assert asyncio.run(_run()) == ["a"]
    assert bus.subscriber_count == 0


def test_event_snapshot_does_not_track_later_changes():
    queue = RenderQueue()
    feed = queue.events.subscribe([EventKind.JOB_ADDED])
    queue.admit("a")
    queue.complete("a", result="out.mp4")
    added = feed.get_nowait()
    assert added.job["status"] == "pending"
    assert added.to_dict()["kind"] == "job_added"


def test_closing_a_full_subscription_counts_the_lost_event():
    bus = EventBus()
    feed = bus.subscribe(maxsize=2)
    bus.publish(_event("a"))
    bus.publish(_event("b"))
    feed.close()
    assert feed.dropped == 1
    assert [event.job_id for event in feed.drain()] == ["b"]
