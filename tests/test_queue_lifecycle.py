import random
from datetime import datetime, timedelta, timezone

import pytest

from renderqueue.orchestrator.config import QueueConfig
from renderqueue.orchestrator.errors import (
    DuplicateJobError,
    InvalidStateError,
    JobNotFoundError,
    QueueFullError,
)
from renderqueue.orchestrator.events import EventKind
from renderqueue.orchestrator.queue import ConcurrencyLimitError, RenderQueue


class FakeClock:
    def __init__(self) -> None:
        self.now = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


def _dispatched(subscription):
    return [event.job_id for event in subscription.drain() if event.kind is EventKind.PROCESS_JOB]


def test_admit_dispatches_into_free_slot():
    queue = RenderQueue()
    snapshot = queue.admit("job-1", {"template": {"src": "a.aep"}}, metadata={"project_id": "p"})
    assert snapshot["status"] == "pending"
    assert snapshot["metadata"]["retry_count"] == 0
    assert snapshot["metadata"]["created_at"] is not None
    assert queue.get("job-1")["status"] == "processing"
    assert queue.get("job-1")["metadata"]["started_at"] is not None
    assert queue.active_workers == 1


def test_higher_priority_dispatches_before_earlier_arrival():
    queue = RenderQueue(QueueConfig(max_concurrent_renders=1))
    feed = queue.events.subscribe([EventKind.PROCESS_JOB])
    queue.admit("blocker")
    queue.admit("A", priority=0)
    queue.admit("B", priority=5)
    assert queue.position("B") == 1
    assert queue.position("A") == 2
    queue.complete("blocker")
    queue.complete("B")
    assert _dispatched(feed) == ["blocker", "B", "A"]


def test_equal_priority_dispatches_in_admission_order():
    clock = FakeClock()
    queue = RenderQueue(QueueConfig(max_concurrent_renders=1), clock=clock)
    feed = queue.events.subscribe([EventKind.PROCESS_JOB])
    for job_id in ("j1", "j2", "j3"):
        queue.admit(job_id)
    queue.complete("j1")
    queue.complete("j2")
    assert _dispatched(feed) == ["j1", "j2", "j3"]


def test_queue_full_counts_every_partition():
    queue = RenderQueue(QueueConfig(max_queue_size=2))
    queue.admit("a")
    queue.admit("b")
    with pytest.raises(QueueFullError):
        queue.admit("c")
    queue.complete("a")
    with pytest.raises(QueueFullError):
        queue.admit("c")
    assert queue.status().total == 2


def test_duplicate_id_is_rejected():
    queue = RenderQueue()
    queue.admit("a", {"v": 1})
    with pytest.raises(DuplicateJobError):
        queue.admit("a", {"v": 2})
    assert queue.get("a")["payload"] == {"v": 1}


def test_processing_never_exceeds_limit():
    queue = RenderQueue(QueueConfig(max_concurrent_renders=2))
    for index in range(5):
        queue.admit(f"job-{index}")
        assert queue.status().processing <= 2
    status = queue.status()
    assert status.processing == 2
    assert status.pending == 3
    assert status.queue_length == 3
    with pytest.raises(ConcurrencyLimitError):
        queue.dispatch("job-4")


def test_manual_dispatch_and_state_errors():
    queue = RenderQueue(QueueConfig(max_concurrent_renders=2))
    queue.admit("a")
    with pytest.raises(JobNotFoundError):
        queue.dispatch("missing")
    with pytest.raises(InvalidStateError):
        queue.dispatch("a")
    with pytest.raises(JobNotFoundError):
        queue.complete("missing")
    queue.complete("a", result="/renders/a.mp4")
    with pytest.raises(InvalidStateError):
        queue.complete("a")
    with pytest.raises(InvalidStateError):
        queue.fail("a", "late failure")
    assert queue.get("a")["metadata"]["result"] == "/renders/a.mp4"
    assert queue.get("a")["metadata"]["completed_at"] is not None


def test_cancel_only_from_pending():
    queue = RenderQueue(QueueConfig(max_concurrent_renders=1, max_queue_size=3))
    queue.admit("running")
    queue.admit("waiting")
    queue.admit("other")
    with pytest.raises(InvalidStateError):
        queue.cancel("running")

    cancelled = queue.cancel("waiting")
    assert cancelled["status"] == "cancelled"
    assert cancelled["metadata"]["cancelled_at"] is not None
    assert queue.position("waiting") is None
    assert queue.get("waiting") is None
    assert "waiting" not in queue.pending_ids()
    assert [job["id"] for job in queue.cancelled_jobs()] == ["waiting"]
    with pytest.raises(JobNotFoundError):
        queue.cancel("waiting")

    queue.admit("replacement")
    queue.complete("running")
    with pytest.raises(InvalidStateError):
        queue.cancel("running")


def test_cancel_rejected_for_failed_job():
    queue = RenderQueue(QueueConfig(retry_failed_jobs=False))
    queue.admit("a")
    queue.fail("a", RuntimeError("broken"))
    with pytest.raises(InvalidStateError):
        queue.cancel("a")


def test_update_priority_reorders_pending():
    queue = RenderQueue(QueueConfig(max_concurrent_renders=1))
    feed = queue.events.subscribe([EventKind.JOB_PRIORITY_UPDATED])
    queue.admit("running")
    queue.admit("a")
    queue.admit("b")
    updated = queue.update_priority("b", 10)
    assert updated["priority"] == 10
    assert queue.pending_ids() == ["b", "a"]
    events = feed.drain()
    assert events[0].context == {"previous_priority": 0, "position": 1}
    with pytest.raises(InvalidStateError):
        queue.update_priority("running", 3)


def test_lookup_and_project_jobs():
    queue = RenderQueue(QueueConfig(max_concurrent_renders=1))
    queue.admit("p1-3", metadata={"project_id": "p1", "row_index": 3})
    queue.admit("p1-1", metadata={"project_id": "p1", "row_index": 1})
    queue.admit("p2-1", metadata={"project_id": "p2", "row_index": 1})
    queue.admit("p1-2", metadata={"project_id": "p1", "row_index": 2, "client": "acme"})
    assert queue.get("unknown") is None
    rows = queue.project_jobs("p1")
    assert [job["id"] for job in rows] == ["p1-1", "p1-2", "p1-3"]
    assert rows[1]["metadata"]["client"] == "acme"
    assert rows[2]["status"] == "processing"
    assert queue.project_jobs("nobody") == []


def test_cleanup_purges_only_old_completed_jobs():
    clock = FakeClock()
    queue = RenderQueue(QueueConfig(max_concurrent_renders=3, retry_failed_jobs=False), clock=clock)
    queue.admit("done-early")
    queue.admit("failed")
    queue.admit("still-running")
    queue.complete("done-early")
    queue.fail("failed", "bad asset")
    clock.advance(hours=2)
    queue.admit("pending")
    queue.admit("done-late")
    queue.complete("done-late")

    assert queue.cleanup(timedelta(hours=1)) == 1
    assert queue.get("done-early") is None
    for job_id in ("failed", "still-running", "pending", "done-late"):
        assert queue.get(job_id) is not None
    assert queue.cleanup(3600) == 0


def test_payload_and_metadata_are_detached():
    queue = RenderQueue(QueueConfig(max_concurrent_renders=1))
    payload = {"assets": [{"value": "original"}]}
    row = {"Name": "Ada"}
    queue.admit("running")
    queue.admit("a", payload, metadata={"row_data": row})
    payload["assets"][0]["value"] = "mutated"
    row["Name"] = "Mallory"
    snapshot = queue.get("a")
    snapshot["payload"]["assets"][0]["value"] = "edited view"
    fresh = queue.get("a")
    assert fresh["payload"]["assets"][0]["value"] == "original"
    assert fresh["metadata"]["row_data"] == {"Name": "Ada"}


def test_pending_order_invariant_over_random_admissions():
    clock = FakeClock()
    rng = random.Random(7)
    queue = RenderQueue(QueueConfig(max_concurrent_renders=1, max_queue_size=60), clock=clock)
    queue.admit("blocker")
    for index in range(40):
        if rng.random() < 0.5:
            clock.advance(seconds=1)
        queue.admit(f"job-{index}", priority=rng.randint(0, 3))
        if index % 7 == 0:
            queue.update_priority(f"job-{index}", rng.randint(0, 3))

        ordered = [queue.get(job_id) for job_id in queue.pending_ids()]
        for before, after in zip(ordered, ordered[1:]):
            assert before["priority"] >= after["priority"]
            if before["priority"] == after["priority"]:
                assert before["metadata"]["created_at"] <= after["metadata"]["created_at"]
        assert [queue.position(job["id"]) for job in ordered] == list(range(1, len(ordered) + 1))


def test_status_snapshot():
    queue = RenderQueue(QueueConfig(max_concurrent_renders=1, retry_failed_jobs=False))
    queue.admit("a")
    queue.admit("b")
    queue.admit("c")
    queue.complete("a")
    queue.fail("b", "nope")
    status = queue.status().to_dict()
    assert status["completed"] == 1
    assert status["failed"] == 1
    assert status["processing"] == 1
    assert status["active_workers"] == 1
    assert status["pending"] == 0
    assert status["max_concurrent_renders"] == 1
    assert status["total"] == status["pending"] + status["processing"] + status["completed"] + status["failed"]


def test_caller_metadata_cannot_override_lifecycle_fields():
    queue = RenderQueue(QueueConfig(max_retries=2))
    queue.admit(
        "a",
        metadata={"client": "acme", "extra": {"retry_count": 7, "created_at": "bogus", "error": "fake", "note": "hi"}},
    )
    metadata = queue.get("a")["metadata"]
    assert metadata["retry_count"] == 0
    assert metadata["created_at"] != "bogus"
    assert metadata["error"] is None
    assert metadata["client"] == "acme"
    assert metadata["note"] == "hi"


def test_held_dispatch_keeps_jobs_pending_until_released():
    queue = RenderQueue(QueueConfig(max_concurrent_renders=1))
    queue.admit("a")
    queue.admit("b")
    queue.hold_dispatch()
    queue.complete("a")
    queue.admit("c")
    assert queue.process_next() == []
    assert queue.status().processing == 0
    queue.release_dispatch()
    assert [job["id"] for job in queue.process_next()] == ["b"]


def test_remove_project_spares_processing_jobs():
    queue = RenderQueue(QueueConfig(max_concurrent_renders=2, retry_failed_jobs=False))
    queue.admit("p1-1", metadata={"project_id": "p1", "row_index": 1})
    queue.admit("p1-2", metadata={"project_id": "p1", "row_index": 2})
    queue.admit("p1-3", metadata={"project_id": "p1", "row_index": 3})
    queue.admit("p2-1", metadata={"project_id": "p2", "row_index": 1})
    queue.complete("p1-1")
    queue.fail("p1-2", "bad asset")
    # p1-3 and p2-1 now hold the slots
    queue.admit("p1-4", metadata={"project_id": "p1", "row_index": 4})

    assert queue.remove_project("p1") == 3
    assert [job["id"] for job in queue.project_jobs("p1")] == ["p1-3"]
    assert queue.position("p1-4") is None
    assert queue.pending_ids() == []
    assert queue.get("p2-1")["status"] == "processing"
    assert queue.remove_project("nobody") == 0

    queue.complete("p1-3")
    assert queue.status().total == 2
