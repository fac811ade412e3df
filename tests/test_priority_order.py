from datetime import datetime, timedelta, timezone

from renderqueue.orchestrator.priority import PriorityOrder

T0 = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


def test_orders_by_priority_then_creation():
    order = PriorityOrder()
    order.insert("old-low", priority=0, created_at=T0, seq=0)
    order.insert("new-high", priority=5, created_at=T0 + timedelta(seconds=2), seq=1)
    order.insert("mid-low", priority=0, created_at=T0 + timedelta(seconds=1), seq=2)
    assert list(order) == ["new-high", "old-low", "mid-low"]
    assert order.peek() == "new-high"
    assert order.position("mid-low") == 3


def test_same_timestamp_keeps_arrival_order():
    order = PriorityOrder()
    for seq, job_id in enumerate(["a", "b", "c"]):
        order.insert(job_id, priority=1, created_at=T0, seq=seq)
    assert list(order) == ["a", "b", "c"]


def test_reprioritise_and_remove():
    order = PriorityOrder()
    order.insert("a", priority=0, created_at=T0, seq=0)
    order.insert("b", priority=0, created_at=T0, seq=1)
    order.reprioritise("b", 3)
    assert list(order) == ["b", "a"]
    assert order.remove("b") is True
    assert order.remove("b") is False
    assert order.position("b") is None
    assert "b" not in order
    assert len(order) == 1
