"""Tests for the idle/staleness tracker"""

from datetime import timedelta

from playlist_sync.core.idle import IdleTracker
from playlist_sync.core.models import SyncState

GRACE = timedelta(minutes=15)


def test_enqueue_is_fifo_and_idempotent():
    tracker = IdleTracker(SyncState())

    assert tracker.enqueue("a")
    assert tracker.enqueue("b")
    assert not tracker.enqueue("a")

    assert tracker.dequeue_batch(10) == ["a", "b"]
    assert len(tracker) == 0


def test_constructor_drops_duplicate_queue_entries():
    state = SyncState(idle_order=["a", "b", "a"])
    tracker = IdleTracker(state)

    assert state.idle_order == ["a", "b"]
    assert len(tracker) == 2


def test_dequeue_batch_respects_size():
    tracker = IdleTracker(SyncState(idle_order=["a", "b", "c"]))

    assert tracker.dequeue_batch(2) == ["a", "b"]
    assert tracker.dequeue_batch(0) == []
    assert tracker.dequeue_batch(5) == ["c"]


def test_noticed_at_starts_the_grace_window(clock):
    state = SyncState(last_idle_check={"a": clock.now - timedelta(hours=1)})
    tracker = IdleTracker(state)

    tracker.enqueue("a", noticed_at=clock.now)
    tracker.enqueue("b", noticed_at=clock.now)

    assert tracker.last_checked("a") == clock.now
    assert tracker.last_checked("b") == clock.now
    assert tracker.take_due(clock.now + timedelta(minutes=5), GRACE, 10) == []


def test_requeue_keeps_the_first_noticed_time(clock):
    tracker = IdleTracker(SyncState())

    tracker.enqueue("a", noticed_at=clock.now)
    assert not tracker.enqueue("a", noticed_at=clock.now + timedelta(minutes=10))

    assert tracker.last_checked("a") == clock.now


def test_mark_checked_keeps_latest_and_dequeues(clock):
    tracker = IdleTracker(SyncState())
    tracker.enqueue("a")

    tracker.mark_checked("a", clock.now)
    tracker.mark_checked("a", clock.now - timedelta(minutes=1))

    assert tracker.last_checked("a") == clock.now
    assert len(tracker) == 0


def test_take_due_requeues_items_inside_grace(clock):
    state = SyncState(
        last_idle_check={"old": clock.now - timedelta(minutes=20), "new": clock.now},
        idle_order=["new", "old", "unseen"],
    )
    tracker = IdleTracker(state)

    due = tracker.take_due(clock.now, GRACE, 10)

    assert due == ["old", "unseen"]
    assert state.idle_order == ["new"]


def test_take_due_only_looks_at_one_batch(clock):
    state = SyncState(idle_order=["a", "b", "c"])
    tracker = IdleTracker(state)

    assert tracker.take_due(clock.now, GRACE, 2) == ["a", "b"]
    assert state.idle_order == ["c"]


def test_forget_drops_all_bookkeeping(clock):
    state = SyncState(last_idle_check={"a": clock.now}, idle_order=["a"])
    tracker = IdleTracker(state)

    tracker.forget("a")

    assert state.idle_order == []
    assert "a" not in state.last_idle_check
