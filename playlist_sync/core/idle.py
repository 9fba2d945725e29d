"""
Idle / Staleness Tracker

Items that drop out of the feed are queued here rather than removed. The
grace window of a queued item runs from when it was first noticed missing.
A removal is only final once that window has passed and a dedicated
re-check says the item is gone.

``idle_order`` is a FIFO. Enqueueing an id that is already queued is a
no-op, so it keeps its original place in line.
"""

import logging
from datetime import datetime, timedelta

from playlist_sync.core.models import SyncState

logger = logging.getLogger(__name__)


class IdleTracker:
    def __init__(self, state: SyncState):
        self._state = state
        self._queued: set[str] = set()
        order = []
        for item_id in state.idle_order:
            if item_id not in self._queued:
                order.append(item_id)
                self._queued.add(item_id)
        state.idle_order[:] = order

    def __len__(self) -> int:
        return len(self._state.idle_order)

    def enqueue(self, item_id: str, noticed_at: datetime | None = None) -> bool:
        """
        Append to the back unless already queued. Returns True if appended.

        ``noticed_at`` starts the grace window of a newly queued item, so a
        quiet spell before the absence does not count towards it.
        """
        if item_id in self._queued:
            return False
        if noticed_at is not None:
            previous = self._state.last_idle_check.get(item_id)
            if previous is None or noticed_at > previous:
                self._state.last_idle_check[item_id] = noticed_at
        self._state.idle_order.append(item_id)
        self._queued.add(item_id)
        return True

    def dequeue_batch(self, n: int) -> list[str]:
        """Pop up to ``n`` of the oldest queued ids."""
        if n <= 0:
            return []
        batch = self._state.idle_order[:n]
        del self._state.idle_order[:n]
        self._queued.difference_update(batch)
        return batch

    def mark_checked(self, item_id: str, timestamp: datetime) -> None:
        """Record the item as present at ``timestamp`` and drop it from the queue."""
        previous = self._state.last_idle_check.get(item_id)
        if previous is None or timestamp > previous:
            self._state.last_idle_check[item_id] = timestamp
        if item_id in self._queued:
            self._state.idle_order.remove(item_id)
            self._queued.discard(item_id)

    def last_checked(self, item_id: str) -> datetime | None:
        return self._state.last_idle_check.get(item_id)

    def forget(self, item_id: str) -> None:
        """Drop all bookkeeping for a finalized removal."""
        self._state.last_idle_check.pop(item_id, None)
        if item_id in self._queued:
            self._state.idle_order.remove(item_id)
            self._queued.discard(item_id)

    def take_due(self, now: datetime, grace: timedelta, n: int) -> list[str]:
        """
        Dequeue up to ``n`` ids and return those past the grace window.

        Ids that are not yet due go back to the end of the queue. An id with
        no recorded sighting is treated as due.
        """
        due = []
        for item_id in self.dequeue_batch(n):
            checked = self.last_checked(item_id)
            if checked is None or now - checked >= grace:
                due.append(item_id)
            else:
                self.enqueue(item_id)
        return due
