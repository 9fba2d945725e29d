"""Time-bounded, owner-tagged sync leases over the state store."""

import logging
import os
import socket
import uuid
from datetime import datetime, timedelta
from typing import Callable

from playlist_sync.core.models import utcnow
from playlist_sync.core.state_store import StateStore

logger = logging.getLogger(__name__)


def new_owner_id() -> str:
    """Identify this run: host, pid and a random suffix."""
    return f"{socket.gethostname()}:{os.getpid()}:{uuid.uuid4().hex[:12]}"


class LeaseManager:
    """Grants at most one live lease per playlist.

    A denied acquire is a signal to skip this cycle; there is no waiting.
    Expired leases are treated as absent so a crashed owner cannot wedge a
    playlist past its TTL.
    """

    def __init__(self, store: StateStore, clock: Callable[[], datetime] = utcnow):
        self._store = store
        self._clock = clock

    def try_acquire(self, playlist_id: str, owner_id: str, ttl: timedelta) -> bool:
        with self._store.transaction(playlist_id) as record:
            state = record.playlist
            now = self._clock()

            if state.lease_held(now):
                logger.debug(f"Lease on {playlist_id} held by {state.sync_lease_owner} "
                             f"until {state.sync_lease_until.isoformat()}")
                return False

            if state.sync_lease_owner:
                logger.warning(f"Taking over expired lease on {playlist_id} "
                               f"from {state.sync_lease_owner}")

            state.sync_in_progress = True
            state.sync_lease_owner = owner_id
            state.sync_lease_until = now + ttl
            return True

    def release(self, playlist_id: str, owner_id: str) -> bool:
        """Clear the lease, but only for the owner that holds it."""
        with self._store.transaction(playlist_id) as record:
            state = record.playlist
            if state.sync_lease_owner != owner_id:
                logger.warning(f"Release of {playlist_id} by {owner_id} ignored; "
                               f"current owner is {state.sync_lease_owner}")
                return False

            state.sync_in_progress = False
            state.sync_lease_owner = None
            state.sync_lease_until = None
            return True
