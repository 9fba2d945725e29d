"""Tests for the sync lease manager"""

from datetime import timedelta

from playlist_sync.core.lease import LeaseManager, new_owner_id

TTL = timedelta(seconds=60)


def test_owner_ids_are_unique():
    assert new_owner_id() != new_owner_id()


class TestLeaseManager:

    def test_acquire_sets_all_fields(self, store, clock):
        leases = LeaseManager(store, clock)

        assert leases.try_acquire("PL1", "owner-a", TTL)

        state = store.get("PL1").playlist
        assert state.sync_in_progress
        assert state.sync_lease_owner == "owner-a"
        assert state.sync_lease_until == clock.now + TTL
        assert state.lease_held(clock.now)

    def test_second_acquire_is_denied_without_writing(self, store, clock):
        leases = LeaseManager(store, clock)
        leases.try_acquire("PL1", "owner-a", TTL)
        before = store.get("PL1").to_dict()

        assert not leases.try_acquire("PL1", "owner-b", TTL)
        assert store.get("PL1").to_dict() == before

    def test_expired_lease_can_be_taken(self, store, clock):
        leases = LeaseManager(store, clock)
        leases.try_acquire("PL1", "owner-a", TTL)
        clock.advance(seconds=60)

        assert leases.try_acquire("PL1", "owner-b", TTL)
        assert store.get("PL1").playlist.sync_lease_owner == "owner-b"
        assert not leases.release("PL1", "owner-a")

    def test_release_by_owner_clears_lease(self, store, clock):
        leases = LeaseManager(store, clock)
        leases.try_acquire("PL1", "owner-a", TTL)

        assert leases.release("PL1", "owner-a")

        state = store.get("PL1").playlist
        assert not state.sync_in_progress
        assert state.sync_lease_owner is None
        assert state.sync_lease_until is None
        assert leases.try_acquire("PL1", "owner-b", TTL)

    def test_release_by_stranger_is_ignored(self, store, clock):
        leases = LeaseManager(store, clock)
        leases.try_acquire("PL1", "owner-a", TTL)

        assert not leases.release("PL1", "owner-b")
        assert store.get("PL1").playlist.sync_lease_owner == "owner-a"

    def test_leases_are_per_playlist(self, store, clock):
        leases = LeaseManager(store, clock)
        assert leases.try_acquire("PL1", "owner-a", TTL)
        assert leases.try_acquire("PL2", "owner-b", TTL)
