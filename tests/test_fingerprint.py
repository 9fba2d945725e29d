"""Tests for change detection"""

from playlist_sync.core.fingerprint import compute_fingerprint, has_markers, should_sync
from playlist_sync.core.models import FeedItem, FeedResponse, PlaylistSyncState


def _response(*ids, etag=None, last_modified=None):
    return FeedResponse(items=[FeedItem(i) for i in ids], etag=etag, last_modified=last_modified)


class TestComputeFingerprint:

    def test_ignores_order_and_duplicates(self):
        assert compute_fingerprint(["b", "a", "a"]) == compute_fingerprint(["a", "b"])

    def test_membership_changes_digest(self):
        assert compute_fingerprint(["a", "b"]) != compute_fingerprint(["a", "b", "c"])

    def test_empty_set_is_stable(self):
        assert compute_fingerprint([]) == compute_fingerprint(())
        assert len(compute_fingerprint([])) == 64


class TestShouldSync:

    def test_not_modified_never_syncs(self):
        assert not should_sync(None, FeedResponse(not_modified=True))

    def test_no_prior_state_always_syncs(self):
        assert should_sync(None, _response("a"))
        assert should_sync(PlaylistSyncState(), _response("a", etag="E1"))

    def test_same_etag_skips(self):
        state = PlaylistSyncState(etag="E1", fingerprint=compute_fingerprint(["a"]))
        assert not should_sync(state, _response("a", "b", etag="E1"))

    def test_new_etag_syncs(self):
        state = PlaylistSyncState(etag="E1")
        assert should_sync(state, _response("a", etag="E2"))

    def test_new_last_modified_syncs(self):
        state = PlaylistSyncState(last_modified="Wed, 01 May 2024 10:00:00 GMT")
        response = _response("a", last_modified="Wed, 01 May 2024 11:00:00 GMT")
        assert should_sync(state, response)

    def test_markers_take_priority_over_fingerprint(self):
        state = PlaylistSyncState(etag="E1", fingerprint=compute_fingerprint(["a"]))
        assert not should_sync(state, _response("x", "y", etag="E1"))

    def test_fingerprint_fallback_without_markers(self):
        state = PlaylistSyncState(fingerprint=compute_fingerprint(["a", "b"]))
        assert not should_sync(state, _response("b", "a"))
        assert should_sync(state, _response("a", "b", "c"))


def test_has_markers():
    assert has_markers(FeedResponse(etag="E1"))
    assert has_markers(FeedResponse(last_modified="yesterday"))
    assert not has_markers(FeedResponse())
