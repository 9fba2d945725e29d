"""Test configuration and fixtures"""

import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from playlist_sync.core.models import FeedError, FeedItem, FeedResponse, PurgeResult
from playlist_sync.core.state_store import MemoryStateStore
from playlist_sync.core.sync_engine import SyncEngine, SyncSettings

T0 = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


class Clock:
    """Manually advanced UTC clock."""

    def __init__(self, start: datetime = T0):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class FakeFeed:
    """In-memory feed source. ``etag=None`` simulates an upstream without markers."""

    def __init__(self):
        self.items: dict[str, list[FeedItem]] = {}
        self.etag: str | None = None
        self.last_modified: str | None = None
        self.fetch_error: Exception | None = None
        self.recheck_error: Exception | None = None
        self.fetch_calls: list[tuple] = []
        self.recheck_calls: list[tuple] = []
        self.uploads: dict[str, str] = {}

    def set_items(self, playlist_id: str, *item_ids: str, etag: str | None = None) -> None:
        self.items[playlist_id] = [
            FeedItem(item_id=i, title=f"Video {i}", position=n) for n, i in enumerate(item_ids)
        ]
        self.etag = etag

    def fetch(self, playlist_id, etag=None, last_modified=None):
        self.fetch_calls.append((playlist_id, etag, last_modified))
        if self.fetch_error:
            raise self.fetch_error
        if etag and etag == self.etag:
            return FeedResponse(etag=etag, last_modified=last_modified, not_modified=True)
        return FeedResponse(items=list(self.items.get(playlist_id, [])),
                            etag=self.etag, last_modified=self.last_modified)

    def recheck(self, playlist_id, item_ids):
        self.recheck_calls.append((playlist_id, list(item_ids)))
        if self.recheck_error:
            raise self.recheck_error
        present = {item.item_id for item in self.items.get(playlist_id, [])}
        return present.intersection(item_ids)

    def count_items(self, playlist_id):
        if self.fetch_error:
            raise self.fetch_error
        return len(self.items.get(playlist_id, []))

    def get_uploads_playlist_id(self, channel_id):
        if self.fetch_error:
            raise self.fetch_error
        return self.uploads.get(channel_id)


class FakeItemStore:
    """Item store whose writes can be made to fail per item id."""

    def __init__(self):
        self.items: dict[str, dict[str, FeedItem]] = {}
        self.fail_ids: set[str] = set()

    def _check(self, item_id):
        if item_id in self.fail_ids:
            raise RuntimeError(f"write rejected for {item_id}")

    def list_items(self, playlist_id):
        return dict(self.items.get(playlist_id, {}))

    def add_item(self, playlist_id, item):
        self._check(item.item_id)
        self.items.setdefault(playlist_id, {})[item.item_id] = item

    def update_item(self, playlist_id, item):
        self._check(item.item_id)
        self.items[playlist_id][item.item_id] = item

    def remove_item(self, playlist_id, item_id):
        self._check(item_id)
        del self.items[playlist_id][item_id]

    def ids(self, playlist_id) -> set[str]:
        return set(self.items.get(playlist_id, {}))


@pytest.fixture
def temp_dir():
    """Create temporary directory for tests"""
    with tempfile.TemporaryDirectory() as temp_dir:
        yield Path(temp_dir)


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def store():
    return MemoryStateStore()


@pytest.fixture
def feed():
    return FakeFeed()


@pytest.fixture
def item_store():
    return FakeItemStore()


@pytest.fixture
def notifier():
    mock = MagicMock()
    mock.notify.return_value = []
    return mock


@pytest.fixture
def purger():
    mock = MagicMock()
    mock.purge.side_effect = lambda tags: PurgeResult(requested=len(list(tags)), purged=0)
    return mock


@pytest.fixture
def settings():
    return SyncSettings(
        lease_ttl=timedelta(seconds=60),
        removal_grace=timedelta(minutes=15),
        idle_batch_size=50,
    )


@pytest.fixture
def engine(store, feed, item_store, notifier, purger, settings, clock):
    return SyncEngine(store, feed, item_store, notifier=notifier, purger=purger,
                      settings=settings, clock=clock)


@pytest.fixture
def feed_error():
    return FeedError("upstream returned HTTP 503")
