"""Playlist item store backed by a JSON file"""

import json
import logging
import threading
from pathlib import Path

from playlist_sync.core.models import FeedItem, StateStoreError
from playlist_sync.core.state_store import _atomic_write

logger = logging.getLogger(__name__)


class ItemNotFoundError(KeyError):
    pass


class JsonItemStore:
    """
    Keeps the known items of every playlist in one JSON document.

    Each call is applied and saved on its own, so a failing item leaves the
    others untouched and can simply be retried.
    """

    def __init__(self, items_file: Path = Path("/config/playlist_sync/items.json")):
        self._file = items_file
        self._items: dict[str, dict[str, dict]] = {}
        self._lock = threading.Lock()
        self._load()

    def _load(self) -> None:
        if not self._file.exists():
            return
        try:
            self._items = json.loads(self._file.read_text())
            total = sum(len(v) for v in self._items.values())
            logger.debug(f"Loaded {total} stored items")
        except (OSError, ValueError) as e:
            raise StateStoreError(f"Item store load failed: {e}")

    def _save(self) -> None:
        _atomic_write(self._file, self._items)

    def list_items(self, playlist_id: str) -> dict[str, FeedItem]:
        with self._lock:
            stored = self._items.get(playlist_id, {})
            return {item_id: FeedItem.from_dict(data) for item_id, data in stored.items()}

    def add_item(self, playlist_id: str, item: FeedItem) -> None:
        with self._lock:
            self._items.setdefault(playlist_id, {})[item.item_id] = item.to_dict()
            self._save()

    def update_item(self, playlist_id: str, item: FeedItem) -> None:
        with self._lock:
            stored = self._items.get(playlist_id, {})
            if item.item_id not in stored:
                raise ItemNotFoundError(item.item_id)
            stored[item.item_id] = item.to_dict()
            self._save()

    def remove_item(self, playlist_id: str, item_id: str) -> None:
        with self._lock:
            stored = self._items.get(playlist_id, {})
            if stored.pop(item_id, None) is None:
                raise ItemNotFoundError(item_id)
            self._save()

    def count(self, playlist_id: str) -> int:
        with self._lock:
            return len(self._items.get(playlist_id, {}))
