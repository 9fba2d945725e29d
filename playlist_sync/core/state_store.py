"""
Sync State Store

Persists one PlaylistRecord per key. ``transaction`` gives an exclusive
read-modify-write over a single record and is the compare-and-swap the
lease manager is built on.

JsonStateStore holds an fcntl lock on a sibling ``.lock`` file for the whole
read-modify-write. That excludes other processes on the same host, and other
hosts only where the shared filesystem honours flock. Without that the lease
is at-most-one in practice, not guaranteed.
"""

import copy
import fcntl
import json
import logging
import os
import tempfile
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator

from playlist_sync.core.models import PlaylistRecord, StateStoreError

logger = logging.getLogger(__name__)


class StateStore:
    """Base class; subclasses provide ``_locked`` over their raw documents."""

    def get(self, key: str) -> PlaylistRecord:
        with self._locked() as data:
            return PlaylistRecord.from_dict(data.get(key) or {})

    def keys(self) -> list[str]:
        with self._locked() as data:
            return sorted(data)

    @contextmanager
    def transaction(self, key: str) -> Iterator[PlaylistRecord]:
        """Yield the record for ``key``; mutations are saved on clean exit."""
        with self._locked() as data:
            record = PlaylistRecord.from_dict(data.get(key) or {})
            original = record.to_dict()
            yield record
            updated = record.to_dict()
            if updated != original:
                data[key] = updated
                self._save(data)

    @contextmanager
    def _locked(self) -> Iterator[dict]:
        raise NotImplementedError

    def _save(self, data: dict) -> None:
        raise NotImplementedError


class MemoryStateStore(StateStore):
    """In-process store; exclusion only between threads of one process."""

    def __init__(self):
        self._data: dict[str, dict] = {}
        self._lock = threading.Lock()

    @contextmanager
    def _locked(self) -> Iterator[dict]:
        with self._lock:
            yield copy.deepcopy(self._data)

    def _save(self, data: dict) -> None:
        self._data = copy.deepcopy(data)


class JsonStateStore(StateStore):
    def __init__(self, state_file: Path = Path("/config/playlist_sync/state.json")):
        self._file = state_file
        self._lock_file = state_file.with_name(state_file.name + ".lock")

    @contextmanager
    def _locked(self) -> Iterator[dict]:
        self._file.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(str(self._lock_file), os.O_CREAT | os.O_RDWR)
        try:
            fcntl.flock(fd, fcntl.LOCK_EX)
            yield self._load()
        finally:
            fcntl.flock(fd, fcntl.LOCK_UN)
            os.close(fd)

    def _load(self) -> dict:
        if not self._file.exists():
            return {}
        try:
            return json.loads(self._file.read_text())
        except (OSError, ValueError) as e:
            raise StateStoreError(f"State load failed: {e}")

    def _save(self, data: dict) -> None:
        try:
            _atomic_write(self._file, data)
        except OSError as e:
            raise StateStoreError(f"State save failed: {e}")


def _atomic_write(path: Path, data: dict) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, temp_path = tempfile.mkstemp(dir=path.parent, prefix=".state_", suffix=".tmp")
    try:
        with os.fdopen(fd, 'w', encoding='utf-8') as f:
            json.dump(data, f, indent=2)
        os.replace(temp_path, path)
    except Exception:
        if os.path.exists(temp_path):
            os.unlink(temp_path)
        raise
