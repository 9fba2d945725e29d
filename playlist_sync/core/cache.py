"""Bounded read-through cache with insertion-order eviction and fixed TTL"""

import logging
import threading
import time
from collections import OrderedDict
from typing import Any, Callable, Hashable, TypeVar

logger = logging.getLogger(__name__)

DEFAULT_MAX_ENTRIES = 500
DEFAULT_TTL_SECONDS = 30

T = TypeVar('T')


class ReadThroughCache:
    """
    Capacity- and age-bounded cache for read paths.

    Reads never extend an entry's lifetime, so the worst-case staleness is
    the TTL no matter how often a key is read. Beyond capacity the oldest
    insertion is evicted.
    """

    def __init__(self, max_entries: int = DEFAULT_MAX_ENTRIES,
                 ttl_seconds: float = DEFAULT_TTL_SECONDS,
                 clock: Callable[[], float] = time.monotonic):
        if max_entries <= 0:
            raise ValueError("max_entries must be positive")
        self._max = max_entries
        self._ttl = ttl_seconds
        self._clock = clock
        self._entries: OrderedDict[Hashable, tuple[float, Any]] = OrderedDict()
        self._lock = threading.Lock()

    def get(self, key: Hashable, default: Any = None) -> Any:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return default
            stored_at, value = entry
            if self._clock() - stored_at >= self._ttl:
                del self._entries[key]
                return default
            return value

    def set(self, key: Hashable, value: Any) -> None:
        with self._lock:
            self._entries.pop(key, None)
            self._entries[key] = (self._clock(), value)
            while len(self._entries) > self._max:
                evicted, _ = self._entries.popitem(last=False)
                logger.debug(f"Evicted cache entry: {evicted}")

    def get_or_load(self, key: Hashable, loader: Callable[[], T]) -> T:
        """Return the cached value or load, store and return a fresh one."""
        missing = object()
        value = self.get(key, missing)
        if value is not missing:
            return value
        value = loader()
        self.set(key, value)
        return value

    def clear(self) -> int:
        with self._lock:
            count = len(self._entries)
            self._entries.clear()
        logger.info(f"Cleared {count} cache entries")
        return count

    def __len__(self) -> int:
        return len(self._entries)
