"""Tests for the read-through cache"""

import pytest

from playlist_sync.core.cache import ReadThroughCache


class FakeMonotonic:
    def __init__(self):
        self.value = 1000.0

    def __call__(self):
        return self.value


@pytest.fixture
def ticks():
    return FakeMonotonic()


def test_entries_expire_after_ttl(ticks):
    cache = ReadThroughCache(max_entries=10, ttl_seconds=30, clock=ticks)
    cache.set("k", "v")

    ticks.value += 29
    assert cache.get("k") == "v"
    ticks.value += 1
    assert cache.get("k") is None
    assert len(cache) == 0


def test_reads_do_not_extend_lifetime(ticks):
    cache = ReadThroughCache(ttl_seconds=30, clock=ticks)
    cache.set("k", "v")

    for _ in range(5):
        ticks.value += 10
        cache.get("k")

    assert cache.get("k", "gone") == "gone"


def test_oldest_insertion_is_evicted(ticks):
    cache = ReadThroughCache(max_entries=2, clock=ticks)
    cache.set("a", 1)
    cache.set("b", 2)
    cache.get("a")
    cache.set("c", 3)

    assert cache.get("a") is None
    assert cache.get("b") == 2
    assert cache.get("c") == 3


def test_get_or_load_caches_none_values(ticks):
    cache = ReadThroughCache(clock=ticks)
    calls = []

    def loader():
        calls.append(1)
        return None

    assert cache.get_or_load("k", loader) is None
    assert cache.get_or_load("k", loader) is None
    assert len(calls) == 1


def test_clear_reports_count(ticks):
    cache = ReadThroughCache(clock=ticks)
    cache.set("a", 1)
    cache.set("b", 2)

    assert cache.clear() == 2
    assert len(cache) == 0


def test_rejects_non_positive_capacity():
    with pytest.raises(ValueError):
        ReadThroughCache(max_entries=0)
