"""Tests for the in-memory local tier."""

from __future__ import annotations

import threading

import pytest

from hybrid_cache.local import MemoryCache


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def cache(clock: FakeClock) -> MemoryCache:
    return MemoryCache(timer=clock)


class TestMemoryCache:
    def test_set_and_get(self, cache: MemoryCache) -> None:
        cache.set("k", {"a": 1}, 10)
        assert cache.get("k") == {"a": 1}

    def test_get_missing(self, cache: MemoryCache) -> None:
        assert cache.get("missing") is None

    def test_overwrite(self, cache: MemoryCache) -> None:
        cache.set("k", 1, 10)
        cache.set("k", 2, 10)
        assert cache.get("k") == 2

    def test_entry_expires(self, cache: MemoryCache, clock: FakeClock) -> None:
        cache.set("k", 1, 10)
        clock.now = 9.9
        assert cache.get("k") == 1
        clock.now = 10.0
        assert cache.get("k") is None
        assert "k" not in cache

    def test_ttl_is_per_entry(self, cache: MemoryCache, clock: FakeClock) -> None:
        cache.set("short", 1, 5)
        cache.set("long", 2, 50)
        clock.now = 10
        assert cache.get("short") is None
        assert cache.get("long") == 2

    def test_ttl_remaining(self, cache: MemoryCache, clock: FakeClock) -> None:
        cache.set("k", 1, 10)
        clock.now = 4
        assert cache.ttl("k") == pytest.approx(6)
        assert cache.ttl("missing") is None

    def test_remove(self, cache: MemoryCache) -> None:
        cache.set("k", 1, 10)
        assert cache.remove("k") is True
        assert cache.remove("k") is False
        assert cache.get("k") is None

    def test_non_positive_ttl_removes(self, cache: MemoryCache) -> None:
        cache.set("k", 1, 10)
        cache.set("k", 2, 0)
        assert cache.get("k") is None

    def test_len_skips_expired(self, cache: MemoryCache, clock: FakeClock) -> None:
        cache.set("a", 1, 5)
        cache.set("b", 2, 50)
        clock.now = 10
        assert len(cache) == 1

    def test_clear(self, cache: MemoryCache) -> None:
        cache.set("a", 1, 5)
        cache.clear()
        assert len(cache) == 0

    def test_unbounded_by_default(self, cache: MemoryCache) -> None:
        for i in range(5000):
            cache.set(f"k{i}", i, 60)
        assert len(cache) == 5000

    def test_maxsize_evicts_least_recently_used(self, clock: FakeClock) -> None:
        cache = MemoryCache(maxsize=2, timer=clock)
        cache.set("a", 1, 60)
        cache.set("b", 2, 60)
        cache.get("a")
        cache.set("c", 3, 60)
        assert cache.get("a") == 1
        assert cache.get("b") is None
        assert cache.get("c") == 3

    def test_concurrent_mutation(self) -> None:
        cache = MemoryCache()

        def writer(offset: int) -> None:
            for i in range(500):
                key = f"k{i % 50}"
                cache.set(key, offset + i, 60)
                cache.get(key)
                cache.remove(key)

        threads = [threading.Thread(target=writer, args=(n * 1000,)) for n in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(cache) <= 50
