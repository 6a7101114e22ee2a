"""Tests for the blocking wrapper."""

from __future__ import annotations

import threading

import pytest

from hybrid_cache.errors import RemoteUnavailable
from hybrid_cache.facade import HybridCache
from hybrid_cache.policy import ErrorPolicy
from hybrid_cache.sync import SyncHybridCache


class TestSyncHybridCache:
    def test_round_trip(self, remote, server) -> None:
        cache = HybridCache(remote, namespace="app")

        with SyncHybridCache(cache, timeout=5) as sync_cache:
            sync_cache.set("x", {"a": 1})
            assert sync_cache.get("x") == {"a": 1}
            assert sync_cache.exists("x") is True

            sync_cache.remove("x")
            assert sync_cache.get("x") is None
            assert sync_cache.ping() is True

        assert cache.closed
        assert server.channels["app:invalidate"] == []

    def test_submit_returns_future(self, remote) -> None:
        cache = HybridCache(remote, namespace="app")

        with SyncHybridCache(cache, timeout=5) as sync_cache:
            sync_cache.submit(cache.set("x", 1, fire_and_forget=False)).result(5)
            future = sync_cache.submit(cache.get("x"))
            assert future.result(5) == 1

    def test_errors_propagate_to_caller(self, remote, server) -> None:
        cache = HybridCache(remote, namespace="app", error_policy=ErrorPolicy.propagate())

        with SyncHybridCache(cache, timeout=5) as sync_cache:
            server.available = False
            with pytest.raises(RemoteUnavailable):
                sync_cache.set("x", 1, fire_and_forget=False)
            server.available = True
            assert sync_cache.get("x") == 1

    def test_start_failure_stops_thread(self, remote, server) -> None:
        server.available = False
        cache = HybridCache(remote, namespace="app")

        with pytest.raises(RemoteUnavailable):
            SyncHybridCache(cache, timeout=5)

        assert not any(t.name.startswith("hybrid-cache-") for t in threading.enumerate())

    def test_concurrent_callers(self, remote) -> None:
        cache = HybridCache(remote, namespace="app")
        results: dict[int, object] = {}

        with SyncHybridCache(cache, timeout=5) as sync_cache:

            def worker(n: int) -> None:
                sync_cache.set(f"k{n}", n)
                results[n] = sync_cache.get(f"k{n}")

            threads = [threading.Thread(target=worker, args=(n,)) for n in range(8)]
            for thread in threads:
                thread.start()
            for thread in threads:
                thread.join()

        assert results == {n: n for n in range(8)}

    def test_close_is_idempotent(self, remote) -> None:
        sync_cache = SyncHybridCache(HybridCache(remote, namespace="app"), timeout=5)
        sync_cache.close()
        sync_cache.close()
