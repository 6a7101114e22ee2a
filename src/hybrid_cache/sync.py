"""Blocking access to a HybridCache.

The async cache runs on a private event loop owned by a daemon thread.
submit() hands back a concurrent.futures.Future for callers that do not want
to wait; the named methods block on that future.

Usage:
    with SyncHybridCache(HybridCache.from_settings()) as cache:
        cache.set("greeting", "hello")
        cache.get("greeting")
"""

from __future__ import annotations

import asyncio
import logging
import threading
from collections.abc import Coroutine, Sequence
from concurrent.futures import Future
from typing import Any, TypeVar

from hybrid_cache.facade import TTL, HybridCache

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SyncHybridCache:
    """Thread-safe blocking wrapper around HybridCache.

    Starting the wrapper starts the cache's invalidation listener on the
    private loop.
    """

    def __init__(self, cache: HybridCache, timeout: float | None = None):
        self.cache = cache
        self.timeout = timeout
        self._loop = asyncio.new_event_loop()
        self._thread = threading.Thread(
            target=self._run_loop,
            name=f"hybrid-cache-{cache.instance_id[:8]}",
            daemon=True,
        )
        self._thread.start()
        self._closed = False
        try:
            self._call(cache.start())
        except BaseException:
            self._stop_loop()
            raise

    def _run_loop(self) -> None:
        asyncio.set_event_loop(self._loop)
        self._loop.run_forever()

    def submit(self, coro: Coroutine[Any, Any, T]) -> Future[T]:
        """Schedule a coroutine on the cache loop without waiting for it."""
        return asyncio.run_coroutine_threadsafe(coro, self._loop)

    def _call(self, coro: Coroutine[Any, Any, T]) -> T:
        return self.submit(coro).result(self.timeout)

    def set(
        self,
        key: str,
        value: Any,
        ttl: TTL | None = None,
        fire_and_forget: bool | None = None,
    ) -> None:
        self._call(self.cache.set(key, value, ttl, fire_and_forget))

    def get(self, key: str, type_: Any = None) -> Any | None:
        return self._call(self.cache.get(key, type_))

    def remove(self, key: str) -> None:
        self._call(self.cache.remove(key))

    def remove_many(self, keys: Sequence[str]) -> None:
        self._call(self.cache.remove_many(keys))

    def exists(self, key: str) -> bool:
        return self._call(self.cache.exists(key))

    def ping(self) -> bool:
        return self._call(self.cache.ping())

    def close(self) -> None:
        """Close the cache and stop the loop thread."""
        if self._closed:
            return
        self._closed = True

        try:
            self._call(self.cache.close())
        finally:
            self._stop_loop()

    def _stop_loop(self) -> None:
        self._loop.call_soon_threadsafe(self._loop.stop)
        self._thread.join()
        self._loop.close()
        logger.debug("Stopped hybrid cache loop thread")

    def __enter__(self) -> SyncHybridCache:
        return self

    def __exit__(self, *args: Any) -> None:
        self.close()
