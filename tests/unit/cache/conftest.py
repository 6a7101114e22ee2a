"""Fixtures for hybrid-cache unit tests.

FakeRedisServer stands in for one Redis shared by several cache instances:
key/value storage with TTLs on a manual clock, plus Pub/Sub delivery on
separate tasks so that invalidations arrive asynchronously like the real
thing. FakeRemoteStore is the per-instance client view of it.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Coroutine
from typing import Any

import pytest

from hybrid_cache.errors import RemoteError, RemoteUnavailable
from hybrid_cache.facade import HybridCache
from hybrid_cache.policy import ErrorPolicy

MessageHandler = Callable[[bytes], Awaitable[None]]


class FakeRedisServer:
    """In-memory Redis with Pub/Sub and an outage switch."""

    def __init__(self) -> None:
        self.now = 1000.0
        self.data: dict[str, tuple[bytes, float]] = {}
        self.channels: dict[str, list[MessageHandler]] = {}
        self.published: list[tuple[str, bytes]] = []
        self.commands: list[str] = []
        self.available = True
        self.failing_ops: set[str] = set()
        self.held_reads: asyncio.Event | None = None
        self._deliveries: set[asyncio.Task[None]] = set()

    def check(self, operation: str, key: str | None = None) -> None:
        if not self.available or operation in self.failing_ops:
            raise RemoteUnavailable(f"Redis {operation} failed: connection refused", operation, key)
        self.commands.append(operation)

    def advance(self, seconds: float) -> None:
        self.now += seconds

    def live(self, key: str) -> tuple[bytes, float] | None:
        item = self.data.get(key)
        if item is None:
            return None
        if item[1] <= self.now:
            del self.data[key]
            return None
        return item

    def inject(self, channel: str, payload: bytes) -> None:
        """Deliver a raw payload to subscribers, bypassing any client."""
        for handler in list(self.channels.get(channel, [])):
            self.track(asyncio.get_running_loop().create_task(handler(payload)))

    def track(self, task: asyncio.Task[None]) -> None:
        self._deliveries.add(task)
        task.add_done_callback(self._deliveries.discard)

    async def drain(self) -> None:
        """Wait until background writes and published messages are handled."""
        while self._deliveries:
            await asyncio.gather(*list(self._deliveries))


class FakeSubscription:
    def __init__(self, server: FakeRedisServer, channel: str, handler: MessageHandler):
        self.server = server
        self.channel = channel
        self.handler = handler
        self.cancelled = False

    async def cancel(self) -> None:
        self.cancelled = True
        handlers = self.server.channels.get(self.channel, [])
        if self.handler in handlers:
            handlers.remove(self.handler)


class FakeRemoteStore:
    """Duck-typed RemoteStore talking to a FakeRedisServer."""

    def __init__(self, server: FakeRedisServer):
        self.server = server
        self.closed = False
        self._pending: set[asyncio.Task[None]] = set()

    async def get(self, key: str) -> bytes | None:
        self.server.check("get", key)
        item = self.server.live(key)
        if self.server.held_reads is not None:
            await self.server.held_reads.wait()
        return item[0] if item else None

    async def put(
        self,
        key: str,
        payload: bytes,
        ttl: float,
        fire_and_forget: bool = False,
        on_error: Callable[[RemoteError], None] | None = None,
    ) -> None:
        if not fire_and_forget:
            await self._put(key, payload, ttl)
            return

        async def background() -> None:
            try:
                await self._put(key, payload, ttl)
            except RemoteError as e:
                if on_error is not None:
                    on_error(e)

        self.spawn(background(), name=f"put:{key}")

    def spawn(self, coro: Coroutine[Any, Any, None], name: str) -> asyncio.Task[None]:
        task = asyncio.get_running_loop().create_task(coro, name=name)
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        self.server.track(task)
        return task

    async def _put(self, key: str, payload: bytes, ttl: float) -> None:
        # One round trip before the write lands
        await asyncio.sleep(0)
        self.server.check("set", key)
        self.server.data[key] = (payload, self.server.now + ttl)

    async def delete(self, *keys: str) -> int:
        self.server.check("delete", keys[0] if len(keys) == 1 else None)
        return sum(1 for key in keys if self.server.data.pop(key, None) is not None)

    async def exists(self, key: str) -> bool:
        self.server.check("exists", key)
        return self.server.live(key) is not None

    async def ttl_remaining(self, key: str) -> float | None:
        self.server.check("ttl", key)
        item = self.server.live(key)
        return item[1] - self.server.now if item else None

    async def publish(self, channel: str, payload: bytes) -> int:
        self.server.check("publish", channel)
        self.server.published.append((channel, payload))
        self.server.inject(channel, payload)
        return len(self.server.channels.get(channel, []))

    async def subscribe(self, channel: str, handler: MessageHandler) -> FakeSubscription:
        self.server.check("subscribe", channel)
        self.server.channels.setdefault(channel, []).append(handler)
        return FakeSubscription(self.server, channel, handler)

    async def ping(self) -> bool:
        return self.server.available

    async def flush_pending(self) -> None:
        if self._pending:
            await asyncio.gather(*list(self._pending))

    async def close(self) -> None:
        await self.flush_pending()
        self.closed = True


@pytest.fixture
def server() -> FakeRedisServer:
    """A fresh shared fake Redis."""
    return FakeRedisServer()


@pytest.fixture
def remote(server: FakeRedisServer) -> FakeRemoteStore:
    """A client of the shared fake Redis."""
    return FakeRemoteStore(server)


@pytest.fixture
async def make_cache(server: FakeRedisServer):
    """Factory for started caches sharing ``server``; all closed on teardown."""
    caches: list[HybridCache] = []

    async def factory(
        namespace: str | None = "app",
        error_policy: ErrorPolicy | None = None,
        **kwargs,
    ) -> HybridCache:
        cache = HybridCache(
            FakeRemoteStore(server),  # type: ignore[arg-type]
            namespace=namespace,
            error_policy=error_policy,
            **kwargs,
        )
        await cache.start()
        caches.append(cache)
        return cache

    yield factory

    for cache in caches:
        await cache.close()
