"""Two-tier cache: process memory in front of Redis.

Reads are served from the local tier when possible and fall back to Redis,
back-filling the local tier with the entry's remaining Redis TTL. Writes and
removals go local tier, then Redis, then an invalidation announcement so
peers drop their local copies. Announcements are sent even when the Redis
write failed: a redundant invalidation is cheaper than a stale peer.

Fire-and-forget writes send the SET and the announcement from one background
task, SET first, so a peer reacting to the invalidation reads the new value.

Consistency between instances is eventual. Within one instance a set is
visible to the next get immediately.

Usage:
    async with HybridCache.from_settings() as cache:
        await cache.set("user:42", {"name": "Ada"}, ttl=300)
        user = await cache.get("user:42")
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable, Sequence
from datetime import timedelta
from typing import Any, TypeVar, get_origin, overload
from uuid import uuid4

from hybrid_cache.codec import Codec, JsonCodec
from hybrid_cache.config import DEFAULT_TTL, Settings
from hybrid_cache.config import settings as default_settings
from hybrid_cache.errors import CacheClosedError, RemoteError
from hybrid_cache.invalidation import InvalidationBus, InvalidationMessage
from hybrid_cache.keys import CacheKeys
from hybrid_cache.local import LocalTier, MemoryCache
from hybrid_cache.observability.metrics import record_cache_hit, record_cache_miss
from hybrid_cache.policy import ErrorPolicy
from hybrid_cache.remote import RemoteStore

logger = logging.getLogger(__name__)

T = TypeVar("T")

TTL = float | int | timedelta


def _seconds(ttl: TTL) -> float:
    seconds = ttl.total_seconds() if isinstance(ttl, timedelta) else float(ttl)
    if seconds <= 0:
        raise ValueError(f"ttl must be positive, got {ttl!r}")
    return seconds


class FillGuard:
    """Detects local mutations of a key while a Redis read for it is in flight.

    A read that missed locally takes a generation with begin() and may only
    back-fill if finish() confirms nothing set, removed or invalidated the
    key in between. Keys are tracked only while a read is pending.
    """

    def __init__(self) -> None:
        # key -> [generation, readers]
        self._slots: dict[str, list[int]] = {}

    def begin(self, key: str) -> int:
        slot = self._slots.setdefault(key, [0, 0])
        slot[1] += 1
        return slot[0]

    def finish(self, key: str, generation: int) -> bool:
        """End a read; True when the key is unchanged since begin()."""
        slot = self._slots[key]
        slot[1] -= 1
        if slot[1] == 0:
            del self._slots[key]
        return slot[0] == generation

    def touch(self, keys: Iterable[str]) -> None:
        for key in keys:
            slot = self._slots.get(key)
            if slot is not None:
                slot[0] += 1

    def touch_all(self) -> None:
        self.touch(list(self._slots))


class HybridCache:
    """Local + Redis cache kept coherent through Pub/Sub invalidation.

    Args:
        remote: Redis client wrapper for the shared tier
        namespace: Deployment namespace shared by all instances; defaults to
            the instance id, which isolates this instance from its peers
        default_ttl: Lifetime used when set() gets no ttl
        error_policy: What to do with remote failures (ignore by default)
        local: Local tier; an unbounded MemoryCache by default
        codec: Value codec for Redis payloads
        fire_and_forget: Default write mode for set()
        instance_id: Identity used to filter our own invalidation echoes
    """

    def __init__(
        self,
        remote: RemoteStore,
        *,
        namespace: str | None = None,
        default_ttl: TTL = DEFAULT_TTL,
        error_policy: ErrorPolicy | None = None,
        local: LocalTier | None = None,
        codec: Codec | None = None,
        fire_and_forget: bool = True,
        instance_id: str | None = None,
    ):
        self.instance_id = instance_id or uuid4().hex
        if not namespace:
            logger.warning(
                f"No cache namespace configured; using instance id {self.instance_id}. "
                "This instance will not share entries or invalidations with any other."
            )
            namespace = self.instance_id

        self.keys = CacheKeys(namespace)
        self.remote = remote
        self.local: LocalTier = local if local is not None else MemoryCache()
        self.codec: Codec = codec or JsonCodec()
        self.error_policy = error_policy or ErrorPolicy.ignore()
        self.default_ttl = _seconds(default_ttl)
        self.fire_and_forget = fire_and_forget
        self.bus = InvalidationBus(remote, self.local, self.keys, self.instance_id)
        self._fills = FillGuard()
        # key -> latest fire-and-forget write still in flight
        self._writes: dict[str, asyncio.Task[None]] = {}
        self._closed = False

        self.bus.add_handler(self._on_invalidated)

    @classmethod
    def from_settings(
        cls,
        settings: Settings | None = None,
        error_policy: ErrorPolicy | None = None,
    ) -> HybridCache:
        """Build a cache from configuration. Call start() before use."""
        settings = settings or default_settings
        remote = RemoteStore.from_url(
            settings.redis_url,
            socket_timeout=settings.socket_timeout,
            socket_connect_timeout=settings.socket_connect_timeout,
            poll_interval=settings.subscribe_poll_interval,
        )
        return cls(
            remote,
            namespace=settings.namespace,
            default_ttl=settings.default_ttl,
            error_policy=error_policy or ErrorPolicy.from_flag(settings.fail_on_remote_error),
            local=MemoryCache(maxsize=settings.local_max_entries),
            fire_and_forget=settings.fire_and_forget,
        )

    @property
    def namespace(self) -> str:
        return self.keys.namespace

    @property
    def closed(self) -> bool:
        return self._closed

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def start(self) -> None:
        """Install the invalidation subscription."""
        self._check_open()
        await self.bus.start()

    async def close(self) -> None:
        """Stop listening, flush pending writes, release both tiers.

        Fire-and-forget writes accepted before close() finish first; an
        awaited operation still in flight raises CacheClosedError at its next
        remote call instead of issuing it.
        """
        if self._closed:
            return
        self._closed = True

        await self.bus.stop()
        await self.remote.close()
        self.local.clear()
        logger.info(f"Closed hybrid cache {self.namespace} (instance {self.instance_id})")

    async def __aenter__(self) -> HybridCache:
        await self.start()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    def _check_open(self) -> None:
        if self._closed:
            raise CacheClosedError("cache is closed")

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------

    async def set(
        self,
        key: str,
        value: Any,
        ttl: TTL | None = None,
        fire_and_forget: bool | None = None,
    ) -> None:
        """Store value in both tiers and invalidate it on peers.

        The local write always happens. With fire-and-forget, remote and
        announce failures go to ErrorPolicy.report since nobody waits for
        them; otherwise they follow the error policy and, when it
        propagates, the local write stands.
        """
        self._check_open()
        if value is None:
            raise ValueError("cannot cache None; use remove()")

        cache_key = self.keys.key(key)
        seconds = _seconds(ttl) if ttl is not None else self.default_ttl
        payload = self.codec.encode(value)
        if fire_and_forget is None:
            fire_and_forget = self.fire_and_forget

        self.local.set(cache_key, value, seconds)
        self._fills.touch([cache_key])

        if fire_and_forget:
            previous = self._writes.get(cache_key)
            task = self.remote.spawn(
                self._write_behind(cache_key, payload, seconds, previous),
                name=f"set:{cache_key}",
            )
            self._writes[cache_key] = task
            task.add_done_callback(lambda t: self._write_done(cache_key, t))
            return

        await self._after_writes([cache_key])
        try:
            await self.remote.put(cache_key, payload, seconds)
        except RemoteError as e:
            self.error_policy.handle("set", cache_key, e)

        self._check_open()
        await self._announce("set", [cache_key])

    async def _write_behind(
        self,
        cache_key: str,
        payload: bytes,
        seconds: float,
        previous: asyncio.Task[None] | None,
    ) -> None:
        """SET then announce, off the caller's path. Never raises RemoteError."""
        if previous is not None:
            await asyncio.wait([previous])

        try:
            await self.remote.put(cache_key, payload, seconds)
        except RemoteError as e:
            self.error_policy.report("set", cache_key, e)

        try:
            await self.bus.announce([cache_key])
        except RemoteError as e:
            self.error_policy.report("set:announce", cache_key, e)

    def _write_done(self, cache_key: str, task: asyncio.Task[None]) -> None:
        if self._writes.get(cache_key) is task:
            del self._writes[cache_key]

    async def _after_writes(self, cache_keys: Sequence[str]) -> None:
        """Wait for background writes of these keys so Redis sees calls in order."""
        pending = [self._writes[k] for k in cache_keys if k in self._writes]
        if pending:
            await asyncio.wait(pending)
            self._check_open()

    @overload
    async def get(self, key: str) -> Any | None: ...

    @overload
    async def get(self, key: str, type_: type[T]) -> T | None: ...

    async def get(self, key: str, type_: Any = None) -> Any | None:
        """Read from the local tier, falling back to Redis.

        A Redis hit is cached locally for the entry's remaining Redis TTL,
        unless the key changed locally while Redis was being read. With
        ``type_`` the result is an instance of it whichever tier answered.
        Returns None on a miss in both tiers or on a swallowed remote error.
        """
        self._check_open()
        cache_key = self.keys.key(key)

        value = self.local.get(cache_key)
        if value is not None:
            record_cache_hit("local")
            return self._as_type(value, type_)

        generation = self._fills.begin(cache_key)
        try:
            fetched = await self._fetch(cache_key, type_)
        finally:
            unchanged = self._fills.finish(cache_key, generation)

        if fetched is None:
            return None
        value, remaining = fetched
        if unchanged and not self._closed:
            self.local.set(cache_key, value, remaining)
        return value

    async def _fetch(self, cache_key: str, type_: Any) -> tuple[Any, float] | None:
        """Remote value of a key and the TTL to back-fill it with."""
        try:
            payload = await self.remote.get(cache_key)
        except RemoteError as e:
            self.error_policy.handle("get", cache_key, e)
            return None

        if payload is None:
            record_cache_miss()
            return None

        value = self.codec.decode(payload, type_)
        record_cache_hit("remote")

        if self._closed:
            return value, self.default_ttl
        return value, await self._remaining_ttl(cache_key)

    def _as_type(self, value: Any, type_: Any) -> Any:
        # Local entries hold whatever was set or back-filled; re-encode when
        # that differs from the requested type
        if type_ is None:
            return value
        if get_origin(type_) is None and isinstance(type_, type) and isinstance(value, type_):
            return value
        return self.codec.decode(self.codec.encode(value), type_)

    async def _remaining_ttl(self, cache_key: str) -> float:
        """Remote TTL of a key for back-filling, default_ttl if unknown."""
        try:
            remaining = await self.remote.ttl_remaining(cache_key)
        except RemoteError as e:
            logger.debug(f"TTL query failed for {cache_key!r}, using default: {e}")
            return self.default_ttl

        if remaining is None or remaining <= 0:
            return self.default_ttl
        return remaining

    async def remove(self, key: str) -> None:
        """Remove key from both tiers and from every peer's local tier."""
        await self.remove_many([key])

    async def remove_many(self, keys: Sequence[str]) -> None:
        """Remove several keys with one DEL and one announcement."""
        self._check_open()
        if not keys:
            return

        cache_keys = self.keys.keys(list(keys))
        for cache_key in cache_keys:
            self.local.remove(cache_key)
        self._fills.touch(cache_keys)

        await self._after_writes(cache_keys)
        try:
            await self.remote.delete(*cache_keys)
        except RemoteError as e:
            self.error_policy.handle("delete", e.key, e)

        self._check_open()
        await self._announce("remove", cache_keys)

    async def exists(self, key: str) -> bool:
        """Whether key is cached in either tier."""
        self._check_open()
        cache_key = self.keys.key(key)

        if self.local.get(cache_key) is not None:
            return True

        try:
            return await self.remote.exists(cache_key)
        except RemoteError as e:
            self.error_policy.handle("exists", cache_key, e)
            return False

    def clear_local(self) -> None:
        """Drop every local entry of this instance. Redis and peers are untouched."""
        self.local.clear()
        self._fills.touch_all()

    async def ping(self) -> bool:
        """Check Redis connectivity."""
        self._check_open()
        return await self.remote.ping()

    async def _on_invalidated(self, message: InvalidationMessage) -> None:
        self._fills.touch(message.affected_keys)

    async def _announce(self, operation: str, cache_keys: list[str]) -> None:
        try:
            await self.bus.announce(cache_keys)
        except RemoteError as e:
            key = cache_keys[0] if len(cache_keys) == 1 else None
            self.error_policy.handle(f"{operation}:announce", key, e)
