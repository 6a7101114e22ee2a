"""Redis client for the shared tier.

Wraps redis.asyncio with the operations the hybrid cache needs and maps
redis-py exceptions onto RemoteUnavailable / RemoteTimeout. Nothing here
retries; retry and error policy belong to the caller.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Coroutine, Iterator
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any, Callable, cast

import redis.asyncio as redis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError
from redis.exceptions import TimeoutError as RedisTimeoutError

from hybrid_cache.errors import RemoteError, RemoteTimeout, RemoteUnavailable
from hybrid_cache.observability.metrics import record_remote_error, record_remote_operation

if TYPE_CHECKING:
    from redis.asyncio import Redis
    from redis.asyncio.client import PubSub

logger = logging.getLogger(__name__)

# Handler for raw pub/sub payloads
MessageHandler = Callable[[bytes], Awaitable[None]]

# Called with the translated error of a failed background write
BackgroundErrorHandler = Callable[[RemoteError], None]


@contextmanager
def remote_errors(operation: str, key: str | None = None) -> Iterator[None]:
    """Translate redis-py exceptions raised inside the block."""
    start = time.perf_counter()
    try:
        yield
    except (RedisTimeoutError, TimeoutError) as e:
        record_remote_error(operation)
        raise RemoteTimeout(f"Redis {operation} timed out: {e}", operation, key) from e
    except (RedisConnectionError, OSError) as e:
        record_remote_error(operation)
        raise RemoteUnavailable(f"Redis {operation} failed: {e}", operation, key) from e
    except RedisError as e:
        record_remote_error(operation)
        raise RemoteError(f"Redis {operation} error: {e}", operation, key) from e
    else:
        record_remote_operation(operation, time.perf_counter() - start)


def create_redis(
    url: str,
    socket_timeout: float | None = None,
    socket_connect_timeout: float | None = None,
) -> Redis:
    """Create a pooled Redis client storing raw bytes."""
    return redis.from_url(  # type: ignore[no-untyped-call]
        url,
        decode_responses=False,
        socket_timeout=socket_timeout,
        socket_connect_timeout=socket_connect_timeout,
    )


class Subscription:
    """A standing Pub/Sub subscription delivering payloads to one handler.

    Messages are read on a dedicated task and dispatched one at a time, so a
    slow handler delays later messages. Handler failures are logged and never
    stop the listener.
    """

    def __init__(
        self,
        pubsub: PubSub,
        channel: str,
        handler: MessageHandler,
        poll_interval: float = 1.0,
        retry_delay: float = 1.0,
    ):
        self.channel = channel
        self.poll_interval = poll_interval
        self.retry_delay = retry_delay
        self._pubsub: PubSub | None = pubsub
        self._handler = handler
        self._running = False
        self._task: asyncio.Task[None] | None = None

    @property
    def is_running(self) -> bool:
        return self._running

    def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._listen_loop(), name=f"subscription:{self.channel}")

    async def cancel(self) -> None:
        """Stop delivery and release the Pub/Sub connection.

        No handler call starts after this returns.
        """
        self._running = False

        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        if self._pubsub:
            pubsub, self._pubsub = self._pubsub, None
            try:
                await pubsub.unsubscribe(self.channel)
            except (RedisError, OSError) as e:
                logger.debug(f"Unsubscribe from {self.channel} failed: {e}")
            await pubsub.aclose()

        logger.info(f"Stopped subscription on channel {self.channel}")

    async def _listen_loop(self) -> None:
        """Main loop for receiving messages."""
        while self._running and self._pubsub:
            try:
                message = await self._pubsub.get_message(
                    ignore_subscribe_messages=True,
                    timeout=self.poll_interval,
                )

                if message is None:
                    continue

                if message["type"] == "message":
                    await self._dispatch(message["data"])

            except asyncio.CancelledError:
                break
            except (RedisError, OSError) as e:
                logger.error(f"Error in subscription listener on {self.channel}: {e}")
                await asyncio.sleep(self.retry_delay)

    async def _dispatch(self, data: bytes) -> None:
        try:
            await self._handler(data)
        except Exception:
            logger.exception(f"Subscription handler failed on {self.channel}")


class RemoteStore:
    """Redis operations for the shared tier.

    Keys are fully-qualified already; this class knows nothing about
    namespaces.
    """

    def __init__(self, client: Redis, poll_interval: float = 1.0):
        self.client = client
        self.poll_interval = poll_interval
        self._pending: set[asyncio.Task[None]] = set()

    @classmethod
    def from_url(
        cls,
        url: str,
        socket_timeout: float | None = None,
        socket_connect_timeout: float | None = None,
        poll_interval: float = 1.0,
    ) -> RemoteStore:
        return cls(create_redis(url, socket_timeout, socket_connect_timeout), poll_interval)

    @property
    def pending_writes(self) -> int:
        """Fire-and-forget writes not yet acknowledged."""
        return len(self._pending)

    async def get(self, key: str) -> bytes | None:
        with remote_errors("get", key):
            return cast(bytes | None, await self.client.get(key))

    async def put(
        self,
        key: str,
        payload: bytes,
        ttl: float,
        fire_and_forget: bool = False,
        on_error: BackgroundErrorHandler | None = None,
    ) -> None:
        """SET key with a TTL in seconds.

        With ``fire_and_forget`` the command is sent from a background task
        and this returns immediately; a failure is passed to ``on_error``
        instead of being raised.
        """
        if not fire_and_forget:
            await self._put(key, payload, ttl)
            return

        self.spawn(self._put(key, payload, ttl), name=f"put:{key}", on_error=on_error)

    def spawn(
        self,
        coro: Coroutine[Any, Any, None],
        name: str,
        on_error: BackgroundErrorHandler | None = None,
    ) -> asyncio.Task[None]:
        """Run remote work in the background until close() has waited for it.

        Commands inside one spawned coroutine keep their order; callers use
        this to send a SET and the PUBLISH that follows it without waiting.
        """
        task = asyncio.create_task(coro, name=name)
        self._pending.add(task)
        task.add_done_callback(lambda t: self._on_background_done(t, name, on_error))
        return task

    async def _put(self, key: str, payload: bytes, ttl: float) -> None:
        with remote_errors("set", key):
            await self.client.set(key, payload, px=max(int(ttl * 1000), 1))

    def _on_background_done(
        self,
        task: asyncio.Task[None],
        name: str,
        on_error: BackgroundErrorHandler | None,
    ) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is None:
            return
        if isinstance(error, RemoteError) and on_error is not None:
            on_error(error)
        else:
            logger.warning(f"Background {name} failed: {error}")

    async def delete(self, *keys: str) -> int:
        """DEL keys. Returns how many existed."""
        if not keys:
            return 0
        with remote_errors("delete", keys[0] if len(keys) == 1 else None):
            return cast(int, await self.client.delete(*keys))

    async def exists(self, key: str) -> bool:
        with remote_errors("exists", key):
            return bool(await self.client.exists(key))

    async def ttl_remaining(self, key: str) -> float | None:
        """Remaining lifetime of key in seconds.

        None when the key is missing or has no expiry.
        """
        with remote_errors("ttl", key):
            millis = cast(int, await self.client.pttl(key))
        if millis < 0:
            return None
        return millis / 1000.0

    async def publish(self, channel: str, payload: bytes) -> int:
        """Publish to a channel. Returns the number of receiving subscribers."""
        with remote_errors("publish", channel):
            return cast(int, await self.client.publish(channel, payload))

    async def subscribe(self, channel: str, handler: MessageHandler) -> Subscription:
        """Subscribe ``handler`` to a channel until the subscription is cancelled."""
        pubsub = self.client.pubsub(ignore_subscribe_messages=True)
        try:
            with remote_errors("subscribe", channel):
                await pubsub.subscribe(channel)
        except RemoteError:
            await pubsub.aclose()
            raise

        subscription = Subscription(pubsub, channel, handler, poll_interval=self.poll_interval)
        subscription.start()
        logger.info(f"Subscribed to channel {channel}")
        return subscription

    async def ping(self) -> bool:
        """Check Redis connectivity."""
        try:
            with remote_errors("ping"):
                await cast(Awaitable[bool], self.client.ping())
            return True
        except RemoteError:
            return False

    async def flush_pending(self) -> None:
        """Wait for outstanding fire-and-forget writes."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def close(self) -> None:
        """Wait for pending writes, then close the connection pool."""
        await self.flush_pending()
        await self.client.aclose()
