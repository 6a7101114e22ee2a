"""Cross-instance cache invalidation over Redis Pub/Sub.

Every instance of a deployment subscribes to {namespace}:invalidate. When an
instance writes or removes a key it announces the fully-qualified key on that
channel; every other instance drops its local copy and the next read goes to
Redis. Each message carries the publisher's instance id so the publisher can
recognise and ignore its own echo, which would otherwise evict the value it
just wrote.

Delivery is at-most-once. A lost message leaves a stale local entry until its
TTL runs out.

Example:
    bus = InvalidationBus(remote, local, keys, instance_id="a1b2")
    await bus.start()

    await bus.announce(["orders:42"])

    await bus.stop()
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Awaitable, Callable

import orjson

from hybrid_cache.observability.metrics import record_invalidation

if TYPE_CHECKING:
    from hybrid_cache.keys import CacheKeys
    from hybrid_cache.local import LocalTier
    from hybrid_cache.remote import RemoteStore, Subscription

logger = logging.getLogger(__name__)


class MalformedMessage(ValueError):
    """An invalidation payload that does not decode to a valid message."""


@dataclass(frozen=True)
class InvalidationMessage:
    """Cache invalidation message."""

    origin_instance_id: str
    affected_keys: tuple[str, ...]

    def to_bytes(self) -> bytes:
        """Serialize to JSON bytes."""
        return orjson.dumps(
            {
                "origin_instance_id": self.origin_instance_id,
                "affected_keys": list(self.affected_keys),
            }
        )

    @classmethod
    def from_bytes(cls, data: bytes) -> InvalidationMessage:
        """Deserialize from JSON bytes.

        Raises:
            MalformedMessage: payload is not a valid invalidation message
        """
        try:
            parsed = orjson.loads(data)
        except orjson.JSONDecodeError as e:
            raise MalformedMessage(f"not JSON: {e}") from e

        if not isinstance(parsed, dict):
            raise MalformedMessage("expected a JSON object")

        origin = parsed.get("origin_instance_id")
        keys = parsed.get("affected_keys")
        if not isinstance(origin, str) or not origin:
            raise MalformedMessage("origin_instance_id must be a non-empty string")
        if not isinstance(keys, list) or not all(isinstance(k, str) for k in keys):
            raise MalformedMessage("affected_keys must be a list of strings")

        return cls(origin_instance_id=origin, affected_keys=tuple(keys))


# Extra listeners notified of every applied invalidation
InvalidationHandler = Callable[[InvalidationMessage], Awaitable[None]]


@dataclass
class InvalidationStats:
    """Counters for one bus."""

    published: int = 0
    received: int = 0
    applied: int = 0
    echoes: int = 0
    malformed: int = 0


class InvalidationBus:
    """Publishes this instance's invalidations and applies everyone else's.

    The bus should be started once for the lifetime of the cache and stopped
    on shutdown.
    """

    def __init__(
        self,
        remote: RemoteStore,
        local: LocalTier,
        keys: CacheKeys,
        instance_id: str,
    ):
        self.remote = remote
        self.local = local
        self.keys = keys
        self.instance_id = instance_id
        self.stats = InvalidationStats()
        self._handlers: list[InvalidationHandler] = []
        self._subscription: Subscription | None = None

    @property
    def channel(self) -> str:
        return self.keys.channel

    @property
    def is_running(self) -> bool:
        return self._subscription is not None

    def add_handler(self, handler: InvalidationHandler) -> None:
        """Register a listener called after each peer invalidation is applied."""
        self._handlers.append(handler)
        handler_name = getattr(handler, "__name__", handler.__class__.__name__)
        logger.info(f"Registered invalidation handler: {handler_name}")

    async def start(self) -> None:
        """Start listening for invalidation messages."""
        if self._subscription is not None:
            return

        self._subscription = await self.remote.subscribe(self.channel, self._handle_message)
        logger.info(
            f"Started invalidation listener on channel {self.channel} "
            f"(instance {self.instance_id})"
        )

    async def stop(self) -> None:
        """Stop listening. No local removals happen after this returns."""
        if self._subscription is None:
            return

        subscription, self._subscription = self._subscription, None
        await subscription.cancel()
        logger.info(f"Stopped invalidation listener on channel {self.channel}")

    async def announce(self, keys: Sequence[str]) -> int:
        """Broadcast that ``keys`` changed.

        Returns the number of subscribers that received the message, this
        instance included. Remote failures propagate as RemoteError.
        """
        if not keys:
            return 0

        message = InvalidationMessage(self.instance_id, tuple(keys))
        count = await self.remote.publish(self.channel, message.to_bytes())
        self.stats.published += 1
        record_invalidation("out", "published")
        logger.debug(f"Announced invalidation of {len(keys)} key(s) to {count} subscribers")
        return count

    async def _handle_message(self, data: bytes) -> None:
        """Handle an incoming invalidation message."""
        self.stats.received += 1

        try:
            message = InvalidationMessage.from_bytes(data)
        except MalformedMessage as e:
            self.stats.malformed += 1
            record_invalidation("in", "malformed")
            logger.warning(f"Dropped malformed invalidation message on {self.channel}: {e}")
            return

        if message.origin_instance_id == self.instance_id:
            self.stats.echoes += 1
            record_invalidation("in", "echo")
            return

        for key in message.affected_keys:
            self.local.remove(key)

        self.stats.applied += 1
        record_invalidation("in", "applied")
        logger.debug(
            f"Applied invalidation from {message.origin_instance_id}: "
            f"{len(message.affected_keys)} key(s)"
        )

        for handler in self._handlers:
            try:
                await handler(message)
            except Exception as e:
                logger.error(f"Invalidation handler failed: {e}")
