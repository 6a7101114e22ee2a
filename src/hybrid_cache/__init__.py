"""Two-tier cache for hybrid-cache deployments.

Keeps values in process memory in front of a shared Redis:
- Reads hit the local tier first and back-fill it from Redis with the
  remaining Redis TTL
- Writes and removals update both tiers
- Redis Pub/Sub invalidation keeps every instance's local tier coherent
- Remote failures are ignored or propagated according to an ErrorPolicy
"""

from hybrid_cache.codec import Codec, JsonCodec
from hybrid_cache.config import Settings, settings
from hybrid_cache.errors import (
    CacheClosedError,
    HybridCacheError,
    RemoteError,
    RemoteTimeout,
    RemoteUnavailable,
    SerializationError,
)
from hybrid_cache.facade import HybridCache
from hybrid_cache.invalidation import InvalidationBus, InvalidationMessage
from hybrid_cache.keys import CacheKeys
from hybrid_cache.local import LocalTier, MemoryCache
from hybrid_cache.policy import ErrorMode, ErrorPolicy
from hybrid_cache.remote import RemoteStore, Subscription
from hybrid_cache.sync import SyncHybridCache

__version__ = "0.1.0"

__all__ = [
    # Facade
    "HybridCache",
    "SyncHybridCache",
    # Tiers
    "LocalTier",
    "MemoryCache",
    "RemoteStore",
    "Subscription",
    # Invalidation
    "InvalidationBus",
    "InvalidationMessage",
    # Supporting pieces
    "CacheKeys",
    "Codec",
    "JsonCodec",
    "ErrorMode",
    "ErrorPolicy",
    "Settings",
    "settings",
    # Errors
    "HybridCacheError",
    "RemoteError",
    "RemoteUnavailable",
    "RemoteTimeout",
    "SerializationError",
    "CacheClosedError",
]
