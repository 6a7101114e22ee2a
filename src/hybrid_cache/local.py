"""Process-local cache tier.

An in-memory associative cache with a lifetime per entry. It is mutated from
application code and from the invalidation listener at the same time, so
every access goes through a lock.
"""

from __future__ import annotations

import math
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Protocol

from cachetools import TLRUCache


class LocalTier(Protocol):
    """Contract for the process-local tier."""

    def get(self, key: str) -> Any | None: ...

    def set(self, key: str, value: Any, ttl: float) -> None: ...

    def remove(self, key: str) -> bool: ...

    def ttl(self, key: str) -> float | None: ...

    def clear(self) -> None: ...


@dataclass(slots=True)
class _Entry:
    value: Any
    expires_at: float


def _entry_expiry(_key: str, entry: _Entry, _now: float) -> float:
    return entry.expires_at


class MemoryCache:
    """TTL-expiring in-memory cache.

    Unbounded unless ``maxsize`` is given, in which case the least recently
    used entry is evicted first.

    Args:
        maxsize: Optional maximum number of entries
        timer: Monotonic clock, injectable for tests
    """

    def __init__(self, maxsize: int | None = None, timer: Callable[[], float] = time.monotonic):
        self._timer = timer
        self._lock = threading.RLock()
        self._cache: TLRUCache[str, _Entry] = TLRUCache(
            maxsize=maxsize if maxsize is not None else math.inf,
            ttu=_entry_expiry,
            timer=timer,
        )

    def get(self, key: str) -> Any | None:
        """Return the live value for key, or None."""
        with self._lock:
            entry = self._cache.get(key)
        return entry.value if entry is not None else None

    def set(self, key: str, value: Any, ttl: float) -> None:
        """Store value under key, replacing any previous entry."""
        with self._lock:
            if ttl <= 0:
                self._cache.pop(key, None)
                return
            self._cache[key] = _Entry(value, self._timer() + ttl)

    def remove(self, key: str) -> bool:
        """Remove key. Returns True if an entry was present."""
        with self._lock:
            return self._cache.pop(key, None) is not None

    def ttl(self, key: str) -> float | None:
        """Seconds until key expires, or None if absent."""
        with self._lock:
            entry = self._cache.get(key)
            if entry is None:
                return None
            return max(entry.expires_at - self._timer(), 0.0)

    def clear(self) -> None:
        with self._lock:
            self._cache.clear()

    def expire(self) -> None:
        """Drop expired entries eagerly."""
        with self._lock:
            self._cache.expire()

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._cache

    def __len__(self) -> int:
        with self._lock:
            self._cache.expire()
            return len(self._cache)
