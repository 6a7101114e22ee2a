"""Cache key schema for hybrid-cache.

Key format: {namespace}:{logical_key}

Where:
- namespace: the deployment namespace shared by every instance of one cache
  deployment, so several deployments can share a single Redis
- logical_key: the key the application passed in

The invalidation channel of a deployment is {namespace}:invalidate.
"""

from __future__ import annotations

INVALIDATION_SUFFIX = "invalidate"


class CacheKeys:
    """Cache key generator for one deployment namespace."""

    SEPARATOR = ":"

    def __init__(self, namespace: str):
        if not namespace:
            raise ValueError("namespace must be a non-empty string")
        self.namespace = namespace

    def key(self, logical_key: str) -> str:
        """Fully-qualified key for a logical key."""
        return f"{self.namespace}{self.SEPARATOR}{logical_key}"

    def keys(self, logical_keys: list[str]) -> list[str]:
        """Fully-qualified keys, order preserved."""
        return [self.key(k) for k in logical_keys]

    @property
    def channel(self) -> str:
        """Pub/Sub channel carrying invalidations for this namespace."""
        return f"{self.namespace}{self.SEPARATOR}{INVALIDATION_SUFFIX}"

    def parse_key(self, key: str) -> str | None:
        """Strip the namespace from a fully-qualified key.

        Returns None if the key belongs to another namespace.
        """
        prefix = f"{self.namespace}{self.SEPARATOR}"
        if not key.startswith(prefix):
            return None
        return key[len(prefix) :]
