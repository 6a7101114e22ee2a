"""Exceptions raised by hybrid-cache.

Remote failures are normalized into RemoteUnavailable / RemoteTimeout so the
error policy can treat every Redis client error the same way.
"""

from __future__ import annotations


class HybridCacheError(Exception):
    """Base exception for hybrid-cache."""


class RemoteError(HybridCacheError):
    """A call into the remote tier failed."""

    def __init__(self, message: str, operation: str = "", key: str | None = None):
        super().__init__(message)
        self.operation = operation
        self.key = key


class RemoteUnavailable(RemoteError):
    """Connection or transport failure talking to the remote tier."""


class RemoteTimeout(RemoteError):
    """The remote tier did not answer within the connection timeout."""


class SerializationError(HybridCacheError):
    """A value could not be encoded or a payload could not be decoded."""


class CacheClosedError(HybridCacheError):
    """The cache was used after close()."""
