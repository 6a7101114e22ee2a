"""Remote error handling policy.

Every remote-tier and invalidation failure passes through one ErrorPolicy,
chosen when the cache is constructed:

- ignore: log and degrade to local-only behaviour (default)
- propagate: re-raise to the caller after the local tier was updated
- custom: a callback decides; raising from it propagates, returning swallows
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable

from hybrid_cache.errors import RemoteError

logger = logging.getLogger(__name__)

# Callback signature: (operation, key, error)
ErrorCallback = Callable[[str, str | None, RemoteError], None]


class ErrorMode(str, Enum):
    """What happens to a remote failure after the callback ran."""

    IGNORE = "ignore"
    PROPAGATE = "propagate"


@dataclass(frozen=True)
class ErrorPolicy:
    """Decides the fate of remote-tier failures."""

    mode: ErrorMode = ErrorMode.IGNORE
    callback: ErrorCallback | None = None

    @classmethod
    def ignore(cls) -> ErrorPolicy:
        return cls(ErrorMode.IGNORE)

    @classmethod
    def propagate(cls) -> ErrorPolicy:
        return cls(ErrorMode.PROPAGATE)

    @classmethod
    def custom(cls, callback: ErrorCallback) -> ErrorPolicy:
        """Let ``callback`` decide; it raises to propagate."""
        return cls(ErrorMode.IGNORE, callback)

    @classmethod
    def from_flag(cls, fail_on_remote_error: bool) -> ErrorPolicy:
        return cls.propagate() if fail_on_remote_error else cls.ignore()

    def handle(self, operation: str, key: str | None, error: RemoteError) -> None:
        """Apply the policy to a failure the caller is still waiting on."""
        if self.callback is not None:
            self.callback(operation, key, error)

        if self.mode is ErrorMode.PROPAGATE:
            raise error

        logger.warning(f"Remote {operation} failed for {key!r}, continuing locally: {error}")

    def report(self, operation: str, key: str | None, error: RemoteError) -> None:
        """Record a failure nobody is waiting on (fire-and-forget writes).

        Never raises.
        """
        logger.warning(f"Background remote {operation} failed for {key!r}: {error}")
        if self.callback is None:
            return
        try:
            self.callback(operation, key, error)
        except Exception:
            logger.exception(f"Error callback raised for background {operation} of {key!r}")
