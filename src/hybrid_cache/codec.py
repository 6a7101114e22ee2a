"""Value codec for the remote tier.

Values are stored in Redis as orjson-encoded bytes. Reads can optionally be
validated into a concrete type with a pydantic TypeAdapter, which is how
typed values (pydantic models, dataclasses, containers of them) come back
out of the cache.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Any, Protocol, TypeVar

import orjson
from pydantic import BaseModel, TypeAdapter, ValidationError

from hybrid_cache.errors import SerializationError

T = TypeVar("T")


class Codec(Protocol):
    """Converts values to and from the bytes stored in the remote tier."""

    def encode(self, value: Any) -> bytes: ...

    def decode(self, payload: bytes, type_: type[T] | None = None) -> Any: ...


@lru_cache(maxsize=256)
def _adapter(type_: Any) -> TypeAdapter[Any]:
    return TypeAdapter(type_)


def _default(obj: Any) -> Any:
    """orjson fallback for types it does not handle natively."""
    if isinstance(obj, BaseModel):
        return obj.model_dump(mode="json")
    if isinstance(obj, (set, frozenset)):
        return list(obj)
    raise TypeError(f"Type is not JSON serializable: {type(obj).__name__}")


class JsonCodec:
    """JSON codec backed by orjson."""

    def __init__(self, sort_keys: bool = False):
        self._options = orjson.OPT_NON_STR_KEYS
        if sort_keys:
            self._options |= orjson.OPT_SORT_KEYS

    def encode(self, value: Any) -> bytes:
        try:
            return orjson.dumps(value, default=_default, option=self._options)
        except TypeError as e:
            raise SerializationError(f"Cannot encode {type(value).__name__}: {e}") from e

    def decode(self, payload: bytes, type_: type[T] | None = None) -> Any:
        """Decode a payload, validating into ``type_`` when given."""
        try:
            data = orjson.loads(payload)
        except orjson.JSONDecodeError as e:
            raise SerializationError(f"Cannot decode payload: {e}") from e

        if type_ is None:
            return data

        try:
            return _adapter(type_).validate_python(data)
        except ValidationError as e:
            raise SerializationError(f"Payload does not match {type_!r}: {e}") from e
