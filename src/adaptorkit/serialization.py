"""JSON helpers backed by msgspec."""

from __future__ import annotations

from typing import Any, TypeVar

import msgspec

T = TypeVar("T")

_encoder = msgspec.json.Encoder()


def json_encode(value: Any) -> bytes:
    """Serialize ``value`` to JSON bytes using msgspec."""

    return _encoder.encode(value)


def json_decode(data: bytes | str, *, type: type[T] | None = None) -> T | Any:
    """Deserialize JSON ``data``, optionally validating it against ``type``."""

    if type is None:
        return msgspec.json.decode(data)
    return msgspec.json.decode(data, type=type)
