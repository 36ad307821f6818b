"""
Payload serialization strategies.

A serializer turns an application object into an Envelope ready for the
transport. It may also return bytes or str, which get wrapped.
"""

from __future__ import annotations

import json
from typing import Any, Callable, Union

from .envelope import Envelope

SerializerResult = Union[Envelope, bytes, str]
Serializer = Callable[[Any], SerializerResult]

JSON_CONTENT_TYPE = "application/json"


def _jsonable(obj: Any) -> Any:
    if hasattr(obj, "model_dump"):
        return obj.model_dump(mode="json")
    return obj


def json_serializer(obj: Any) -> Envelope:
    """Default strategy: JSON text, UTF-8 encoded."""
    data = json.dumps(_jsonable(obj), default=str).encode("utf-8")
    return Envelope.from_bytes(data, content_type=JSON_CONTENT_TYPE)


def encode(serializer: Serializer, obj: Any) -> Envelope:
    result = serializer(obj)
    if isinstance(result, Envelope):
        return result
    if isinstance(result, str):
        result = result.encode("utf-8")
    if isinstance(result, (bytes, bytearray)):
        return Envelope.from_bytes(bytes(result))
    raise TypeError(f"serializer returned unsupported type {type(result).__name__}")
