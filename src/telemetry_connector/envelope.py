"""
Envelope data model.

The payload container exchanged between producer, connector and transport.
Carries broker metadata plus a body that is either an in-memory object or a
byte stream, never both.
"""

from __future__ import annotations

import io
import typing
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr

from .errors import BodyConsumedError

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
NIL_UUID = uuid.UUID(int=0)


def _is_stream_kind(kind: Any) -> bool:
    if kind is typing.BinaryIO or kind is typing.IO:
        return True
    return isinstance(kind, type) and issubclass(kind, io.IOBase)


class Envelope(BaseModel):
    """Message plus metadata. Transports may set delivery and lock fields."""

    model_config = ConfigDict(validate_assignment=True)

    content_type: Optional[str] = None
    correlation_id: Optional[str] = None
    delivery_count: int = 0
    enqueued_sequence_number: int = 0
    enqueued_time_utc: datetime = EPOCH
    expires_at_utc: datetime = EPOCH
    force_persistence: bool = False
    is_body_consumed: bool = False
    label: Optional[str] = None
    locked_until_utc: datetime = EPOCH
    lock_token: uuid.UUID | str = NIL_UUID
    message_id: Optional[str] = None
    partition_key: Optional[str] = None
    properties: Dict[str, Any] = Field(default_factory=dict)
    reply_to: Optional[str] = None
    reply_to_session_id: Optional[str] = None
    scheduled_enqueue_time_utc: datetime = EPOCH
    sequence_number: int = 0
    session_id: Optional[str] = None
    size: int = 0
    time_to_live: timedelta = timedelta(0)
    to: Optional[str] = None
    via_partition_key: Optional[str] = None

    _body: Any = PrivateAttr(default=None)
    _body_stream: Optional[typing.BinaryIO] = PrivateAttr(default=None)

    # --------------- construction

    @classmethod
    def from_body(cls, body: Any, **fields: Any) -> "Envelope":
        env = cls(**fields)
        env._body = body
        return env

    @classmethod
    def from_stream(cls, stream: typing.BinaryIO, **fields: Any) -> "Envelope":
        env = cls(**fields)
        env._body_stream = stream
        return env

    @classmethod
    def from_bytes(cls, data: bytes, **fields: Any) -> "Envelope":
        """Wrap raw payload bytes in a stream body and record the size."""
        fields.setdefault("size", len(data))
        return cls.from_stream(io.BytesIO(data), **fields)

    # --------------- body access

    def get_body(self, kind: Any) -> Any:
        """Return the body matching ``kind``: ``object`` or a stream type.

        Falls back to None when nothing of the requested kind was set.
        """
        if self._body is not None and kind is object:
            return self._body
        if self._body_stream is not None and _is_stream_kind(kind):
            return self._body_stream
        return None

    def get_bytes(self) -> Optional[bytes]:
        """Payload as bytes. A stream body can be read only once."""
        if self._body_stream is not None:
            if self.is_body_consumed:
                raise BodyConsumedError("envelope body stream was already consumed")
            data = self._body_stream.read()
            self.is_body_consumed = True
            return data
        if isinstance(self._body, (bytes, bytearray)):
            return bytes(self._body)
        if isinstance(self._body, str):
            return self._body.encode("utf-8")
        return None
