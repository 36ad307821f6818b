"""
In-process loopback endpoint.

Records every transmitted batch and serves an inbound queue with lock-token
semantics: a received message stays locked until completed or abandoned, and
an abandoned message goes back to the head of the queue with its delivery
count bumped on the next receive.
"""

from __future__ import annotations

import asyncio
import uuid
from collections import deque
from datetime import timedelta
from typing import Any, Deque, Dict, List, Optional, Sequence, Tuple

from loguru import logger

from ..envelope import Envelope
from ..errors import TransportError
from ..utils import utc_now

LOCK_DURATION = timedelta(seconds=60)


class InMemoryTransport:
    def __init__(self, name: str = "memory"):
        self._name = name
        self.batches: List[List[Envelope]] = []
        self.payloads: List[List[bytes]] = []
        self.completed: List[Envelope] = []
        self.abandoned: List[Envelope] = []
        self.send_attempts = 0
        self.closed = False

        self._failures: Deque[BaseException] = deque()
        self._inbound: Deque[Tuple[bytes, Dict[str, Any]]] = deque()
        self._locked: Dict[str, Tuple[bytes, Dict[str, Any], Envelope]] = {}
        self._arrived = asyncio.Event()
        self._seq = 0

    @property
    def name(self) -> str:
        return self._name

    @property
    def in_flight(self) -> int:
        """Messages received but not yet completed or abandoned."""
        return len(self._locked)

    @property
    def queued(self) -> int:
        return len(self._inbound)

    # --------------- scripting

    def fail_next(self, n: int = 1, exc: Optional[BaseException] = None) -> None:
        """Make the next ``n`` send_batch calls raise ``exc``."""
        for _ in range(n):
            self._failures.append(exc or TransportError("simulated transport failure"))

    def enqueue(self, payload: bytes, **fields: Any) -> str:
        """Queue an inbound (cloud-to-device) message. Returns its message id."""
        self._seq += 1
        fields.setdefault("message_id", str(uuid.uuid4()))
        fields.setdefault("sequence_number", self._seq)
        fields.setdefault("enqueued_time_utc", utc_now())
        self._inbound.append((payload, fields))
        self._arrived.set()
        return fields["message_id"]

    # --------------- Transport

    async def send_batch(self, envelopes: Sequence[Envelope]) -> None:
        self.send_attempts += 1
        if self._failures:
            raise self._failures.popleft()
        batch = list(envelopes)
        self.batches.append(batch)
        self.payloads.append([env.get_bytes() or b"" for env in batch])
        logger.debug(f"{self._name}: accepted batch of {len(batch)}")

    async def receive(self, timeout: Optional[float] = None) -> Optional[Envelope]:
        if not self._inbound and timeout:
            self._arrived.clear()
            try:
                await asyncio.wait_for(self._arrived.wait(), timeout=timeout)
            except asyncio.TimeoutError:
                return None
        if not self._inbound:
            return None

        payload, fields = self._inbound.popleft()
        fields["delivery_count"] = fields.get("delivery_count", 0) + 1
        # each delivery gets a fresh envelope with its own readable body
        env = Envelope.from_bytes(
            payload,
            lock_token=uuid.uuid4(),
            locked_until_utc=utc_now() + LOCK_DURATION,
            **fields,
        )
        self._locked[str(env.lock_token)] = (payload, fields, env)
        return env

    async def complete(self, envelope: Envelope) -> None:
        _, _, env = self._unlock(envelope)
        self.completed.append(env)

    async def abandon(self, envelope: Envelope) -> None:
        payload, fields, env = self._unlock(envelope)
        self.abandoned.append(env)
        self._inbound.appendleft((payload, fields))
        self._arrived.set()

    async def close(self) -> None:
        self.closed = True

    def _unlock(self, envelope: Envelope) -> Tuple[bytes, Dict[str, Any], Envelope]:
        try:
            return self._locked.pop(str(envelope.lock_token))
        except KeyError:
            raise TransportError(f"unknown or expired lock token {envelope.lock_token}") from None
