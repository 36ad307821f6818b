"""
Batching send pipeline with bounded, fixed-delay retry.

Payloads accumulate in an OutboundBuffer until the batch threshold is met,
then the whole buffer is transmitted in one transport call. Transport faults
are retried after re-encoding every pending item from its original object;
faults raised by the caller's success callback are not retried.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from time import monotonic
from typing import Any, Callable, Generic, Iterable, List, Optional, TypeVar

from loguru import logger

from .buffer import OutboundBuffer, PendingItem
from .metrics import metrics_registry
from .serializers import Serializer, encode, json_serializer
from .transport.base import Transport
from .utils import maybe_await, root_cause

T = TypeVar("T")

OnSuccess = Callable[[List[Any]], Any]
OnError = Callable[[List[Any], BaseException], Any]
OnRetry = Callable[[BaseException, List[Any], int], Any]

DEFAULT_MESSAGES_PER_BATCH = 1
DEFAULT_NUM_RETRIES = 5
DEFAULT_RETRY_DELAY_MS = 1000


class SendStatus(str, Enum):
    BUFFERED = "buffered"  # below threshold, nothing transmitted
    SENT = "sent"
    FAILED = "failed"  # retries exhausted, items stay buffered
    EMPTY = "empty"  # flush of an empty buffer


@dataclass(frozen=True)
class SendResult:
    """Outcome of a send/flush call.

    Attributes:
        status: Final state of the call
        items: Original payloads involved (pending, sent or unsent)
        error: Transport error that exhausted the retries, if any
        attempts: Number of transmissions made by this call
    """

    status: SendStatus
    items: List[Any] = field(default_factory=list)
    error: Optional[BaseException] = None
    attempts: int = 0

    @property
    def ok(self) -> bool:
        return self.status is not SendStatus.FAILED


def log_retry(exc: BaseException, messages: List[Any], current_retry: int) -> None:
    """Default retry callback: log the root fault."""
    root = root_cause(exc)
    logger.warning(
        f"Error: {type(root).__name__}, {root}, messages={len(messages)}, "
        f"current retry: {current_retry}"
    )


class BatchSender(Generic[T]):
    """
    Owns the outbound buffer and the retry state machine.

    Usage:

        sender = BatchSender(transport, messages_per_batch=10, num_retries=3)
        result = await sender.send({"temp": 21.5}, on_success=print)
        if result.status is SendStatus.FAILED:
            ...

    Concurrent send() calls are serialized by an asyncio.Lock held across
    append and flush, so a flush stuck in backoff delays other producers.
    """

    def __init__(
        self,
        transport: Transport,
        *,
        messages_per_batch: int = DEFAULT_MESSAGES_PER_BATCH,
        num_retries: int = DEFAULT_NUM_RETRIES,
        retry_delay_ms: int = DEFAULT_RETRY_DELAY_MS,
        serializer: Optional[Serializer] = None,
        on_retry: Optional[OnRetry] = log_retry,
    ):
        if messages_per_batch < 1:
            raise ValueError("messages_per_batch must be >= 1")
        if num_retries < 1:
            raise ValueError("num_retries must be >= 1")
        if retry_delay_ms < 0:
            raise ValueError("retry_delay_ms must be >= 0")

        self._transport = transport
        self._batch_size = messages_per_batch
        self._num_retries = num_retries
        self._retry_delay = retry_delay_ms / 1000.0
        self._serializer = serializer or json_serializer
        self._on_retry = on_retry

        self._buffer: OutboundBuffer[T] = OutboundBuffer()
        self._lock = asyncio.Lock()

    @property
    def pending(self) -> int:
        return self._buffer.size()

    @property
    def messages_per_batch(self) -> int:
        return self._batch_size

    # --------------- public API

    async def send(
        self,
        message: T,
        on_success: Optional[OnSuccess] = None,
        on_error: Optional[OnError] = None,
    ) -> SendResult:
        """Buffer one payload; transmits once the batch threshold is reached."""
        return await self.send_batch([message], on_success, on_error)

    async def send_batch(
        self,
        messages: Iterable[T],
        on_success: Optional[OnSuccess] = None,
        on_error: Optional[OnError] = None,
    ) -> SendResult:
        # encode up front so a serializer fault leaves the buffer untouched
        encoded = [(encode(self._serializer, msg), msg) for msg in messages]

        async with self._lock:
            for env, msg in encoded:
                self._buffer.append(env, msg)

            if self._buffer.size() < self._batch_size:
                logger.debug(f"Buffered {self._buffer.size()}/{self._batch_size} messages")
                return SendResult(SendStatus.BUFFERED, self._buffer.originals())

            return await self._flush(on_success, on_error)

    async def flush(
        self,
        on_success: Optional[OnSuccess] = None,
        on_error: Optional[OnError] = None,
    ) -> SendResult:
        """Transmit whatever is buffered, regardless of the threshold."""
        async with self._lock:
            return await self._flush(on_success, on_error)

    # --------------- internals

    def _reencode(self, batch: Iterable[PendingItem[T]]) -> List[PendingItem[T]]:
        return [PendingItem(encode(self._serializer, item.original), item.original) for item in batch]

    async def _flush(
        self, on_success: Optional[OnSuccess], on_error: Optional[OnError]
    ) -> SendResult:
        if self._buffer.size() == 0:
            return SendResult(SendStatus.EMPTY)

        t0 = monotonic()
        retries = 0

        while True:
            batch = self._buffer.snapshot()
            try:
                await self._transport.send_batch([item.encoded for item in batch])
            except Exception as exc:
                retries += 1
                logger.debug(f"Sending batch of {len(batch)} failed: {exc}")
                # wire forms may be consumed or stale; always rebuild from originals
                self._buffer.replace_all(self._reencode(batch))

                if retries >= self._num_retries:
                    unsent = self._buffer.originals()
                    logger.error(
                        f"Giving up on batch of {len(unsent)} after {retries} attempts: "
                        f"{type(exc).__name__}: {exc}"
                    )
                    metrics_registry.batches_total.labels(outcome="failed").inc()
                    metrics_registry.batch_latency_ms.observe((monotonic() - t0) * 1000.0)
                    await maybe_await(on_error, unsent, exc)
                    return SendResult(SendStatus.FAILED, unsent, exc, retries)

                metrics_registry.send_retries_total.inc()
                await asyncio.sleep(self._retry_delay)
                await maybe_await(self._on_retry, exc, self._buffer.originals(), retries)
                continue

            sent = [item.original for item in batch]
            self._buffer.clear()
            metrics_registry.batch_latency_ms.observe((monotonic() - t0) * 1000.0)
            logger.debug(f"Sent {len(sent)} events to {self._transport.name}")

            try:
                await maybe_await(on_success, sent)
            except Exception:
                metrics_registry.batches_total.labels(outcome="callback_error").inc()
                raise

            metrics_registry.batches_total.labels(outcome="sent").inc()
            return SendResult(SendStatus.SENT, sent, attempts=retries + 1)
