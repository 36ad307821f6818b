"""
Poll-based receive path.

ReceiveLoop keeps polling the transport, hands each payload to a handler and
completes or abandons the message based on the handler's verdict. Faults are
logged and the loop carries on. receive_once() performs a single poll and
surfaces faults to an error handler instead.
"""

from __future__ import annotations

import asyncio
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Union

from loguru import logger

from .envelope import Envelope
from .errors import ReceiveTimeoutError
from .metrics import metrics_registry
from .transport.base import Transport
from .utils import maybe_await

DEFAULT_POLL_INTERVAL_MS = 60000

Handler = Callable[[Optional[bytes]], Union[bool, Awaitable[bool]]]
ErrorHandler = Callable[[BaseException], Union[bool, Awaitable[bool]]]


class Disposition(str, Enum):
    COMPLETED = "completed"  # removed from the endpoint
    ABANDONED = "abandoned"  # eligible for redelivery


async def acknowledge(transport: Transport, envelope: Envelope, verdict: Any) -> Disposition:
    """Complete on a truthy verdict, abandon otherwise."""
    if verdict:
        await transport.complete(envelope)
        disposition = Disposition.COMPLETED
    else:
        await transport.abandon(envelope)
        disposition = Disposition.ABANDONED
    metrics_registry.messages_received_total.labels(disposition=disposition.value).inc()
    logger.debug(f"Message {envelope.message_id} {disposition.value}")
    return disposition


class ReceiveLoop:
    """Cancellable polling loop.

    Cancellation is cooperative: the cancel event is checked once per
    iteration, so an in-flight poll, handler call or acknowledgment always
    finishes first. Only the idle wait after an empty or failed poll is cut
    short. A handler or acknowledgment fault does not idle.

    Example:
        loop = ReceiveLoop(transport, handle, poll_interval_ms=5000)
        loop.start()
        ...
        await loop.stop()
    """

    def __init__(
        self,
        transport: Transport,
        handler: Handler,
        *,
        poll_interval_ms: int = DEFAULT_POLL_INTERVAL_MS,
    ):
        if poll_interval_ms < 0:
            raise ValueError("poll_interval_ms must be >= 0")
        self._transport = transport
        self._handler = handler
        self._poll_interval = poll_interval_ms / 1000.0
        self._cancel: Optional[asyncio.Event] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self, cancel: Optional[asyncio.Event] = None) -> asyncio.Task:
        if self.running:
            raise RuntimeError("receive loop already running")
        self._cancel = cancel or asyncio.Event()
        self._task = asyncio.create_task(self.run(self._cancel), name="telemetry-receive-loop")
        return self._task

    async def stop(self) -> None:
        """Signal cancellation and wait for the current iteration to finish."""
        if self._cancel is not None:
            self._cancel.set()
        if self._task is not None:
            await self._task
            self._task = None

    async def run(self, cancel: asyncio.Event) -> None:
        logger.info(f"Receive loop started on {self._transport.name}")
        while not cancel.is_set():
            try:
                envelope = await self._transport.receive()
            except Exception as exc:
                self._record_fault(exc)
                await self._idle(cancel)
                continue

            if envelope is None:
                await self._idle(cancel)
                continue

            try:
                await self._dispatch(envelope)
            except Exception as exc:
                # poll again straight away; other messages may be queued
                self._record_fault(exc)
                await asyncio.sleep(0)
        logger.info("Receive loop stopped")

    def _record_fault(self, exc: BaseException) -> None:
        metrics_registry.receive_errors_total.inc()
        logger.warning(f"Receive loop error (continuing): {type(exc).__name__}: {exc}")

    async def _dispatch(self, envelope: Envelope) -> Disposition:
        try:
            verdict = await maybe_await(self._handler, envelope.get_bytes())
        except Exception:
            # release the lock so the endpoint can redeliver
            await self._transport.abandon(envelope)
            metrics_registry.messages_received_total.labels(disposition=Disposition.ABANDONED.value).inc()
            raise
        return await acknowledge(self._transport, envelope, verdict)

    async def _idle(self, cancel: asyncio.Event) -> None:
        try:
            await asyncio.wait_for(cancel.wait(), timeout=self._poll_interval)
        except asyncio.TimeoutError:
            pass


async def receive_once(
    transport: Transport,
    on_success: Handler,
    on_error: Optional[ErrorHandler] = None,
    timeout_ms: int = DEFAULT_POLL_INTERVAL_MS,
) -> Optional[Disposition]:
    """
    Poll once and acknowledge per the handler's verdict.

    A poll that times out, or any fault while dispatching or acknowledging,
    goes to ``on_error``. If a message had been received its acknowledgment
    then follows the error handler's verdict. Without ``on_error`` the
    message is abandoned and the fault re-raised.

    Returns:
        The disposition applied, or None when no message was acknowledged.
    """
    envelope: Optional[Envelope] = None
    try:
        envelope = await transport.receive(timeout=timeout_ms / 1000.0)
        if envelope is None:
            raise ReceiveTimeoutError(f"no message received within {timeout_ms} ms")
        verdict = await maybe_await(on_success, envelope.get_bytes())
        return await acknowledge(transport, envelope, verdict)
    except Exception as exc:
        metrics_registry.receive_errors_total.inc()
        if on_error is None:
            if envelope is not None:
                await acknowledge(transport, envelope, False)
            raise
        verdict = await maybe_await(on_error, exc)
        if envelope is not None:
            return await acknowledge(transport, envelope, verdict)
        return None
