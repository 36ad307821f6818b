"""
Public entry point: batching sender and receive loop behind an open/close
lifecycle.

Usage:

    async with TelemetryConnector({"conn_str": "HostName=...;DeviceId=...;SharedAccessKey=..."}) as conn:
        await conn.send({"temperature": 21.5}, on_success=print)
        conn.start_receiving(lambda payload: True)
"""

from __future__ import annotations

import asyncio
from typing import Any, Callable, Dict, Iterable, Mapping, Optional

from loguru import logger

from .errors import ConnectorNotOpenError, UnsupportedCapabilityError
from .receiver import Disposition, ErrorHandler, Handler, ReceiveLoop, receive_once
from .sender import BatchSender, OnError, OnSuccess, SendResult, log_retry
from .settings import ConnectorSettings, resolve_settings
from .transport.base import Transport
from .transport.http import HttpDeviceTransport


class TelemetryConnector:
    def __init__(
        self,
        args: Optional[Mapping[str, Any]] = None,
        *,
        transport: Optional[Transport] = None,
    ):
        self._args: Dict[str, Any] = dict(args or {})
        self._injected = transport
        self._transport: Optional[Transport] = None
        self._settings: Optional[ConnectorSettings] = None
        self._sender: Optional[BatchSender] = None
        self._receiver: Optional[ReceiveLoop] = None

    @property
    def name(self) -> str:
        n = "" if self._transport is None else self._transport.name
        return f"TelemetryConnector-{n}"

    @property
    def is_open(self) -> bool:
        return self._sender is not None

    @property
    def settings(self) -> ConnectorSettings:
        self._require_open()
        return self._settings  # type: ignore[return-value]

    # --------------- lifecycle

    async def open(
        self,
        args: Optional[Mapping[str, Any]] = None,
        *,
        transport: Optional[Transport] = None,
    ) -> None:
        """Validate configuration and bind a transport.

        Raises ConfigurationError before touching the network when no
        connection string or device id can be resolved. Reopening an open
        connector is rejected.
        """
        if self.is_open:
            raise RuntimeError(f"{self.name} is already open; close() it first")
        if args is not None:
            self._args = dict(args)
        settings = resolve_settings(self._args)

        transport = transport or self._injected
        if transport is None:
            transport = HttpDeviceTransport.from_connection_string(
                settings.conn_str, settings.device_id  # type: ignore[arg-type]
            )

        self._settings = settings
        self._transport = transport
        self._sender = BatchSender(
            transport,
            messages_per_batch=settings.messages_per_batch,
            num_retries=settings.num_retries,
            retry_delay_ms=settings.retry_delay_ms,
            serializer=self._args.get("serializer"),
            on_retry=self._args.get("on_retry", log_retry),
        )
        logger.info(
            f"Opened {self.name} for device {settings.resolved_device_id} "
            f"(batch={settings.messages_per_batch}, retries={settings.num_retries})"
        )

    async def close(self) -> None:
        """Stop receiving and release the transport. Unsent messages are dropped."""
        if self._receiver is not None:
            await self._receiver.stop()
            self._receiver = None
        if self._sender is not None and self._sender.pending:
            logger.warning(f"Closing {self.name} with {self._sender.pending} unsent messages")
        if self._transport is not None:
            await self._transport.close()
        self._transport = None
        self._sender = None
        logger.info("Connector closed")

    async def __aenter__(self) -> "TelemetryConnector":
        if not self.is_open:
            await self.open()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    # --------------- send path

    async def send(
        self,
        message: Any,
        on_success: Optional[OnSuccess] = None,
        on_error: Optional[OnError] = None,
    ) -> SendResult:
        return await self._require_open().send(message, on_success, on_error)

    async def send_batch(
        self,
        messages: Iterable[Any],
        on_success: Optional[OnSuccess] = None,
        on_error: Optional[OnError] = None,
    ) -> SendResult:
        return await self._require_open().send_batch(messages, on_success, on_error)

    async def flush(
        self,
        on_success: Optional[OnSuccess] = None,
        on_error: Optional[OnError] = None,
    ) -> SendResult:
        return await self._require_open().flush(on_success, on_error)

    # --------------- receive path

    def start_receiving(
        self,
        handler: Handler,
        cancel: Optional[asyncio.Event] = None,
        args: Optional[Mapping[str, Any]] = None,
    ) -> asyncio.Task:
        """Start the continuous receive loop; returns its task.

        ``args["timeout_ms"]`` overrides the idle wait between empty polls.
        """
        self._require_open()
        if self._receiver is not None and self._receiver.running:
            raise RuntimeError("receive loop already running")
        timeout_ms = int((args or {}).get("timeout_ms", self._settings.timeout_ms))  # type: ignore[union-attr]
        self._receiver = ReceiveLoop(self._transport, handler, poll_interval_ms=timeout_ms)  # type: ignore[arg-type]
        return self._receiver.start(cancel)

    async def stop_receiving(self) -> None:
        if self._receiver is not None:
            await self._receiver.stop()
            self._receiver = None

    async def receive_once(
        self,
        on_success: Handler,
        on_error: Optional[ErrorHandler] = None,
        timeout_ms: int = 60000,
    ) -> Optional[Disposition]:
        self._require_open()
        return await receive_once(self._transport, on_success, on_error, timeout_ms)  # type: ignore[arg-type]

    # --------------- unsupported hooks

    def on_send_acknowledge_result(
        self,
        on_msg_send_result: Callable[[str, Optional[BaseException]], Any],
        args: Optional[Mapping[str, Any]] = None,
    ) -> None:
        raise UnsupportedCapabilityError("send acknowledgment results are not supported")

    def register_acknowledge(
        self, on_acknowledge_received: Callable[[str, Optional[BaseException]], Any]
    ) -> None:
        raise UnsupportedCapabilityError("acknowledgment registration is not supported")

    # --------------- internals

    def _require_open(self) -> BatchSender:
        if self._sender is None:
            raise ConnectorNotOpenError(f"{self.name} is not open; call open() first")
        return self._sender
