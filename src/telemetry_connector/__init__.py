"""
Telemetry Connector

Batches outgoing telemetry payloads to a remote message endpoint with
bounded fixed-delay retry, and polls the endpoint for inbound messages,
completing or abandoning each one based on a handler's verdict.

Usage:
    from telemetry_connector import TelemetryConnector

    async with TelemetryConnector({"conn_str": "...", "messages_per_batch": 10}) as conn:
        await conn.send({"temperature": 21.5})
"""

from .connector import TelemetryConnector
from .envelope import Envelope
from .buffer import OutboundBuffer, PendingItem
from .sender import BatchSender, SendResult, SendStatus, log_retry
from .receiver import ReceiveLoop, Disposition, receive_once
from .serializers import json_serializer
from .settings import ConnectorSettings, resolve_settings, parse_connection_string
from .transport import Transport, InMemoryTransport, HttpDeviceTransport
from .errors import (
    ConnectorError,
    ConfigurationError,
    ConnectorNotOpenError,
    TransportError,
    ReceiveTimeoutError,
    BodyConsumedError,
    UnsupportedCapabilityError,
)

__version__ = "0.1.0"
__all__ = [
    "TelemetryConnector",
    "Envelope",
    "OutboundBuffer",
    "PendingItem",
    "BatchSender",
    "SendResult",
    "SendStatus",
    "log_retry",
    "ReceiveLoop",
    "Disposition",
    "receive_once",
    "json_serializer",
    "ConnectorSettings",
    "resolve_settings",
    "parse_connection_string",
    "Transport",
    "InMemoryTransport",
    "HttpDeviceTransport",
    "ConnectorError",
    "ConfigurationError",
    "ConnectorNotOpenError",
    "TransportError",
    "ReceiveTimeoutError",
    "BodyConsumedError",
    "UnsupportedCapabilityError",
]
