"""
Custom exceptions for the telemetry connector.

Transport faults are retryable; configuration and capability errors are not.
"""


class ConnectorError(Exception):
    """Base error for the telemetry connector."""

    pass


class ConfigurationError(ConnectorError):
    """Missing or invalid connection parameters at open time."""

    pass


class ConnectorNotOpenError(ConnectorError):
    """Operation attempted before open() or after close()."""

    pass


class TransportError(ConnectorError):
    """Endpoint rejected or failed a request. Retried by the sender."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class ReceiveTimeoutError(ConnectorError):
    """No inbound message arrived within the poll timeout."""

    pass


class BodyConsumedError(ConnectorError):
    """Envelope body stream was already read."""

    pass


class UnsupportedCapabilityError(ConnectorError, NotImplementedError):
    """Hook exists on the public surface but is not implemented by this connector."""

    pass
