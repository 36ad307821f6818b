"""
Connector configuration.

Explicit open() arguments override TELEMETRY_* environment variables
(and a local .env file).
"""

from __future__ import annotations

from typing import Any, Dict, Mapping, Optional

from pydantic import Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ConfigurationError


def parse_connection_string(conn_str: str) -> Dict[str, str]:
    """Split ``HostName=...;DeviceId=...;SharedAccessKey=...`` into a dict."""
    parts: Dict[str, str] = {}
    for segment in conn_str.split(";"):
        segment = segment.strip()
        if not segment:
            continue
        key, sep, value = segment.partition("=")
        if not sep or not key:
            raise ConfigurationError(f"Malformed connection string segment: {segment!r}")
        parts[key.strip()] = value.strip()
    if "HostName" not in parts:
        raise ConfigurationError("Connection string must contain HostName")
    return parts


class ConnectorSettings(BaseSettings):
    conn_str: Optional[str] = None
    device_id: Optional[str] = None
    messages_per_batch: int = Field(1, ge=1)
    num_retries: int = Field(5, ge=1)
    retry_delay_ms: int = Field(1000, ge=0)
    timeout_ms: int = Field(60000, ge=0)

    model_config = SettingsConfigDict(
        env_prefix="TELEMETRY_",
        env_file=".env",
        extra="ignore",
        case_sensitive=False,
    )

    @property
    def resolved_device_id(self) -> Optional[str]:
        """Device id embedded in the connection string wins over the explicit one."""
        if self.conn_str:
            embedded = parse_connection_string(self.conn_str).get("DeviceId")
            if embedded:
                return embedded
        return self.device_id


# option keys handled outside the settings model
CALLABLE_KEYS = ("serializer", "on_retry")


def resolve_settings(args: Optional[Mapping[str, Any]] = None) -> ConnectorSettings:
    """Build validated settings from open() arguments, failing fast."""
    values = {k: v for k, v in (args or {}).items() if k not in CALLABLE_KEYS}
    try:
        settings = ConnectorSettings(**values)
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid connector configuration: {exc}") from exc

    if not settings.conn_str:
        raise ConfigurationError("Connection string must be provided (conn_str)")
    if not settings.resolved_device_id:
        raise ConfigurationError("DeviceId must be provided in argument list or in connection string")
    return settings
