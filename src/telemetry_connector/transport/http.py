"""
Device-side REST transport for an IoT-hub style endpoint.

Events are posted as one JSON batch, cloud-to-device messages are fetched
one at a time from the bound-message resource and settled by ETag.
"""

from __future__ import annotations

import base64
import hashlib
import hmac
import time
from datetime import datetime
from email.utils import parsedate_to_datetime
from typing import Any, Dict, Optional, Sequence
from urllib.parse import quote

import httpx
from loguru import logger

from ..envelope import EPOCH, Envelope
from ..errors import ConfigurationError, TransportError
from ..settings import parse_connection_string

API_VERSION = "2020-03-13"
BATCH_CONTENT_TYPE = "application/vnd.microsoft.iothub.json"
APP_PROPERTY_PREFIX = "iothub-app-"
TOKEN_TTL_SEC = 3600


def generate_sas_token(
    resource_uri: str,
    key: str,
    expiry: int,
    policy_name: Optional[str] = None,
) -> str:
    """Shared access signature over ``resource_uri`` valid until ``expiry`` (unix seconds)."""
    sr = quote(resource_uri, safe="")
    to_sign = f"{sr}\n{expiry}".encode("utf-8")
    digest = hmac.new(base64.b64decode(key), to_sign, hashlib.sha256).digest()
    sig = quote(base64.b64encode(digest).decode("ascii"), safe="")
    token = f"SharedAccessSignature sr={sr}&sig={sig}&se={expiry}"
    if policy_name:
        token += f"&skn={policy_name}"
    return token


def _parse_time(value: Optional[str]) -> datetime:
    if not value:
        return EPOCH
    try:
        return parsedate_to_datetime(value)
    except (TypeError, ValueError):
        pass
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return EPOCH


def envelope_from_response(resp: httpx.Response) -> Envelope:
    h = resp.headers
    props = {
        k[len(APP_PROPERTY_PREFIX):]: v
        for k, v in h.items()
        if k.lower().startswith(APP_PROPERTY_PREFIX)
    }
    return Envelope.from_bytes(
        resp.content,
        content_type=h.get("content-type"),
        correlation_id=h.get("iothub-correlationid"),
        delivery_count=int(h.get("iothub-deliverycount", 0)),
        sequence_number=int(h.get("iothub-sequencenumber", 0)),
        enqueued_time_utc=_parse_time(h.get("iothub-enqueuedtime")),
        expires_at_utc=_parse_time(h.get("iothub-expiry")),
        lock_token=(h.get("etag") or "").strip('"'),
        message_id=h.get("iothub-messageid"),
        to=h.get("iothub-to"),
        properties=props,
    )


class HttpDeviceTransport:
    """Transport over the hub's device REST API (httpx.AsyncClient)."""

    def __init__(
        self,
        host: str,
        device_id: str,
        shared_access_key: str,
        *,
        policy_name: Optional[str] = None,
        api_version: str = API_VERSION,
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self._host = host
        self._device_id = device_id
        self._key = shared_access_key
        self._policy = policy_name
        self._api_version = api_version
        self._client = client or httpx.AsyncClient(
            base_url=f"https://{host}",
            headers={"User-Agent": "telemetry-connector/0.1.0"},
            timeout=timeout,
        )
        self._token: Optional[str] = None
        self._token_expiry = 0

    @classmethod
    def from_connection_string(
        cls, conn_str: str, device_id: Optional[str] = None, **kwargs: Any
    ) -> "HttpDeviceTransport":
        parts = parse_connection_string(conn_str)
        device = parts.get("DeviceId") or device_id
        if not device:
            raise ConfigurationError("DeviceId must be provided in arguments or connection string")
        key = parts.get("SharedAccessKey")
        if not key:
            raise ConfigurationError("SharedAccessKey missing from connection string")
        return cls(
            parts["HostName"],
            device,
            key,
            policy_name=parts.get("SharedAccessKeyName"),
            **kwargs,
        )

    @property
    def name(self) -> str:
        return "Http1"

    # --------------- internals

    def _path(self, suffix: str) -> str:
        return f"/devices/{quote(self._device_id, safe='')}{suffix}"

    def _headers(self, extra: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        now = int(time.time())
        if self._token is None or now >= self._token_expiry - 60:
            self._token_expiry = now + TOKEN_TTL_SEC
            self._token = generate_sas_token(
                f"{self._host}/devices/{self._device_id}",
                self._key,
                self._token_expiry,
                self._policy,
            )
        headers = {"Authorization": self._token}
        if extra:
            headers.update(extra)
        return headers

    async def _request(self, method: str, suffix: str, **kwargs: Any) -> httpx.Response:
        extra = kwargs.pop("headers", None)
        try:
            resp = await self._client.request(
                method,
                self._path(suffix),
                params={"api-version": self._api_version},
                headers=self._headers(extra),
                **kwargs,
            )
        except httpx.HTTPError as exc:
            raise TransportError(f"{method} {suffix} failed: {exc}") from exc
        if resp.status_code >= 400:
            raise TransportError(
                f"HTTP {resp.status_code}: {resp.text[:200]}", status_code=resp.status_code
            )
        return resp

    # --------------- Transport

    async def send_batch(self, envelopes: Sequence[Envelope]) -> None:
        body = []
        for env in envelopes:
            data = env.get_bytes() or b""
            item: Dict[str, Any] = {
                "body": base64.b64encode(data).decode("ascii"),
                "base64Encoded": True,
            }
            props = dict(env.properties)
            if env.message_id:
                props["iothub-messageid"] = env.message_id
            if env.correlation_id:
                props["iothub-correlationid"] = env.correlation_id
            if props:
                item["properties"] = {k: str(v) for k, v in props.items()}
            body.append(item)

        await self._request(
            "POST",
            "/messages/events",
            json=body,
            headers={"Content-Type": BATCH_CONTENT_TYPE},
        )
        logger.debug(f"Posted batch of {len(body)} events for {self._device_id}")

    async def receive(self, timeout: Optional[float] = None) -> Optional[Envelope]:
        kwargs: Dict[str, Any] = {}
        if timeout is not None:
            kwargs["timeout"] = timeout
        try:
            resp = await self._request("GET", "/messages/deviceBound", **kwargs)
        except TransportError as exc:
            if isinstance(exc.__cause__, httpx.TimeoutException):
                return None
            raise
        if resp.status_code == 204:
            return None
        return envelope_from_response(resp)

    async def complete(self, envelope: Envelope) -> None:
        await self._request("DELETE", f"/messages/deviceBound/{envelope.lock_token}")

    async def abandon(self, envelope: Envelope) -> None:
        await self._request("POST", f"/messages/deviceBound/{envelope.lock_token}/abandon")

    async def close(self) -> None:
        await self._client.aclose()
