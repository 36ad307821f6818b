"""
Pytest configuration and fixtures for telemetry-connector.

Provides cross-platform event loop configuration, an isolated environment
and an in-memory endpoint.
"""

import asyncio
import sys

import pytest

from telemetry_connector import InMemoryTransport

# Set policy *before* pytest-asyncio creates any loops
if sys.platform.startswith("win"):
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())

CONN_STR = "HostName=hub.example.net;DeviceId=dev-1;SharedAccessKey=c2VjcmV0LWtleQ=="
CONN_STR_NO_DEVICE = "HostName=hub.example.net;SharedAccessKey=c2VjcmV0LWtleQ=="


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch, tmp_path):
    """Keep TELEMETRY_* variables and .env files from leaking into tests."""
    for key in (
        "TELEMETRY_CONN_STR",
        "TELEMETRY_DEVICE_ID",
        "TELEMETRY_MESSAGES_PER_BATCH",
        "TELEMETRY_NUM_RETRIES",
        "TELEMETRY_RETRY_DELAY_MS",
        "TELEMETRY_TIMEOUT_MS",
    ):
        monkeypatch.delenv(key, raising=False)
    monkeypatch.chdir(tmp_path)


@pytest.fixture
def conn_str():
    return CONN_STR


@pytest.fixture
def conn_str_no_device():
    return CONN_STR_NO_DEVICE


@pytest.fixture
def transport():
    """Fresh loopback endpoint for each test."""
    return InMemoryTransport()


@pytest.fixture
def fast_config(conn_str):
    """Connector options with no retry backoff and short polls."""
    return {
        "conn_str": conn_str,
        "retry_delay_ms": 0,
        "timeout_ms": 10,
    }
