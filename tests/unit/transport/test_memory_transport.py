"""
Unit tests for the in-memory loopback endpoint.
"""

import pytest

from telemetry_connector import Envelope, TransportError
from telemetry_connector.transport import InMemoryTransport, Transport


def test_satisfies_transport_protocol(transport):
    assert isinstance(transport, Transport)


@pytest.mark.asyncio
async def test_scripted_failures_then_accepts(transport):
    transport.fail_next(2)
    for _ in range(2):
        with pytest.raises(TransportError):
            await transport.send_batch([Envelope.from_bytes(b"x")])
    await transport.send_batch([Envelope.from_bytes(b"x")])
    assert transport.send_attempts == 3
    assert transport.payloads == [[b"x"]]


@pytest.mark.asyncio
async def test_lock_tokens_and_redelivery(transport):
    mid = transport.enqueue(b"c2d")
    first = await transport.receive()
    assert first.message_id == mid
    assert first.delivery_count == 1
    assert transport.in_flight == 1
    assert await transport.receive() is None

    await transport.abandon(first)
    second = await transport.receive()
    assert second.delivery_count == 2
    assert second.lock_token != first.lock_token
    assert second.get_bytes() == b"c2d"

    await transport.complete(second)
    assert transport.in_flight == 0
    with pytest.raises(TransportError):
        await transport.complete(second)


@pytest.mark.asyncio
async def test_receive_timeout_returns_none():
    assert await InMemoryTransport().receive(timeout=0.01) is None
