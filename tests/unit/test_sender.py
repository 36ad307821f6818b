"""
Unit tests for BatchSender batching and retry behavior.
"""

import asyncio
import json

import pytest

from telemetry_connector import (
    BatchSender,
    Envelope,
    SendStatus,
    TransportError,
)
from telemetry_connector.metrics import metrics_registry


def decoded(transport):
    """Transmitted batches as decoded JSON payloads."""
    return [[json.loads(p) for p in batch] for batch in transport.payloads]


@pytest.mark.asyncio
async def test_threshold_triggers_single_ordered_batch(transport):
    """N sends with threshold N produce exactly one transmission in insertion order."""
    sender = BatchSender(transport, messages_per_batch=3, retry_delay_ms=0)

    r1 = await sender.send({"n": 1})
    r2 = await sender.send({"n": 2})
    assert r1.status is SendStatus.BUFFERED
    assert r2.status is SendStatus.BUFFERED
    assert transport.send_attempts == 0

    r3 = await sender.send({"n": 3})
    assert r3.status is SendStatus.SENT
    assert transport.send_attempts == 1
    assert decoded(transport) == [[{"n": 1}, {"n": 2}, {"n": 3}]]
    assert sender.pending == 0


@pytest.mark.asyncio
async def test_default_threshold_sends_each_message(transport):
    sender = BatchSender(transport, retry_delay_ms=0)
    await sender.send("a")
    await sender.send("b")
    assert decoded(transport) == [["a"], ["b"]]


@pytest.mark.asyncio
async def test_on_success_receives_original_objects(transport):
    originals = [{"id": 1}, {"id": 2}]
    received = []

    sender = BatchSender(transport, messages_per_batch=2, retry_delay_ms=0)
    result = await sender.send_batch(originals, on_success=received.extend)

    assert result.status is SendStatus.SENT
    assert result.items == originals
    assert received[0] is originals[0]
    assert received[1] is originals[1]
    assert not any(isinstance(r, (bytes, Envelope)) for r in received)


@pytest.mark.asyncio
async def test_exhausted_retries_report_error_and_keep_buffer(transport):
    """Persistent failure: exactly num_retries attempts, then on_error with originals."""
    transport.fail_next(10, TransportError("hub down"))
    errors = []
    retries = []

    sender = BatchSender(
        transport,
        messages_per_batch=2,
        num_retries=3,
        retry_delay_ms=0,
        on_retry=lambda exc, msgs, n: retries.append((n, list(msgs))),
    )
    await sender.send("x")
    result = await sender.send("y", on_error=lambda items, exc: errors.append((items, exc)))

    assert transport.send_attempts == 3
    assert result.status is SendStatus.FAILED
    assert not result.ok
    assert result.attempts == 3
    assert isinstance(result.error, TransportError)
    assert len(errors) == 1
    assert errors[0][0] == ["x", "y"]
    assert str(errors[0][1]) == "hub down"
    assert retries == [(1, ["x", "y"]), (2, ["x", "y"])]

    # unsent items stay buffered for the caller's next decision
    assert sender.pending == 2


@pytest.mark.asyncio
async def test_retry_then_success(transport):
    transport.fail_next(2)
    counts = []
    sent = []

    sender = BatchSender(
        transport,
        num_retries=5,
        retry_delay_ms=0,
        on_retry=lambda exc, msgs, n: counts.append(n),
    )
    result = await sender.send({"v": 1}, on_success=sent.extend)

    assert result.status is SendStatus.SENT
    assert result.attempts == 3
    assert counts == [1, 2]
    assert sent == [{"v": 1}]
    assert decoded(transport) == [[{"v": 1}]]


@pytest.mark.asyncio
async def test_retry_reencodes_from_original(transport):
    """Every attempt re-runs the serializer on the original payload."""
    calls = []

    def stamping_serializer(obj):
        calls.append(obj)
        return json.dumps({"payload": obj, "attempt": len(calls)}).encode()

    transport.fail_next(2)
    original = {"reading": 7}
    sent = []
    sender = BatchSender(transport, retry_delay_ms=0, serializer=stamping_serializer)
    await sender.send(original, on_success=sent.extend)

    assert calls == [original, original, original]
    assert decoded(transport) == [[{"payload": {"reading": 7}, "attempt": 3}]]
    assert sent[0] is original


@pytest.mark.asyncio
async def test_on_success_error_propagates_without_retry(transport):
    def boom(items):
        raise ValueError("caller bug")

    errors = []
    sender = BatchSender(transport, num_retries=5, retry_delay_ms=0)
    with pytest.raises(ValueError, match="caller bug"):
        await sender.send("m", on_success=boom, on_error=lambda i, e: errors.append(e))

    assert transport.send_attempts == 1
    assert errors == []
    # transmission was confirmed, so the item is not resent later
    assert sender.pending == 0


@pytest.mark.asyncio
async def test_failed_items_resent_with_next_send(transport):
    transport.fail_next(2)
    sender = BatchSender(transport, num_retries=2, retry_delay_ms=0)

    first = await sender.send("a")
    assert first.status is SendStatus.FAILED

    second = await sender.send("b")
    assert second.status is SendStatus.SENT
    assert second.items == ["a", "b"]
    assert decoded(transport) == [["a", "b"]]


@pytest.mark.asyncio
async def test_async_callbacks_are_awaited(transport):
    seen = []

    async def on_success(items):
        await asyncio.sleep(0)
        seen.extend(items)

    sender = BatchSender(transport, retry_delay_ms=0)
    await sender.send(1, on_success=on_success)
    assert seen == [1]


@pytest.mark.asyncio
async def test_flush_sends_partial_batch_and_skips_empty(transport):
    sender = BatchSender(transport, messages_per_batch=10, retry_delay_ms=0)

    empty = await sender.flush()
    assert empty.status is SendStatus.EMPTY
    assert transport.send_attempts == 0

    await sender.send(1)
    await sender.send(2)
    result = await sender.flush()
    assert result.status is SendStatus.SENT
    assert decoded(transport) == [[1, 2]]


@pytest.mark.asyncio
async def test_concurrent_sends_do_not_interleave(transport):
    sender = BatchSender(transport, messages_per_batch=2, retry_delay_ms=0)
    await asyncio.gather(*[sender.send(i) for i in range(6)])

    assert decoded(transport) == [[0, 1], [2, 3], [4, 5]]
    assert sender.pending == 0


@pytest.mark.asyncio
async def test_serializer_error_leaves_buffer_untouched(transport):
    def picky(obj):
        if obj == "bad":
            raise TypeError("cannot encode")
        return json.dumps(obj).encode()

    sender = BatchSender(transport, messages_per_batch=5, serializer=picky)
    await sender.send("ok")
    with pytest.raises(TypeError):
        await sender.send_batch(["fine", "bad"])
    assert sender.pending == 1


def test_invalid_options_rejected(transport):
    with pytest.raises(ValueError):
        BatchSender(transport, messages_per_batch=0)
    with pytest.raises(ValueError):
        BatchSender(transport, num_retries=0)
    with pytest.raises(ValueError):
        BatchSender(transport, retry_delay_ms=-1)


@pytest.mark.asyncio
async def test_metrics_record_retries_and_outcomes(transport):
    def sample(collector, name, labels=None):
        for metric in collector.collect():
            for s in metric.samples:
                if s.name == name and s.labels == (labels or {}):
                    return s.value
        return 0.0

    retries_before = sample(metrics_registry.send_retries_total, "connector_send_retries_total")
    sent_before = sample(metrics_registry.batches_total, "connector_batches_total", {"outcome": "sent"})
    latency_before = sample(metrics_registry.batch_latency_ms, "connector_batch_latency_ms_count")

    transport.fail_next(1)
    sender = BatchSender(transport, retry_delay_ms=0)
    await sender.send("m")

    assert sample(metrics_registry.send_retries_total, "connector_send_retries_total") == retries_before + 1
    assert (
        sample(metrics_registry.batches_total, "connector_batches_total", {"outcome": "sent"})
        == sent_before + 1
    )
    assert sample(metrics_registry.batch_latency_ms, "connector_batch_latency_ms_count") == latency_before + 1
