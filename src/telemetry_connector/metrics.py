"""
Prometheus metrics for the send and receive paths.
Registered on the global REGISTRY at import time.
"""

from prometheus_client import Counter, Histogram

CONNECTOR_BATCHES_TOTAL = Counter(
    "connector_batches_total",
    "Batch flush attempts by final outcome",
    ["outcome"],  # sent | failed | callback_error
)

CONNECTOR_SEND_RETRIES_TOTAL = Counter(
    "connector_send_retries_total",
    "Batch transmissions retried after a transport fault",
)

CONNECTOR_BATCH_LATENCY_MS = Histogram(
    "connector_batch_latency_ms",
    "Time from flush start to final outcome in milliseconds",
    buckets=[1, 5, 10, 25, 50, 100, 250, 500, 1000, 2500, 5000, 10000, 30000],
)

CONNECTOR_MESSAGES_RECEIVED_TOTAL = Counter(
    "connector_messages_received_total",
    "Inbound messages by acknowledgment",
    ["disposition"],  # completed | abandoned
)

CONNECTOR_RECEIVE_ERRORS_TOTAL = Counter(
    "connector_receive_errors_total",
    "Faults raised while polling, dispatching or acknowledging",
)


class MetricsRegistry:
    """Structured access to connector metrics."""

    batches_total = CONNECTOR_BATCHES_TOTAL
    send_retries_total = CONNECTOR_SEND_RETRIES_TOTAL
    batch_latency_ms = CONNECTOR_BATCH_LATENCY_MS
    messages_received_total = CONNECTOR_MESSAGES_RECEIVED_TOTAL
    receive_errors_total = CONNECTOR_RECEIVE_ERRORS_TOTAL


metrics_registry = MetricsRegistry()
