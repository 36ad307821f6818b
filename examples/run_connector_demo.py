"""
Demo script for TelemetryConnector against the in-memory endpoint.

Shows batching, retry with re-encoding, the failure callback and the
receive loop completing/abandoning cloud-to-device messages.
"""

import asyncio
import random
from datetime import datetime, timezone

from loguru import logger

from telemetry_connector import InMemoryTransport, TelemetryConnector

CONN_STR = "HostName=demo.local;DeviceId=demo-device;SharedAccessKey=ZGVtbw=="


def stamped(reading: dict) -> str:
    """Serializer that stamps the send time, refreshed on every retry."""
    return f'{{"sent_at": "{datetime.now(timezone.utc).isoformat()}", "reading": {reading["v"]}}}'


async def main():
    transport = InMemoryTransport()

    async with TelemetryConnector(
        {
            "conn_str": CONN_STR,
            "messages_per_batch": 5,
            "num_retries": 3,
            "retry_delay_ms": 200,
            "timeout_ms": 500,
            "serializer": stamped,
        },
        transport=transport,
    ) as conn:
        logger.info(f"🚀 {conn.name} opened")

        def on_success(items):
            logger.info(f"✅ Sent batch of {len(items)} (first={items[0]})")

        def on_error(items, exc):
            logger.warning(f"💀 Gave up on {len(items)} readings: {exc}")

        for i in range(20):
            if i == 9:
                transport.fail_next(2)  # recovers on the third attempt
            await conn.send({"v": round(random.uniform(18, 25), 2)}, on_success, on_error)

        # Cloud-to-device commands: reject the first delivery of "reboot"
        transport.enqueue(b"set-interval 30")
        transport.enqueue(b"reboot")
        seen = set()

        def handle(payload: bytes) -> bool:
            cmd = payload.decode()
            first = cmd not in seen
            seen.add(cmd)
            logger.info(f"📨 {cmd} ({'abandon' if cmd == 'reboot' and first else 'complete'})")
            return not (cmd == "reboot" and first)

        conn.start_receiving(handle)
        await asyncio.sleep(1.5)

    logger.info(
        f"📊 batches={len(transport.batches)} attempts={transport.send_attempts} "
        f"completed={len(transport.completed)} abandoned={len(transport.abandoned)}"
    )


if __name__ == "__main__":
    asyncio.run(main())
