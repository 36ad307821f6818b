from __future__ import annotations

import asyncio
import json
from typing import List, Optional

import typer
from loguru import logger

from .connector import TelemetryConnector
from .transport import InMemoryTransport
from .utils import iter_ndjson

app = typer.Typer(help="telemetry-connector operational CLI")

# ---------------------------
# Common options
# ---------------------------


def conn_str_opt() -> str:
    return typer.Option(
        ..., "--conn-str", envvar="TELEMETRY_CONN_STR", help="Device connection string"
    )


def device_id_opt() -> Optional[str]:
    return typer.Option(
        None,
        "--device-id",
        envvar="TELEMETRY_DEVICE_ID",
        help="Device id (if not embedded in the connection string)",
    )


def batch_opt(default=1) -> int:
    return typer.Option(default, "--batch-size", help="Messages accumulated per transmission")


def retries_opt(default=5) -> int:
    return typer.Option(default, "--retries", help="Transmission attempts per batch")


def loopback_opt() -> bool:
    return typer.Option(False, "--loopback", help="Use the in-memory endpoint (dry run)")


def _connector(
    conn_str: str,
    device_id: Optional[str],
    loopback: bool,
    **extra,
) -> TelemetryConnector:
    args = {"conn_str": conn_str, **extra}
    if device_id:
        args["device_id"] = device_id
    return TelemetryConnector(args, transport=InMemoryTransport() if loopback else None)


# ---------------------------
# Send
# ---------------------------


@app.command("send")
def send(
    payloads: List[str] = typer.Argument(..., help="JSON payloads, one per argument"),
    conn_str: str = conn_str_opt(),
    device_id: Optional[str] = device_id_opt(),
    batch_size: int = batch_opt(),
    retries: int = retries_opt(),
    loopback: bool = loopback_opt(),
):
    try:
        objs = [json.loads(p) for p in payloads]
    except json.JSONDecodeError as e:
        raise typer.BadParameter(f"invalid JSON payload: {e}")
    conn = _connector(
        conn_str, device_id, loopback, messages_per_batch=batch_size, num_retries=retries
    )
    summary = asyncio.run(_send(conn, objs))
    typer.echo(json.dumps(summary, indent=2))
    if summary["failed"]:
        raise typer.Exit(code=1)


@app.command("ingest-ndjson")
def ingest_ndjson(
    path: str = typer.Argument(..., help="File path or '-' for stdin (.gz ok)"),
    conn_str: str = conn_str_opt(),
    device_id: Optional[str] = device_id_opt(),
    batch_size: int = batch_opt(100),
    retries: int = retries_opt(),
    loopback: bool = loopback_opt(),
):
    conn = _connector(
        conn_str, device_id, loopback, messages_per_batch=batch_size, num_retries=retries
    )
    summary = asyncio.run(_send(conn, iter_ndjson(path)))
    typer.echo(json.dumps(summary, indent=2))
    if summary["failed"]:
        raise typer.Exit(code=1)


async def _send(conn: TelemetryConnector, objs) -> dict:
    sent = 0
    failed = 0

    def on_success(items):
        nonlocal sent
        sent += len(items)

    def on_error(items, exc):
        nonlocal failed
        failed += len(items)
        logger.error(f"Dropping {len(items)} messages: {exc}")

    n = 0
    async with conn:
        for obj in objs:
            n += 1
            result = await conn.send(obj, on_success, on_error)
            if not result.ok:
                break
        else:
            await conn.flush(on_success, on_error)
    return {"submitted": n, "sent": sent, "failed": failed}


# ---------------------------
# Receive
# ---------------------------


def _verdict(payload: Optional[bytes], abandon: bool) -> bool:
    text = payload.decode("utf-8", errors="replace") if payload is not None else ""
    typer.echo(text)
    return not abandon


@app.command("receive-once")
def receive_once(
    conn_str: str = conn_str_opt(),
    device_id: Optional[str] = device_id_opt(),
    timeout_ms: int = typer.Option(60000, "--timeout-ms", help="Poll timeout"),
    abandon: bool = typer.Option(False, "--abandon", help="Abandon instead of complete"),
):
    async def _run():
        async with _connector(conn_str, device_id, False) as conn:
            return await conn.receive_once(
                lambda payload: _verdict(payload, abandon),
                lambda exc: False,
                timeout_ms=timeout_ms,
            )

    disposition = asyncio.run(_run())
    if disposition is None:
        typer.echo("no message", err=True)
        raise typer.Exit(code=2)
    logger.info(f"Message {disposition.value}")


@app.command("listen")
def listen(
    conn_str: str = conn_str_opt(),
    device_id: Optional[str] = device_id_opt(),
    timeout_ms: int = typer.Option(60000, "--timeout-ms", help="Wait after an empty poll"),
    abandon: bool = typer.Option(False, "--abandon", help="Abandon instead of complete"),
):
    """Poll for cloud-to-device messages until interrupted."""

    async def _run():
        async with _connector(conn_str, device_id, False) as conn:
            task = conn.start_receiving(
                lambda payload: _verdict(payload, abandon), args={"timeout_ms": timeout_ms}
            )
            await task

    try:
        asyncio.run(_run())
    except KeyboardInterrupt:
        logger.info("Interrupted")


def main() -> None:
    app()


if __name__ == "__main__":
    main()
