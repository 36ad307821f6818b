"""
Small helpers shared across the connector and its CLI.
"""

import gzip
import inspect
import json
import sys
from datetime import datetime, timezone
from typing import IO, Any, Callable, Iterator, Optional


async def maybe_await(fn: Optional[Callable[..., Any]], *args: Any) -> Any:
    """Call a plain or async callable; None callables are skipped."""
    if fn is None:
        return None
    result = fn(*args)
    if inspect.isawaitable(result):
        result = await result
    return result


def utc_now() -> datetime:
    """Get current UTC datetime."""
    return datetime.now(timezone.utc)


def root_cause(exc: BaseException) -> BaseException:
    """Innermost chained cause of an exception."""
    while exc.__cause__ is not None:
        exc = exc.__cause__
    return exc


def iter_ndjson(path: str) -> Iterator[Any]:
    """Yield JSON objects from an NDJSON file, '.gz' file or '-' for stdin."""
    if path == "-":
        fh: IO[str] = sys.stdin
    elif path.endswith(".gz"):
        fh = gzip.open(path, "rt", encoding="utf-8")
    else:
        fh = open(path, "r", encoding="utf-8")
    try:
        for line in fh:
            line = line.strip()
            if line:
                yield json.loads(line)
    finally:
        if fh is not sys.stdin:
            fh.close()
