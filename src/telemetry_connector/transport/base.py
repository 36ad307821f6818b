from __future__ import annotations

from typing import Optional, Protocol, Sequence, runtime_checkable

from ..envelope import Envelope


@runtime_checkable
class Transport(Protocol):
    """Endpoint primitives consumed by the connector.

    send_batch is atomic from the caller's view: it either raises or every
    envelope was accepted.
    """

    @property
    def name(self) -> str: ...

    async def send_batch(self, envelopes: Sequence[Envelope]) -> None: ...

    async def receive(self, timeout: Optional[float] = None) -> Optional[Envelope]:
        """Next inbound message, or None when nothing arrived within ``timeout`` seconds."""
        ...

    async def complete(self, envelope: Envelope) -> None: ...

    async def abandon(self, envelope: Envelope) -> None: ...

    async def close(self) -> None: ...
