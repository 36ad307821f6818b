from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from typing import Deque, Generic, Iterable, List, Tuple, TypeVar

from .envelope import Envelope

T = TypeVar("T")


@dataclass(frozen=True)
class PendingItem(Generic[T]):
    """Wire-encoded envelope paired with the application object it came from."""

    encoded: Envelope
    original: T


class OutboundBuffer(Generic[T]):
    """
    Ordered pending items awaiting transmission.

    Insertion order is delivery order. Not synchronized; the owning sender
    serializes access.
    """

    def __init__(self) -> None:
        self._items: Deque[PendingItem[T]] = deque()

    def __len__(self) -> int:
        return len(self._items)

    def append(self, encoded: Envelope, original: T) -> None:
        self._items.append(PendingItem(encoded, original))

    def size(self) -> int:
        return len(self._items)

    def snapshot(self) -> Tuple[PendingItem[T], ...]:
        return tuple(self._items)

    def clear(self) -> None:
        self._items.clear()

    def replace_all(self, items: Iterable[PendingItem[T]]) -> None:
        self._items = deque(items)

    def originals(self) -> List[T]:
        return [item.original for item in self._items]

    def encoded(self) -> List[Envelope]:
        return [item.encoded for item in self._items]
