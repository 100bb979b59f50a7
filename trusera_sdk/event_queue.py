from __future__ import annotations

from collections import deque
from collections.abc import Iterable

from trusera_sdk.events import Event


class EventQueue:
    """FIFO buffer of events waiting for delivery.

    Every method completes without awaiting, so on a single event loop each
    call is atomic with respect to the others.
    """

    def __init__(self) -> None:
        self._events: deque[Event] = deque()

    def __len__(self) -> int:
        return len(self._events)

    def append(self, event: Event) -> int:
        self._events.append(event)
        return len(self._events)

    def take(self, limit: int) -> list[Event]:
        count = min(limit, len(self._events))
        return [self._events.popleft() for _ in range(count)]

    def requeue(self, batch: Iterable[Event]) -> None:
        self._events.extendleft(reversed(list(batch)))

    def snapshot(self) -> list[Event]:
        return list(self._events)
