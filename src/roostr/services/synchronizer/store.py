"""Event storage sink used by the synchronizer.

Persistence is an external concern: the synchronizer only needs something
with an async ``insert_event`` that reports whether the event was new.
[MemoryEventStore][roostr.services.synchronizer.store.MemoryEventStore] is
the in-process implementation used by the CLI and the tests.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Protocol, runtime_checkable


if TYPE_CHECKING:
    from roostr.models.event import Event


@runtime_checkable
class EventStore(Protocol):
    """Destination for verified events.

    Implementations raise
    [StorageError][roostr.core.exceptions.StorageError] when an insert fails;
    the synchronizer logs it and keeps going.
    """

    async def insert_event(self, event: Event) -> bool:
        """Store *event*; return True if it was new, False if already present."""
        ...


class MemoryEventStore:
    """De-duplicating in-memory store keyed by event id, in insertion order."""

    def __init__(self) -> None:
        self._events: dict[str, Event] = {}
        self._lock = asyncio.Lock()

    async def insert_event(self, event: Event) -> bool:
        async with self._lock:
            if event.id in self._events:
                return False
            self._events[event.id] = event
            return True

    @property
    def events(self) -> list[Event]:
        return list(self._events.values())

    def __len__(self) -> int:
        return len(self._events)

    def __contains__(self, event_id: object) -> bool:
        return event_id in self._events
