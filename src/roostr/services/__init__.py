"""Business logic built on the client layers.

Attributes:
    Synchronizer: Backfills configured identities from public relays into an
        [EventStore][roostr.services.synchronizer.store.EventStore].

See Also:
    [roostr.utils.protocol][]: The relay client each sync job drives.
"""

from roostr.services.synchronizer import (
    MemoryEventStore,
    SyncReport,
    SyncStatus,
    Synchronizer,
    SynchronizerConfig,
)


__all__ = [
    "MemoryEventStore",
    "SyncReport",
    "SyncStatus",
    "Synchronizer",
    "SynchronizerConfig",
]
