"""Synchronizer service package.

Re-exports all public symbols::

    from roostr.services.synchronizer import Synchronizer, SynchronizerConfig
"""

from .configs import DEFAULT_SYNC_RELAYS, SynchronizerConfig, TimeoutsConfig
from .service import RelayStatus, RelaySyncOutcome, SyncReport, SyncStatus, Synchronizer
from .store import EventStore, MemoryEventStore


__all__ = [
    "DEFAULT_SYNC_RELAYS",
    "EventStore",
    "MemoryEventStore",
    "RelayStatus",
    "RelaySyncOutcome",
    "SyncReport",
    "SyncStatus",
    "Synchronizer",
    "SynchronizerConfig",
    "TimeoutsConfig",
]
