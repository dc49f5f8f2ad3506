r"""Roostr -- Nostr relay sync client.

Opens outbound WebSocket connections to public Nostr relays, retrieves the
stored history of configured identities, verifies every event
cryptographically and hands verified events to a storage sink.

Architecture follows a layered structure where imports flow strictly
downward:

```text
            services           Sync orchestration
           /    |    \
        nips  utils  models    Identity, transport + client, data types
           \    |    /
             core              Exceptions, logging, YAML, metrics
```

Attributes:
    core: Exceptions, structured logging, YAML loading, Prometheus metrics.
    models: Frozen dataclasses for events, filters, relays and messages.
    utils: Bech32, WebSocket transport, relay client, HTTP helpers.
    nips: NIP-19 npub encoding and NIP-05 identity resolution.
    services: The [Synchronizer][roostr.services.synchronizer.Synchronizer].

Note:
    For lightweight usage, import directly from subpackages::

        from roostr.models import Event
        from roostr.utils.protocol import RelayClient

    Top-level imports (``from roostr import RelayClient``) use lazy loading
    and resolve on first access.
"""

import importlib
from importlib.metadata import version as _get_version


__version__ = _get_version("roostr")

__all__ = [
    "Event",
    "Filter",
    "Logger",
    "MemoryEventStore",
    "Relay",
    "RelayClient",
    "SubscriptionResult",
    "Synchronizer",
    "SynchronizerConfig",
    "WebSocketConnection",
    "resolve_identity",
    "validate_pubkey",
]

_LAZY_IMPORTS: dict[str, tuple[str, str]] = {
    "Logger": ("roostr.core", "Logger"),
    "Event": ("roostr.models", "Event"),
    "Filter": ("roostr.models", "Filter"),
    "Relay": ("roostr.models", "Relay"),
    "RelayClient": ("roostr.utils.protocol", "RelayClient"),
    "SubscriptionResult": ("roostr.utils.protocol", "SubscriptionResult"),
    "WebSocketConnection": ("roostr.utils.websocket", "WebSocketConnection"),
    "resolve_identity": ("roostr.nips", "resolve_identity"),
    "validate_pubkey": ("roostr.nips", "validate_pubkey"),
    "MemoryEventStore": ("roostr.services", "MemoryEventStore"),
    "Synchronizer": ("roostr.services", "Synchronizer"),
    "SynchronizerConfig": ("roostr.services", "SynchronizerConfig"),
}


def __getattr__(name: str) -> object:
    if name in _LAZY_IMPORTS:
        module_path, attr_name = _LAZY_IMPORTS[name]
        module = importlib.import_module(module_path)
        value = getattr(module, attr_name)
        globals()[name] = value  # Cache for subsequent access
        return value
    raise AttributeError(f"module 'roostr' has no attribute {name!r}")


def __dir__() -> list[str]:
    return __all__
