"""Frozen dataclasses with zero network I/O for relays, events, filters and messages.

Every model uses ``@dataclass(frozen=True, slots=True)`` and validates in
``__post_init__``, so invalid instances never escape the constructor.

Attributes:
    Event: Nostr event with canonical serialization, id and BIP-340
        signature verification.
    Filter: NIP-01 subscription filter with local matching.
    Relay: Validated ``ws://``/``wss://`` relay URL with dial parameters.
    RelayMessage: Parsed relay-to-client message envelope.

Note:
    All models use ``object.__setattr__`` in ``__post_init__`` to normalize
    fields on frozen dataclasses.

See Also:
    [roostr.models.event][]: Event verification.
    [roostr.models.message][]: ``REQ``/``CLOSE`` encoding and relay message
        parsing.
    [roostr.models.constants][]: Message labels and field sizes.
"""

from .constants import EVENT_KIND_MAX, ClientMessageType, RelayMessageType
from .event import Event
from .filter import Filter
from .message import RelayMessage, encode_close, encode_req
from .relay import Relay


__all__ = [
    "EVENT_KIND_MAX",
    "ClientMessageType",
    "Event",
    "Filter",
    "Relay",
    "RelayMessage",
    "RelayMessageType",
    "encode_close",
    "encode_req",
]
