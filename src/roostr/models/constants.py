"""Shared constants for the models layer.

Protocol-level sizes and the message-type enumerations of
[NIP-01](https://github.com/nostr-protocol/nips/blob/master/01.md), kept in one
place so models, the transport and the client agree on them.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Final


EVENT_KIND_MAX: Final[int] = 65_535

# Hex lengths of the fixed-size event fields
EVENT_ID_HEX_LENGTH: Final[int] = 64
PUBKEY_HEX_LENGTH: Final[int] = 64
SIGNATURE_HEX_LENGTH: Final[int] = 128


class RelayMessageType(StrEnum):
    """Relay-to-client message labels.

    Attributes:
        EVENT: ``["EVENT", sub_id, event]`` -- an event matching a subscription.
        EOSE: ``["EOSE", sub_id]`` -- end of stored events for a subscription.
        NOTICE: ``["NOTICE", message]`` -- human-readable relay notice.
        CLOSED: ``["CLOSED", sub_id, reason]`` -- relay ended a subscription.
        OK: ``["OK", event_id, accepted, message]`` -- publish acknowledgement.
        AUTH: ``["AUTH", challenge]`` -- NIP-42 authentication challenge.
    """

    EVENT = "EVENT"
    EOSE = "EOSE"
    NOTICE = "NOTICE"
    CLOSED = "CLOSED"
    OK = "OK"
    AUTH = "AUTH"


class ClientMessageType(StrEnum):
    """Client-to-relay message labels used by the read path."""

    REQ = "REQ"
    CLOSE = "CLOSE"
