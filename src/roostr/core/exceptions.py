"""Roostr exception hierarchy.

Typed exceptions for every error category of the sync client, so callers can
tell transient connectivity failures from malformed data and from caller
mistakes, and so ``CancelledError`` always propagates untouched.

Exception hierarchy:

```text
RoostrError (base -- never raised directly)
├── ConfigurationError            -- config validation, bad YAML
├── ConnectivityError             -- dial, TLS, socket I/O failures
│   ├── RelayTimeoutError         -- connect or handshake timed out
│   ├── RelaySSLError             -- certificate / TLS failure
│   ├── HandshakeError            -- bad status line or Accept mismatch
│   └── ConnectionClosedError     -- peer or local close
├── ProtocolError                 -- wire-level violations
│   ├── FrameError                -- invalid or truncated WebSocket frame
│   │   └── MessageTooLargeError  -- frame or message above the size cap
│   └── RelayMessageError         -- malformed relay message (skipped)
├── EventVerificationError        -- event failed verification (dropped)
│   ├── MalformedEventError       -- bad hex, wrong length, unparsable key
│   ├── EventIdMismatchError      -- id is not the hash of the content
│   └── SignatureMismatchError    -- Schnorr signature does not verify
├── Bech32Error                   -- checksum text encoding failures
│   ├── InvalidChecksumError
│   ├── InvalidHrpError
│   ├── InvalidDataError
│   └── InvalidNpubError          -- wrong HRP or payload length for npub
├── IdentityError                 -- user-entered identity could not resolve
│   ├── InvalidPubkeyError        -- neither npub, hex nor NIP-05
│   └── Nip05Error
│       ├── Nip05FormatError      -- not a name@domain identifier
│       ├── Nip05FetchError       -- HTTP/JSON failure fetching nostr.json
│       ├── Nip05NotFoundError    -- name absent from nostr.json
│       └── Nip05InvalidPubkeyError
├── SubscriptionCancelledError    -- caller cancelled a subscription
├── StorageError                  -- EventStore insert failure
└── SyncInProgressError           -- a sync job is already running
```

Note:
    [RelayMessageError][roostr.core.exceptions.RelayMessageError] and
    [EventVerificationError][roostr.core.exceptions.EventVerificationError]
    are recovered locally by
    [RelayClient][roostr.utils.protocol.RelayClient]: one bad message or
    forged event never aborts a backfill. Everything else surfaces to the
    caller.
"""

from __future__ import annotations


class RoostrError(Exception):
    """Base exception for all Roostr errors.

    Never raised directly -- always use a specific subclass.
    """


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class ConfigurationError(RoostrError):
    """Invalid or missing configuration (YAML, CLI flags)."""


# ---------------------------------------------------------------------------
# Connectivity
# ---------------------------------------------------------------------------


class ConnectivityError(RoostrError):
    """Base for relay connectivity errors: dial, TLS and socket I/O failures."""


class RelayTimeoutError(ConnectivityError):
    """Connection or handshake timed out."""


class RelaySSLError(ConnectivityError):
    """TLS/SSL certificate or handshake failure."""


class HandshakeError(ConnectivityError):
    """The HTTP upgrade handshake did not produce a valid WebSocket.

    Raised for a non-101 status line, a missing or wrong
    ``Sec-WebSocket-Accept`` header, or a truncated response. Guards against
    endpoints that answer plain HTTP without upgrading.
    """


class ConnectionClosedError(ConnectivityError):
    """The WebSocket was closed, by the peer or locally.

    Attributes:
        code: Close status code sent by the peer, if any.
        reason: Close reason sent by the peer, if any.
    """

    def __init__(
        self,
        message: str = "connection closed",
        *,
        code: int | None = None,
        reason: str = "",
    ) -> None:
        super().__init__(message)
        self.code = code
        self.reason = reason


# ---------------------------------------------------------------------------
# Protocol
# ---------------------------------------------------------------------------


class ProtocolError(RoostrError):
    """Wire-level protocol violation (WebSocket framing or Nostr messages)."""


class FrameError(ProtocolError):
    """Invalid, unsupported or truncated WebSocket frame."""


class MessageTooLargeError(FrameError):
    """A frame or reassembled message exceeds the configured size cap."""


class RelayMessageError(ProtocolError):
    """A relay message could not be parsed (bad JSON, wrong arity or types)."""


# ---------------------------------------------------------------------------
# Event verification
# ---------------------------------------------------------------------------


class EventVerificationError(RoostrError):
    """Base for events that failed verification.

    See Also:
        [Event.verify()][roostr.models.event.Event.verify]: Raises the
            subclasses below.
    """


class MalformedEventError(EventVerificationError):
    """Event field has malformed hex, a wrong length or an unparsable key."""


class EventIdMismatchError(EventVerificationError):
    """Event id does not match the SHA-256 of its canonical serialization."""


class SignatureMismatchError(EventVerificationError):
    """BIP-340 Schnorr signature does not verify against the pubkey."""


# ---------------------------------------------------------------------------
# Bech32
# ---------------------------------------------------------------------------


class Bech32Error(RoostrError):
    """Base for bech32 decoding and encoding failures."""


class InvalidChecksumError(Bech32Error):
    """The bech32 checksum does not verify."""


class InvalidHrpError(Bech32Error):
    """The human-readable part is empty or has out-of-range characters."""


class InvalidDataError(Bech32Error):
    """The data part has bad characters, bad padding or a bad layout."""


class InvalidNpubError(Bech32Error):
    """A valid bech32 string that is not an npub (wrong HRP or length)."""


# ---------------------------------------------------------------------------
# Identity
# ---------------------------------------------------------------------------


class IdentityError(RoostrError):
    """Base for identity resolution failures."""


class InvalidPubkeyError(IdentityError):
    """Input is not a valid npub, 64-character hex pubkey or NIP-05 identifier."""


class Nip05Error(IdentityError):
    """Base for NIP-05 resolution failures."""


class Nip05FormatError(Nip05Error):
    """Identifier is not of the form ``name@domain``."""


class Nip05FetchError(Nip05Error):
    """``/.well-known/nostr.json`` could not be fetched or decoded."""


class Nip05NotFoundError(Nip05Error):
    """The requested name is absent from the domain's ``nostr.json``."""


class Nip05InvalidPubkeyError(Nip05Error):
    """The name maps to a value that is not a 64-character hex pubkey."""


# ---------------------------------------------------------------------------
# Subscription / sync
# ---------------------------------------------------------------------------


class SubscriptionCancelledError(RoostrError):
    """The caller cancelled an active subscription.

    Attributes:
        subscription_id: Id of the cancelled subscription.
    """

    def __init__(self, subscription_id: str) -> None:
        super().__init__(f"subscription {subscription_id} cancelled")
        self.subscription_id = subscription_id


class StorageError(RoostrError):
    """An [EventStore][roostr.services.synchronizer.store.EventStore] failed to persist an event."""


class SyncInProgressError(RoostrError):
    """A sync job is already running on this synchronizer."""
