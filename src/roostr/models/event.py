"""
Immutable Nostr event with canonical serialization and verification.

An [Event][roostr.models.event.Event] is built from the wire JSON a relay
sends and is **untrusted** until [verify()][roostr.models.event.Event.verify]
succeeds: the ``id`` and ``sig`` fields mean nothing before then.

Verification follows
[NIP-01](https://github.com/nostr-protocol/nips/blob/master/01.md):

1. The id must be the SHA-256 of the canonical serialization
   ``[0, pubkey, created_at, kind, tags, content]``.
2. The signature must be a valid
   [BIP-340](https://github.com/bitcoin/bips/blob/master/bip-0340.mediawiki)
   Schnorr signature over the 32-byte id by the x-only ``pubkey``.

See Also:
    [RelayClient][roostr.utils.protocol.RelayClient]: Verifies every event
        before handing it to a sink; failures are dropped, never delivered.
    [roostr.core.exceptions][]: The
        [EventVerificationError][roostr.core.exceptions.EventVerificationError]
        subclasses raised here.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass
from typing import Any

import secp256k1

from roostr.core.exceptions import (
    EventIdMismatchError,
    EventVerificationError,
    MalformedEventError,
    SignatureMismatchError,
)

from ._validation import is_hex, to_str_tuple, validate_instance, validate_int
from .constants import EVENT_ID_HEX_LENGTH, EVENT_KIND_MAX, PUBKEY_HEX_LENGTH, SIGNATURE_HEX_LENGTH


_EVENT_FIELDS = ("id", "pubkey", "created_at", "kind", "tags", "content", "sig")

# x-only keys are lifted to the point with even y (BIP-340)
_EVEN_Y_PREFIX = b"\x02"


def _decode_hex(value: str, name: str, length: int) -> bytes:
    """Decode *value* as exactly *length* lowercase hex characters or raise MalformedEventError."""
    if not is_hex(value, length, lowercase=True):
        raise MalformedEventError(f"{name} must be {length} lowercase hex characters")
    return bytes.fromhex(value)


@dataclass(frozen=True, slots=True)
class Event:
    """Nostr event in wire form.

    Attributes:
        id: 64-char hex SHA-256 of the canonical serialization.
        pubkey: 64-char hex x-only public key of the author.
        created_at: Unix timestamp in seconds.
        kind: Event kind (0-65535).
        tags: Ordered tags, each an ordered tuple of strings. Order is part
            of the signed data and is preserved exactly.
        content: Arbitrary string content.
        sig: 128-char hex Schnorr signature.

    Raises:
        TypeError: If a field has the wrong type.
        ValueError: If ``created_at`` is negative or ``kind`` is out of range.

    Examples:
        ```python
        event = Event.from_json(raw)
        event.verify()           # raises EventVerificationError on failure
        event.is_valid()         # bool convenience
        ```
    """

    id: str
    pubkey: str
    created_at: int
    kind: int
    tags: tuple[tuple[str, ...], ...]
    content: str
    sig: str

    def __post_init__(self) -> None:
        for name in ("id", "pubkey", "content", "sig"):
            validate_instance(getattr(self, name), str, name)
        validate_int(self.created_at, "created_at", minimum=0)
        validate_int(self.kind, "kind", minimum=0, maximum=EVENT_KIND_MAX)

        if isinstance(self.tags, str | bytes):
            raise TypeError("tags must be a sequence of sequences of str")
        tags = tuple(to_str_tuple(tag, "tag") for tag in self.tags)
        object.__setattr__(self, "tags", tags)

    # -------------------------------------------------------------------------
    # Construction
    # -------------------------------------------------------------------------

    @classmethod
    def from_dict(cls, data: Any) -> Event:
        """Build an event from a decoded JSON object.

        Unknown keys are ignored; all seven NIP-01 fields are required.

        Raises:
            TypeError: If *data* is not a dict or a field has the wrong type.
            ValueError: If a required field is missing or out of range.
        """
        validate_instance(data, dict, "event")
        missing = [name for name in _EVENT_FIELDS if name not in data]
        if missing:
            raise ValueError(f"event is missing fields: {', '.join(missing)}")

        tags = data["tags"]
        validate_instance(tags, list, "tags")
        for tag in tags:
            validate_instance(tag, list, "tag")

        return cls(**{name: data[name] for name in _EVENT_FIELDS})

    @classmethod
    def from_json(cls, raw: str | bytes) -> Event:
        """Build an event from its JSON text.

        Raises:
            ValueError: If *raw* is not valid JSON or a field is invalid.
            TypeError: If a field has the wrong type.
        """
        return cls.from_dict(json.loads(raw))

    def to_dict(self) -> dict[str, Any]:
        """Return the wire-format dict (tags as lists)."""
        return {
            "id": self.id,
            "pubkey": self.pubkey,
            "created_at": self.created_at,
            "kind": self.kind,
            "tags": [list(tag) for tag in self.tags],
            "content": self.content,
            "sig": self.sig,
        }

    def to_json(self) -> str:
        """Return the compact wire-format JSON text."""
        return json.dumps(self.to_dict(), separators=(",", ":"), ensure_ascii=False)

    # -------------------------------------------------------------------------
    # Canonical Serialization
    # -------------------------------------------------------------------------

    def serialize(self) -> bytes:
        """Return the canonical UTF-8 serialization that the id commits to.

        Compact JSON of ``[0, pubkey, created_at, kind, tags, content]`` with
        integers kept as numbers and non-ASCII characters unescaped. The
        escaping ``json.dumps`` applies to control characters, quotes and
        backslashes is exactly the set NIP-01 prescribes, so the output is
        byte-identical to what a conforming signer hashed.
        """
        canonical = [0, self.pubkey, self.created_at, self.kind, self.tags, self.content]
        return json.dumps(canonical, separators=(",", ":"), ensure_ascii=False).encode("utf-8")

    def compute_id(self) -> str:
        """Return the hex SHA-256 of [serialize()][roostr.models.event.Event.serialize]."""
        return hashlib.sha256(self.serialize()).hexdigest()

    # -------------------------------------------------------------------------
    # Verification
    # -------------------------------------------------------------------------

    def verify_id(self) -> None:
        """Check that ``id`` is the hash of the canonical serialization.

        Raises:
            MalformedEventError: If ``id`` is not 64 characters long.
            EventIdMismatchError: If the computed id differs (case-sensitive).
        """
        if len(self.id) != EVENT_ID_HEX_LENGTH:
            raise MalformedEventError(
                f"invalid event id: expected {EVENT_ID_HEX_LENGTH} hex characters, "
                f"got {len(self.id)}"
            )
        if self.compute_id() != self.id:
            raise EventIdMismatchError(f"event id {self.id[:16]}... does not match content hash")

    def verify_signature(self) -> None:
        """Check the BIP-340 Schnorr signature over the 32-byte id.

        The signed message is the decoded id, not the JSON text.

        Raises:
            MalformedEventError: If pubkey, sig or id are not lowercase hex of
                64, 128 and 64 characters, or the pubkey is not a curve point.
            SignatureMismatchError: If the signature does not verify.
        """
        pubkey = _decode_hex(self.pubkey, "pubkey", PUBKEY_HEX_LENGTH)
        sig = _decode_hex(self.sig, "signature", SIGNATURE_HEX_LENGTH)
        message = _decode_hex(self.id, "event id", EVENT_ID_HEX_LENGTH)

        try:
            key = secp256k1.PublicKey(_EVEN_Y_PREFIX + pubkey, raw=True)
        except Exception as e:  # libsecp256k1 binding raises bare Exception for invalid points
            raise MalformedEventError(f"failed to parse pubkey: {e}") from e

        if not key.schnorr_verify(message, sig, None, raw=True):
            raise SignatureMismatchError(f"signature verification failed for {self.id[:16]}...")

    def verify(self) -> None:
        """Run [verify_id()][roostr.models.event.Event.verify_id] then
        [verify_signature()][roostr.models.event.Event.verify_signature].

        Stops at the first failure.

        Raises:
            EventVerificationError: The specific subclass of the first failure.
        """
        self.verify_id()
        self.verify_signature()

    def is_valid(self) -> bool:
        """Return True if [verify()][roostr.models.event.Event.verify] passes."""
        try:
            self.verify()
        except EventVerificationError:
            return False
        return True
