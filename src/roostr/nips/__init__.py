"""Nostr Implementation Possibilities: identity encodings and resolution.

The NIPs layer depends on [roostr.models][roostr.models] and
[roostr.utils][roostr.utils]. Only NIP-05 performs I/O (one HTTPS request).

Attributes:
    nip19: ``npub`` encoding and pubkey input validation.
    nip05: ``name@domain`` resolution over ``/.well-known/nostr.json`` and
        [resolve_identity()][roostr.nips.nip05.resolve_identity], which accepts
        any of the three identity forms.
"""

from roostr.nips.nip05 import (
    IdentitySource,
    Nip05Result,
    ResolvedIdentity,
    is_nip05_identifier,
    parse_nip05,
    resolve_identity,
    resolve_nip05,
)
from roostr.nips.nip19 import (
    decode_npub,
    encode_npub,
    is_valid_hex_pubkey,
    is_valid_npub,
    validate_pubkey,
)


__all__ = [
    "IdentitySource",
    "Nip05Result",
    "ResolvedIdentity",
    "decode_npub",
    "encode_npub",
    "is_nip05_identifier",
    "is_valid_hex_pubkey",
    "is_valid_npub",
    "parse_nip05",
    "resolve_identity",
    "resolve_nip05",
    "validate_pubkey",
]
