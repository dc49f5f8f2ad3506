"""
NIP-19 ``npub`` encoding of public keys.

Converts between the 64-character hex form of a public key and its bech32
``npub1...`` form, and validates user input that may be in either.

See Also:
    [roostr.utils.bech32][]: The underlying checksummed codec.
    [resolve_identity()][roostr.nips.nip05.resolve_identity]: Adds NIP-05
        identifiers on top of [validate_pubkey()][roostr.nips.nip19.validate_pubkey].

Examples:
    ```python
    encode_npub("7e7e9c42a91bfef19fa929e5fda1b72e0ebc1a4c1141673e2794234d86addf4e")
    # 'npub10elfcs4fr0l0r8af98jlmgdh9c8tcxjvz9qkw038js35mp4dma8qzvjptg'
    validate_pubkey("  npub10elfcs4fr0l0r8af98jlmgdh9c8tcxjvz9qkw038js35mp4dma8qzvjptg ")
    # ('7e7e9c42...', 'npub10elf...')
    ```
"""

from __future__ import annotations

from typing import Final

from roostr.core.exceptions import Bech32Error, InvalidNpubError, InvalidPubkeyError
from roostr.models._validation import is_hex
from roostr.models.constants import PUBKEY_HEX_LENGTH
from roostr.utils import bech32


NPUB_HRP: Final[str] = "npub"
_PUBKEY_BYTES: Final[int] = 32


def encode_npub(hex_pubkey: str) -> str:
    """Encode a 64-character hex public key as ``npub1...``.

    Raises:
        InvalidPubkeyError: If *hex_pubkey* is not 64 hex characters.
    """
    if not is_valid_hex_pubkey(hex_pubkey):
        raise InvalidPubkeyError(f"invalid hex pubkey: expected {PUBKEY_HEX_LENGTH} hex characters")
    return bech32.encode(NPUB_HRP, bytes.fromhex(hex_pubkey))


def decode_npub(npub: str) -> str:
    """Decode an ``npub1...`` string into the lowercase hex public key.

    Raises:
        InvalidNpubError: If the string is not valid bech32, its HRP is not
            ``npub`` or its payload is not 32 bytes.
    """
    try:
        hrp, data = bech32.decode(npub)
    except Bech32Error as e:
        raise InvalidNpubError(f"invalid npub: {e}") from e

    if hrp != NPUB_HRP:
        raise InvalidNpubError(f"invalid npub: expected 'npub' prefix, got {hrp!r}")
    if len(data) != _PUBKEY_BYTES:
        raise InvalidNpubError(f"invalid npub: expected {_PUBKEY_BYTES} bytes, got {len(data)}")
    return data.hex()


def is_valid_hex_pubkey(value: str) -> bool:
    """Return True if *value* is exactly 64 hex characters (either case)."""
    return is_hex(value, PUBKEY_HEX_LENGTH)


def is_valid_npub(value: str) -> bool:
    """Return True if *value* decodes as an ``npub`` with a 32-byte payload."""
    try:
        decode_npub(value)
    except InvalidNpubError:
        return False
    return True


def validate_pubkey(value: str) -> tuple[str, str]:
    """Validate a public key given as npub or hex and return both forms.

    Surrounding whitespace is ignored. Input starting with ``npub`` (any case)
    is only ever treated as bech32; otherwise a 64-character hex string is
    accepted and lower-cased.

    Returns:
        ``(hex_pubkey, npub)`` with the hex lower-case and the npub canonical.

    Raises:
        InvalidPubkeyError: If *value* is neither a valid npub nor a valid
            hex pubkey.
    """
    value = value.strip()

    if value.lower().startswith(NPUB_HRP):
        try:
            hex_pubkey = decode_npub(value)
        except InvalidNpubError as e:
            raise InvalidPubkeyError(str(e)) from e
        return hex_pubkey, encode_npub(hex_pubkey)

    if is_valid_hex_pubkey(value):
        hex_pubkey = value.lower()
        return hex_pubkey, encode_npub(hex_pubkey)

    raise InvalidPubkeyError("invalid pubkey: expected npub or 64-character hex")
