"""Bech32 checksummed text encoding (BIP-173).

Used by [roostr.nips.nip19][] for ``npub`` identifiers. Only the original
bech32 constant is implemented; NIP-19 does not use bech32m.

Attributes:
    CHARSET: The 32-symbol alphabet, indexed by 5-bit value.
    bech32_decode: Split and checksum-verify a string into HRP and 5-bit groups.
    decode: [bech32_decode][roostr.utils.bech32.bech32_decode] plus strict
        5-to-8 bit repacking.
    encode: Encode an HRP and bytes into a bech32 string.
    convert_bits: General power-of-two base conversion.

Note:
    The checksum is verified before any other interpretation of the data
    part; a string with a bad checksum is never partially decoded.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from typing import Final

from roostr.core.exceptions import InvalidChecksumError, InvalidDataError, InvalidHrpError


CHARSET: Final[str] = "qpzry9x8gf2tvdw0s3jn54khce6mua7l"

_CHARSET_REV: Final[dict[str, int]] = {c: i for i, c in enumerate(CHARSET)}
_GENERATORS: Final[tuple[int, ...]] = (0x3B6A57B2, 0x26508E6D, 0x1EA119FA, 0x3D4233DD, 0x2A1462B3)
_CHECKSUM_LENGTH: Final[int] = 6
_SEPARATOR: Final[str] = "1"


def polymod(values: Iterable[int]) -> int:
    """Compute the BCH checksum polynomial over *values*."""
    chk = 1
    for value in values:
        top = chk >> 25
        chk = (chk & 0x1FFFFFF) << 5 ^ value
        for i, generator in enumerate(_GENERATORS):
            if (top >> i) & 1:
                chk ^= generator
    return chk


def hrp_expand(hrp: str) -> list[int]:
    """Expand the HRP into the values fed to the checksum."""
    return [ord(c) >> 5 for c in hrp] + [0] + [ord(c) & 31 for c in hrp]


def verify_checksum(hrp: str, data: Sequence[int]) -> bool:
    """Return True if *data* (including the 6 checksum symbols) is valid for *hrp*."""
    return polymod(hrp_expand(hrp) + list(data)) == 1


def create_checksum(hrp: str, data: Sequence[int]) -> list[int]:
    """Return the 6 checksum symbols for *hrp* and 5-bit *data*."""
    values = hrp_expand(hrp) + list(data)
    mod = polymod(values + [0] * _CHECKSUM_LENGTH) ^ 1
    return [(mod >> 5 * (5 - i)) & 31 for i in range(_CHECKSUM_LENGTH)]


def convert_bits(data: Iterable[int], from_bits: int, to_bits: int, *, pad: bool) -> list[int]:
    """Regroup *data* from *from_bits*-bit values into *to_bits*-bit values.

    Args:
        data: Input values, each below ``2 ** from_bits``.
        from_bits: Width of each input value.
        to_bits: Width of each output value.
        pad: If True, zero-pad a trailing partial group (encoding). If
            False, a leftover of *from_bits* or more bits, or any non-zero
            leftover bits, is an error (strict decoding).

    Raises:
        InvalidDataError: If an input value is out of range or the padding
            is invalid.
    """
    acc = 0
    bits = 0
    result: list[int] = []
    max_value = (1 << to_bits) - 1
    max_acc = (1 << (from_bits + to_bits - 1)) - 1
    for value in data:
        if value < 0 or value >> from_bits:
            raise InvalidDataError(f"value {value} does not fit in {from_bits} bits")
        acc = ((acc << from_bits) | value) & max_acc
        bits += from_bits
        while bits >= to_bits:
            bits -= to_bits
            result.append((acc >> bits) & max_value)

    if pad:
        if bits:
            result.append((acc << (to_bits - bits)) & max_value)
    elif bits >= from_bits or ((acc << (to_bits - bits)) & max_value):
        raise InvalidDataError("invalid padding in data part")
    return result


def bech32_decode(bech: str) -> tuple[str, list[int]]:
    """Split *bech* into its HRP and 5-bit data values, verifying the checksum.

    Returns:
        The lower-cased HRP and the data values without the checksum.

    Raises:
        InvalidDataError: Mixed case, missing separator, short data part or
            a character outside the alphabet.
        InvalidHrpError: Empty HRP or a character outside ASCII 33-126.
        InvalidChecksumError: The checksum does not verify.
    """
    if bech.lower() != bech and bech.upper() != bech:
        raise InvalidDataError("mixed-case bech32 string")
    bech = bech.lower()

    pos = bech.rfind(_SEPARATOR)
    if pos < 0:
        raise InvalidDataError("missing separator '1'")
    if pos == 0:
        raise InvalidHrpError("empty human-readable part")
    if pos + 1 + _CHECKSUM_LENGTH > len(bech):
        raise InvalidDataError("data part shorter than the checksum")

    hrp = bech[:pos]
    if any(not 33 <= ord(c) <= 126 for c in hrp):
        raise InvalidHrpError(f"invalid character in human-readable part {hrp!r}")

    try:
        data = [_CHARSET_REV[c] for c in bech[pos + 1 :]]
    except KeyError as e:
        raise InvalidDataError(f"invalid data character {e.args[0]!r}") from e

    if not verify_checksum(hrp, data):
        raise InvalidChecksumError("bech32 checksum mismatch")
    return hrp, data[:-_CHECKSUM_LENGTH]


def decode(bech: str) -> tuple[str, bytes]:
    """Decode *bech* into its HRP and payload bytes.

    Raises:
        Bech32Error: Any failure of
            [bech32_decode][roostr.utils.bech32.bech32_decode] or of strict
            5-to-8 bit repacking.
    """
    hrp, data = bech32_decode(bech)
    return hrp, bytes(convert_bits(data, 5, 8, pad=False))


def encode(hrp: str, data: bytes) -> str:
    """Encode *data* under *hrp*, appending the checksum.

    Raises:
        InvalidHrpError: If *hrp* is empty or has characters outside ASCII 33-126.
    """
    if not hrp or any(not 33 <= ord(c) <= 126 for c in hrp):
        raise InvalidHrpError(f"invalid human-readable part {hrp!r}")
    hrp = hrp.lower()
    values = convert_bits(data, 8, 5, pad=True)
    checksum = create_checksum(hrp, values)
    return hrp + _SEPARATOR + "".join(CHARSET[v] for v in values + checksum)
