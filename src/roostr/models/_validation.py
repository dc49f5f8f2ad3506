"""Shared validation helpers for frozen dataclass models.

Private module -- not part of the public API. Used by ``__post_init__`` and
``from_dict`` methods in sibling model modules to enforce the wire types of
Nostr data (``bool`` is never accepted where an ``int`` is expected, floats
are never accepted as integers).
"""

from __future__ import annotations

import string
from collections.abc import Iterable
from typing import Any


_HEX_DIGITS = frozenset(string.hexdigits)
_LOWER_HEX_DIGITS = frozenset("0123456789abcdef")


def validate_instance(value: Any, expected: type, name: str) -> None:
    """Raise ``TypeError`` if *value* is not an instance of *expected*."""
    if not isinstance(value, expected):
        article = "an" if expected.__name__[0] in "AEIOUaeiou" else "a"
        raise TypeError(f"{name} must be {article} {expected.__name__}, got {type(value).__name__}")


def validate_int(
    value: Any,
    name: str,
    *,
    minimum: int | None = None,
    maximum: int | None = None,
) -> None:
    """Raise if *value* is not an ``int`` (``bool`` excluded) within bounds."""
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"{name} must be an int, got {type(value).__name__}")
    if minimum is not None and value < minimum:
        raise ValueError(f"{name} must be >= {minimum}, got {value}")
    if maximum is not None and value > maximum:
        raise ValueError(f"{name} must be <= {maximum}, got {value}")


def is_hex(value: str, length: int | None = None, *, lowercase: bool = False) -> bool:
    """Return True if *value* is a hex string, optionally of an exact length."""
    if length is not None and len(value) != length:
        return False
    digits = _LOWER_HEX_DIGITS if lowercase else _HEX_DIGITS
    return bool(value) and all(c in digits for c in value)


def validate_hex(value: Any, name: str, length: int) -> None:
    """Raise if *value* is not a lowercase hex ``str`` of exactly *length* chars."""
    validate_instance(value, str, name)
    if not is_hex(value, length, lowercase=True):
        raise ValueError(f"{name} must be {length} lowercase hex characters")


def to_str_tuple(values: Iterable[Any], name: str) -> tuple[str, ...]:
    """Convert an iterable of strings to a tuple, rejecting non-strings."""
    if isinstance(values, str):
        raise TypeError(f"{name} must be a sequence of str, not a str")
    result = tuple(values)
    for item in result:
        validate_instance(item, str, f"{name} item")
    return result
