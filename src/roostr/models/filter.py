"""
NIP-01 subscription filter.

A [Filter][roostr.models.filter.Filter] is the third element of a ``REQ``
message. All fields are optional; an empty filter matches every event.

See Also:
    [encode_req()][roostr.models.message.encode_req]: Wraps a filter into a
        ``["REQ", sub_id, filter]`` message.
    [Synchronizer][roostr.services.synchronizer.Synchronizer]: Uses
        [matches()][roostr.models.filter.Filter.matches] to drop events a relay
        returned outside the requested window.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from ._validation import to_str_tuple, validate_hex, validate_instance, validate_int
from .constants import EVENT_ID_HEX_LENGTH, EVENT_KIND_MAX, PUBKEY_HEX_LENGTH


if TYPE_CHECKING:
    from .event import Event


def _optional_tuple(values: Iterable[Any] | None, name: str) -> tuple[Any, ...] | None:
    if values is None:
        return None
    if isinstance(values, str | bytes):
        raise TypeError(f"{name} must be a sequence, not {type(values).__name__}")
    return tuple(values)


@dataclass(frozen=True, slots=True)
class Filter:
    """Immutable NIP-01 filter.

    Attributes:
        ids: Event ids (64-char lowercase hex).
        authors: Author pubkeys (64-char lowercase hex).
        kinds: Event kinds (0-65535).
        since: Lower bound on ``created_at`` (inclusive).
        until: Upper bound on ``created_at`` (inclusive).
        limit: Maximum number of stored events the relay should return.
        tags: Single-letter tag filters, e.g. ``{"e": ["<id>"]}``, rendered
            as ``"#e"`` keys.

    Raises:
        TypeError: If a field has the wrong type.
        ValueError: If a hex value, kind, timestamp or limit is out of range,
            or a tag name is not a single letter.

    Examples:
        ```python
        f = Filter(authors=[pubkey], kinds=[1], since=1700000000)
        f.to_dict()  # {"authors": [...], "kinds": [1], "since": 1700000000}
        ```
    """

    ids: tuple[str, ...] | None = None
    authors: tuple[str, ...] | None = None
    kinds: tuple[int, ...] | None = None
    since: int | None = None
    until: int | None = None
    limit: int | None = None
    tags: Mapping[str, tuple[str, ...]] = field(default_factory=dict, hash=False)

    def __post_init__(self) -> None:
        ids = _optional_tuple(self.ids, "ids")
        authors = _optional_tuple(self.authors, "authors")
        kinds = _optional_tuple(self.kinds, "kinds")

        for value in ids or ():
            validate_hex(value, "id", EVENT_ID_HEX_LENGTH)
        for value in authors or ():
            validate_hex(value, "author", PUBKEY_HEX_LENGTH)
        for value in kinds or ():
            validate_int(value, "kind", minimum=0, maximum=EVENT_KIND_MAX)
        for name in ("since", "until", "limit"):
            value = getattr(self, name)
            if value is not None:
                validate_int(value, name, minimum=0)

        validate_instance(self.tags, Mapping, "tags")
        tags: dict[str, tuple[str, ...]] = {}
        for letter, values in self.tags.items():
            if not isinstance(letter, str) or len(letter) != 1 or not letter.isalpha():
                raise ValueError(f"tag filter name must be a single letter, got {letter!r}")
            tags[letter] = to_str_tuple(values, f"#{letter}")

        object.__setattr__(self, "ids", ids)
        object.__setattr__(self, "authors", authors)
        object.__setattr__(self, "kinds", kinds)
        object.__setattr__(self, "tags", tags)

    def to_dict(self) -> dict[str, Any]:
        """Return the JSON object sent on the wire, omitting unset fields."""
        result: dict[str, Any] = {}
        for name in ("ids", "authors", "kinds"):
            values = getattr(self, name)
            if values is not None:
                result[name] = list(values)
        for name in ("since", "until", "limit"):
            value = getattr(self, name)
            if value is not None:
                result[name] = value
        for letter, values in self.tags.items():
            result[f"#{letter}"] = list(values)
        return result

    def matches(self, event: Event) -> bool:
        """Return True if *event* satisfies every set condition (NIP-01 semantics).

        ``limit`` only applies to the relay's initial query and is ignored.
        """
        if self.ids is not None and event.id not in self.ids:
            return False
        if self.authors is not None and event.pubkey not in self.authors:
            return False
        if self.kinds is not None and event.kind not in self.kinds:
            return False
        if self.since is not None and event.created_at < self.since:
            return False
        if self.until is not None and event.created_at > self.until:
            return False
        for letter, values in self.tags.items():
            wanted = set(values)
            if not any(len(tag) >= 2 and tag[0] == letter and tag[1] in wanted for tag in event.tags):
                return False
        return True
