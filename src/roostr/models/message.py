"""
NIP-01 message codec for the read path.

Relay-to-client messages are parsed into a
[RelayMessage][roostr.models.message.RelayMessage]; client-to-relay messages
(``REQ`` and ``CLOSE``) are produced by
[encode_req()][roostr.models.message.encode_req] and
[encode_close()][roostr.models.message.encode_close].

Note:
    Parsing validates only the envelope (JSON array, label, arity, field
    types). The event object inside an ``EVENT`` message is left as a raw
    ``dict``: turning it into an [Event][roostr.models.event.Event] and
    verifying it is the client's job, so a malformed event never aborts the
    parse of the envelope.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from roostr.core.exceptions import RelayMessageError

from .constants import ClientMessageType, RelayMessageType


if TYPE_CHECKING:
    from .filter import Filter


# Minimum number of array elements per known relay message label
_MIN_ARITY: dict[str, int] = {
    RelayMessageType.EVENT: 3,
    RelayMessageType.EOSE: 2,
    RelayMessageType.NOTICE: 2,
    RelayMessageType.CLOSED: 2,
    RelayMessageType.OK: 3,
    RelayMessageType.AUTH: 2,
}


@dataclass(frozen=True, slots=True)
class RelayMessage:
    """A parsed relay-to-client message.

    Attributes:
        type: Message label (``EVENT``, ``EOSE``, ...). Unknown labels are kept
            verbatim so callers can ignore them.
        subscription_id: Subscription id for ``EVENT``, ``EOSE`` and
            ``CLOSED``; ``None`` otherwise.
        event: Raw event object of an ``EVENT`` message.
        message: Text of a ``NOTICE``, reason of a ``CLOSED`` (``""`` when the
            relay omits it), challenge of an ``AUTH``.
        raw: The decoded JSON array.
    """

    type: str
    subscription_id: str | None = None
    event: dict[str, Any] | None = None
    message: str | None = None
    raw: tuple[Any, ...] = ()

    @classmethod
    def parse(cls, text: str | bytes) -> RelayMessage:
        """Parse one relay message.

        Raises:
            RelayMessageError: If *text* is not JSON, not a non-empty array
                with a string label, or a known label has the wrong arity or
                field types.
        """
        try:
            data = json.loads(text)
        except ValueError as e:
            raise RelayMessageError(f"invalid JSON: {e}") from e

        if not isinstance(data, list) or not data:
            raise RelayMessageError("relay message must be a non-empty JSON array")
        label = data[0]
        if not isinstance(label, str):
            raise RelayMessageError(f"relay message label must be a string, got {label!r}")

        minimum = _MIN_ARITY.get(label)
        if minimum is not None and len(data) < minimum:
            raise RelayMessageError(f"{label} message needs at least {minimum} elements, got {len(data)}")

        raw = tuple(data)

        if label == RelayMessageType.EVENT:
            sub_id, event = data[1], data[2]
            _require_str(sub_id, label, "subscription id")
            if not isinstance(event, dict):
                raise RelayMessageError("EVENT payload must be a JSON object")
            return cls(type=label, subscription_id=sub_id, event=event, raw=raw)

        if label == RelayMessageType.EOSE:
            _require_str(data[1], label, "subscription id")
            return cls(type=label, subscription_id=data[1], raw=raw)

        if label == RelayMessageType.CLOSED:
            _require_str(data[1], label, "subscription id")
            reason = data[2] if len(data) > 2 else ""
            _require_str(reason, label, "reason")
            return cls(type=label, subscription_id=data[1], message=reason, raw=raw)

        if label in (RelayMessageType.NOTICE, RelayMessageType.AUTH):
            _require_str(data[1], label, "message")
            return cls(type=label, message=data[1], raw=raw)

        return cls(type=label, raw=raw)


def _require_str(value: Any, label: str, what: str) -> None:
    if not isinstance(value, str):
        raise RelayMessageError(f"{label} {what} must be a string, got {type(value).__name__}")


def encode_req(subscription_id: str, event_filter: Filter) -> str:
    """Return ``["REQ", subscription_id, filter]`` as compact JSON."""
    message = [ClientMessageType.REQ.value, subscription_id, event_filter.to_dict()]
    return json.dumps(message, separators=(",", ":"), ensure_ascii=False)


def encode_close(subscription_id: str) -> str:
    """Return ``["CLOSE", subscription_id]`` as compact JSON."""
    return json.dumps([ClientMessageType.CLOSE.value, subscription_id], separators=(",", ":"))
