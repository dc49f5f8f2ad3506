"""
Validated WebSocket relay URL.

[Relay][roostr.models.relay.Relay] splits a ``ws://`` or ``wss://`` URL into
the parts the transport needs to dial and to build the upgrade request.

See Also:
    [WebSocketConnection.connect()][roostr.utils.websocket.WebSocketConnection.connect]:
        Dials ``host``/``port`` and requests ``resource``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import ClassVar
from urllib.parse import urlsplit

from ._validation import validate_instance


@dataclass(frozen=True, slots=True)
class Relay:
    """Immutable relay URL with dial parameters.

    Args:
        url: Relay URL, e.g. ``wss://relay.damus.io``.

    Attributes:
        scheme: ``ws`` or ``wss`` (lower-cased).
        host: Hostname or IP literal (IPv6 without brackets).
        port: Explicit port, or 443 for ``wss`` and 80 for ``ws``.
        resource: Request target for the upgrade request: path (``/`` when
            empty) plus query string.

    Raises:
        TypeError: If ``url`` is not a string.
        ValueError: If the scheme is not ``ws``/``wss``, the host is missing
            or the port is invalid.

    Examples:
        ```python
        relay = Relay("wss://relay.damus.io")
        relay.port        # 443
        relay.resource    # "/"
        relay.secure      # True
        ```
    """

    _DEFAULT_PORTS: ClassVar[dict[str, int]] = {"ws": 80, "wss": 443}

    url: str
    scheme: str = field(init=False)
    host: str = field(init=False)
    port: int = field(init=False)
    resource: str = field(init=False)

    def __post_init__(self) -> None:
        validate_instance(self.url, str, "url")
        url = self.url.strip()
        parts = urlsplit(url)
        scheme = parts.scheme.lower()

        if scheme not in self._DEFAULT_PORTS:
            raise ValueError(f"Invalid relay URL scheme: {url!r} (expected ws:// or wss://)")
        if not parts.hostname:
            raise ValueError(f"Invalid relay URL: {url!r} has no host")
        try:
            port = parts.port or self._DEFAULT_PORTS[scheme]
        except ValueError as e:
            raise ValueError(f"Invalid relay URL port: {url!r}") from e

        resource = parts.path or "/"
        if parts.query:
            resource += "?" + parts.query

        object.__setattr__(self, "url", url)
        object.__setattr__(self, "scheme", scheme)
        object.__setattr__(self, "host", parts.hostname)
        object.__setattr__(self, "port", port)
        object.__setattr__(self, "resource", resource)

    @property
    def secure(self) -> bool:
        """True for ``wss`` relays (TLS)."""
        return self.scheme == "wss"

    @property
    def host_header(self) -> str:
        """Value of the ``Host`` header: host, bracketed if IPv6, plus non-default port."""
        host = f"[{self.host}]" if ":" in self.host else self.host
        if self.port != self._DEFAULT_PORTS[self.scheme]:
            return f"{host}:{self.port}"
        return host

    def __str__(self) -> str:
        return self.url
