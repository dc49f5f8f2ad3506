"""Nostr relay subscription client for the read path.

[RelayClient][roostr.utils.protocol.RelayClient] owns one
[WebSocketConnection][roostr.utils.websocket.WebSocketConnection] and runs
NIP-01 subscriptions over it: it sends ``REQ``, verifies every ``EVENT``
before handing it on, and finishes on ``EOSE``, ``CLOSED`` or cancellation.

Attributes:
    RelayClient: Connection owner with ``subscribe()`` (sink callback) and
        ``events()`` (async iterator) delivery.
    SubscriptionResult: Outcome counters of one subscription.

Note:
    Two kinds of failure are recovered locally and never abort a
    subscription: relay messages that do not parse
    ([RelayMessageError][roostr.core.exceptions.RelayMessageError]) are
    skipped, and events that fail verification are dropped and counted in
    [SubscriptionResult.rejected][roostr.utils.protocol.SubscriptionResult].
    Connection loss, sink exceptions and cancellation propagate.

See Also:
    [Event.verify()][roostr.models.event.Event.verify]: The verification
        applied to every received event.
    [Synchronizer][roostr.services.synchronizer.Synchronizer]: Drives one
        client per relay.

Examples:
    ```python
    async with RelayClient("wss://relay.damus.io") as client:
        result = await client.subscribe(Filter(authors=[pubkey]), store.insert_event)
        print(result.events, result.rejected, result.eose)
    ```
"""

from __future__ import annotations

import asyncio
import inspect
import itertools
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Final

from roostr.core.exceptions import (
    ConnectivityError,
    EventVerificationError,
    RelayMessageError,
    SubscriptionCancelledError,
)
from roostr.models.constants import RelayMessageType
from roostr.models.event import Event
from roostr.models.message import RelayMessage, encode_close, encode_req
from roostr.models.relay import Relay

from .websocket import (
    DEFAULT_CLOSE_TIMEOUT,
    DEFAULT_CONNECT_TIMEOUT,
    MAX_PAYLOAD_SIZE,
    WebSocketConnection,
)


if TYPE_CHECKING:
    import ssl
    from collections.abc import AsyncGenerator, Awaitable, Callable
    from types import TracebackType

    from roostr.models.filter import Filter

    EventSink = Callable[[Event], Awaitable[Any] | Any]
    NoticeHandler = Callable[[str], Any]


logger = logging.getLogger(__name__)


DEFAULT_READ_TIMEOUT: Final[float] = 30.0


@dataclass(slots=True)
class SubscriptionResult:
    """Outcome of one subscription.

    Attributes:
        subscription_id: The ``sub-<n>`` id used on the wire.
        events: Verified events delivered.
        rejected: Events dropped as malformed or failing verification.
        eose: True if the relay signalled end of stored events.
        closed_reason: Reason of a relay ``CLOSED`` message, ``None`` if the
            relay did not close the subscription.
    """

    subscription_id: str
    events: int = 0
    rejected: int = 0
    eose: bool = False
    closed_reason: str | None = None

    @property
    def closed_by_relay(self) -> bool:
        return self.closed_reason is not None


class RelayClient:
    """Read-only Nostr client for a single relay.

    Lifecycle: ``connect()``, any number of sequential subscriptions, then
    ``close()``. Instances share no state with each other; subscription ids
    come from a per-instance counter.

    Args:
        url: ``ws://`` or ``wss://`` relay URL.
        connect_timeout: Bound on dial, TLS and handshake.
        read_timeout: Longest single wait for the next frame. When it
            expires the cancel flag is re-checked and the wait resumes; it
            is not an error. A frame whose header arrived but whose body does
            not within this bound fails the connection.
        close_timeout: Bound on the close handshake and on best-effort
            ``CLOSE`` messages.
        max_size: Largest accepted message in bytes.
        ssl_context: TLS context for ``wss`` relays.
        notice_handler: Optional callable receiving ``NOTICE`` texts.

    Raises:
        ValueError: If *url* is not a valid relay URL.
    """

    def __init__(
        self,
        url: str,
        *,
        connect_timeout: float = DEFAULT_CONNECT_TIMEOUT,
        read_timeout: float = DEFAULT_READ_TIMEOUT,
        close_timeout: float = DEFAULT_CLOSE_TIMEOUT,
        max_size: int = MAX_PAYLOAD_SIZE,
        ssl_context: ssl.SSLContext | None = None,
        notice_handler: NoticeHandler | None = None,
    ) -> None:
        self._relay = Relay(url)
        self._connect_timeout = connect_timeout
        self._read_timeout = read_timeout
        self._close_timeout = close_timeout
        self._max_size = max_size
        self._ssl_context = ssl_context
        self._notice_handler = notice_handler
        self._connection: WebSocketConnection | None = None
        self._counter = itertools.count(1)

    @property
    def relay(self) -> Relay:
        return self._relay

    @property
    def url(self) -> str:
        return self._relay.url

    # -------------------------------------------------------------------------
    # Connection lifecycle
    # -------------------------------------------------------------------------

    async def connect(self) -> None:
        """Open the WebSocket connection. A no-op when already connected.

        Raises:
            ConnectivityError: Dial, TLS, timeout or handshake failure.
        """
        if self.is_connected():
            return
        self._connection = await WebSocketConnection.connect(
            self._relay.url,
            timeout=self._connect_timeout,
            ssl_context=self._ssl_context,
            max_size=self._max_size,
            close_timeout=self._close_timeout,
        )

    async def close(self) -> None:
        """Close the connection. Idempotent and safe during an active read."""
        if self._connection is not None:
            await self._connection.close()

    def is_connected(self) -> bool:
        return self._connection is not None and not self._connection.closed

    async def __aenter__(self) -> RelayClient:
        await self.connect()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.close()

    # -------------------------------------------------------------------------
    # Subscriptions
    # -------------------------------------------------------------------------

    async def subscribe(
        self,
        event_filter: Filter,
        sink: EventSink,
        *,
        cancel: asyncio.Event | None = None,
    ) -> SubscriptionResult:
        """Fetch stored events matching *event_filter* into *sink*.

        Every event is verified before *sink* sees it. *sink* may be a plain
        or an async callable; an async sink is awaited, so a slow sink
        throttles the read loop.

        Args:
            event_filter: Filter sent in the ``REQ``.
            sink: Called once per verified event.
            cancel: Optional flag; when set the subscription is closed and
                [SubscriptionCancelledError][roostr.core.exceptions.SubscriptionCancelledError]
                is raised.

        Returns:
            The [SubscriptionResult][roostr.utils.protocol.SubscriptionResult]
            once the relay sent ``EOSE`` or ``CLOSED``.

        Raises:
            SubscriptionCancelledError: *cancel* was set.
            ConnectivityError: The connection failed or was closed
                (including [RelayTimeoutError][roostr.core.exceptions.RelayTimeoutError]
                for a stalled frame).
            FrameError: The relay violated the WebSocket protocol; the
                connection is closed and the client must reconnect.
            Exception: Whatever *sink* raised.
        """
        subscription_id = self._next_subscription_id()
        result = SubscriptionResult(subscription_id)
        stream = self._stream(subscription_id, event_filter, cancel, result)
        try:
            async for event in stream:
                outcome = sink(event)
                if inspect.isawaitable(outcome):
                    await outcome
        finally:
            await stream.aclose()
        return result

    def events(
        self,
        event_filter: Filter,
        *,
        cancel: asyncio.Event | None = None,
    ) -> AsyncGenerator[Event, None]:
        """Return an async iterator over verified events matching *event_filter*.

        The iterator ends at ``EOSE`` or ``CLOSED``. Wrap it in
        ``contextlib.aclosing`` when breaking out early so the subscription
        is closed on the relay right away.

        Examples:
            ```python
            async with contextlib.aclosing(client.events(f)) as events:
                async for event in events:
                    ...
            ```
        """
        subscription_id = self._next_subscription_id()
        return self._stream(subscription_id, event_filter, cancel, SubscriptionResult(subscription_id))

    def _next_subscription_id(self) -> str:
        return f"sub-{next(self._counter)}"

    def _require_connection(self) -> WebSocketConnection:
        if self._connection is None or self._connection.closed:
            raise ConnectivityError(f"not connected to {self._relay.url}")
        return self._connection

    async def _stream(
        self,
        subscription_id: str,
        event_filter: Filter,
        cancel: asyncio.Event | None,
        result: SubscriptionResult,
    ) -> AsyncGenerator[Event, None]:
        connection = self._require_connection()
        await connection.send_text(encode_req(subscription_id, event_filter))
        logger.debug("subscription_started relay=%s sub_id=%s", self._relay.url, subscription_id)

        finished = False
        try:
            while True:
                if cancel is not None and cancel.is_set():
                    logger.debug("subscription_cancelled relay=%s sub_id=%s", self._relay.url, subscription_id)
                    raise SubscriptionCancelledError(subscription_id)

                try:
                    text = await connection.recv(timeout=self._read_timeout)
                except TimeoutError:
                    continue

                try:
                    message = RelayMessage.parse(text)
                except RelayMessageError as e:
                    logger.debug("relay_message_skipped relay=%s error=%s", self._relay.url, e)
                    continue

                if message.type == RelayMessageType.NOTICE:
                    self._on_notice(message.message or "")
                    continue
                if message.subscription_id != subscription_id:
                    continue

                if message.type == RelayMessageType.EVENT:
                    event = self._verified_event(message.event, result)
                    if event is not None:
                        result.events += 1
                        yield event

                elif message.type == RelayMessageType.EOSE:
                    result.eose = True
                    finished = True
                    logger.debug(
                        "subscription_eose relay=%s sub_id=%s events=%d rejected=%d",
                        self._relay.url,
                        subscription_id,
                        result.events,
                        result.rejected,
                    )
                    await self._send_close(connection, subscription_id)
                    return

                elif message.type == RelayMessageType.CLOSED:
                    result.closed_reason = message.message or ""
                    finished = True
                    logger.debug(
                        "subscription_closed relay=%s sub_id=%s reason=%s",
                        self._relay.url,
                        subscription_id,
                        result.closed_reason,
                    )
                    return
        finally:
            if not finished and not connection.closed:
                await self._send_close(connection, subscription_id)

    def _verified_event(self, raw: dict[str, Any] | None, result: SubscriptionResult) -> Event | None:
        try:
            event = Event.from_dict(raw)
            event.verify()
        except (TypeError, ValueError, EventVerificationError) as e:
            result.rejected += 1
            logger.debug(
                "event_rejected relay=%s sub_id=%s error=%s",
                self._relay.url,
                result.subscription_id,
                e,
            )
            return None
        return event

    def _on_notice(self, text: str) -> None:
        logger.warning("relay_notice relay=%s message=%s", self._relay.url, text)
        if self._notice_handler is not None:
            self._notice_handler(text)

    async def _send_close(self, connection: WebSocketConnection, subscription_id: str) -> None:
        """Send ``CLOSE`` best-effort, bounded by the close timeout."""
        try:
            async with asyncio.timeout(self._close_timeout):
                await connection.send_text(encode_close(subscription_id))
        except (TimeoutError, ConnectivityError) as e:
            logger.debug("subscription_close_failed relay=%s sub_id=%s error=%s", self._relay.url, subscription_id, e)
