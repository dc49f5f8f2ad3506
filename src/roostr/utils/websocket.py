"""Minimal RFC 6455 WebSocket client transport over asyncio streams.

Implements exactly what a Nostr read client needs: the HTTP upgrade
handshake, masked client frames, text/binary messages with fragmentation,
ping/pong and the close handshake. Extensions and subprotocols are not
negotiated.

Attributes:
    WebSocketConnection: One client connection; ``connect()``, ``send_text()``,
        ``recv()`` and ``close()``.
    encode_frame: Build a single frame (masked for client use).
    read_frame: Read and validate a single frame from a stream.
    compute_accept_key: The ``Sec-WebSocket-Accept`` value for a key.

Note:
    The optional timeout of [recv()][roostr.utils.websocket.WebSocketConnection.recv]
    and [read_frame()][roostr.utils.websocket.read_frame] bounds only the wait
    for the 2-byte frame header. ``StreamReader.readexactly`` leaves its buffer
    untouched when cancelled, so an expired timeout never loses bytes and the
    connection stays usable. Once a header has arrived the rest of the frame
    is read without a deadline.

See Also:
    [RelayClient][roostr.utils.protocol.RelayClient]: Nostr subscription
        client built on this transport.
    [Relay][roostr.models.relay.Relay]: Parses the URL into dial parameters.

Examples:
    ```python
    connection = await WebSocketConnection.connect("wss://relay.damus.io", timeout=10.0)
    try:
        await connection.send_text('["REQ","sub-1",{"limit":1}]')
        print(await connection.recv(timeout=30.0))
    finally:
        await connection.close()
    ```
"""

from __future__ import annotations

import asyncio
import base64
import contextlib
import hashlib
import logging
import os
import ssl
from dataclasses import dataclass
from enum import IntEnum
from typing import Final

from roostr.core.exceptions import (
    ConnectionClosedError,
    ConnectivityError,
    FrameError,
    HandshakeError,
    MessageTooLargeError,
    RelaySSLError,
    RelayTimeoutError,
)
from roostr.models.relay import Relay


logger = logging.getLogger(__name__)


WEBSOCKET_GUID: Final[str] = "258EAFA5-E914-47DA-95CA-C5AB0DC85B11"
MAX_PAYLOAD_SIZE: Final[int] = 16 * 1024 * 1024
DEFAULT_CONNECT_TIMEOUT: Final[float] = 10.0
DEFAULT_CLOSE_TIMEOUT: Final[float] = 5.0
USER_AGENT: Final[str] = "roostr/1.0"

CLOSE_NORMAL: Final[int] = 1000
CLOSE_GOING_AWAY: Final[int] = 1001
CLOSE_PROTOCOL_ERROR: Final[int] = 1002
CLOSE_NO_STATUS: Final[int] = 1005
CLOSE_MESSAGE_TOO_BIG: Final[int] = 1009

_MAX_HANDSHAKE_HEADERS: Final[int] = 100
_MAX_CONTROL_PAYLOAD: Final[int] = 125

# Header byte 0
_FIN: Final[int] = 0x80
_RSV_MASK: Final[int] = 0x70
_OPCODE_MASK: Final[int] = 0x0F
# Header byte 1
_MASK_BIT: Final[int] = 0x80
_LENGTH_MASK: Final[int] = 0x7F
_LENGTH_16: Final[int] = 126
_LENGTH_64: Final[int] = 127


class Opcode(IntEnum):
    """WebSocket frame opcodes."""

    CONTINUATION = 0x0
    TEXT = 0x1
    BINARY = 0x2
    CLOSE = 0x8
    PING = 0x9
    PONG = 0xA

    @property
    def is_control(self) -> bool:
        return self >= Opcode.CLOSE


@dataclass(frozen=True, slots=True)
class Frame:
    """A decoded frame with an unmasked payload."""

    fin: bool
    opcode: Opcode
    payload: bytes


# ---------------------------------------------------------------------------
# Frame codec
# ---------------------------------------------------------------------------


def compute_accept_key(key: str) -> str:
    """Return base64(SHA-1(key + GUID)), the expected ``Sec-WebSocket-Accept``."""
    digest = hashlib.sha1((key + WEBSOCKET_GUID).encode("ascii")).digest()  # noqa: S324
    return base64.b64encode(digest).decode("ascii")


def apply_mask(data: bytes, key: bytes) -> bytes:
    """XOR *data* with the repeating 4-byte *key* (masking is its own inverse)."""
    if not data:
        return b""
    size = len(data)
    repeated = (key * (size // 4 + 1))[:size]
    return (int.from_bytes(data, "big") ^ int.from_bytes(repeated, "big")).to_bytes(size, "big")


def encode_frame(opcode: Opcode, payload: bytes, *, fin: bool = True, mask: bool = True) -> bytes:
    """Encode one frame.

    Client-to-server frames must be masked; a fresh random key is drawn for
    every frame. ``mask=False`` produces server-style frames.
    """
    header = bytearray([(_FIN if fin else 0) | opcode])
    mask_bit = _MASK_BIT if mask else 0
    length = len(payload)

    if length < _LENGTH_16:
        header.append(mask_bit | length)
    elif length < 1 << 16:
        header.append(mask_bit | _LENGTH_16)
        header += length.to_bytes(2, "big")
    else:
        header.append(mask_bit | _LENGTH_64)
        header += length.to_bytes(8, "big")

    if not mask:
        return bytes(header) + payload
    key = os.urandom(4)
    return bytes(header) + key + apply_mask(payload, key)


async def read_frame(
    reader: asyncio.StreamReader,
    *,
    max_size: int = MAX_PAYLOAD_SIZE,
    timeout: float | None = None,  # noqa: ASYNC109
) -> Frame:
    """Read and validate one frame.

    Args:
        reader: Stream positioned at a frame boundary.
        max_size: Largest accepted payload. A larger declared length is
            rejected before any payload byte is read.
        timeout: Bound on the wait for the frame header, and separately on
            reading the rest of the frame once its header arrived.

    Raises:
        TimeoutError: No frame header arrived within *timeout*.
        RelayTimeoutError: The header arrived but the rest of the frame did
            not within *timeout*; the stream is no longer at a frame boundary.
        FrameError: Reserved bits set, unknown opcode, fragmented or oversized
            control frame, or an invalid 64-bit length.
        MessageTooLargeError: Declared payload length above *max_size*.
        ConnectionClosedError: The stream ended mid-frame or before one.
        ConnectivityError: Socket error while reading.
    """
    try:
        if timeout is None:
            head = await reader.readexactly(2)
        else:
            head = await asyncio.wait_for(reader.readexactly(2), timeout)
    except asyncio.IncompleteReadError as e:
        raise ConnectionClosedError("connection closed by peer without close frame") from e
    except TimeoutError:
        raise
    except OSError as e:
        raise ConnectivityError(f"read failed: {e}") from e

    try:
        async with asyncio.timeout(timeout):
            return await _read_frame_body(reader, head, max_size)
    except TimeoutError as e:
        raise RelayTimeoutError(f"frame body not received within {timeout}s") from e
    except asyncio.IncompleteReadError as e:
        raise ConnectionClosedError("connection closed in the middle of a frame") from e
    except OSError as e:
        raise ConnectivityError(f"read failed: {e}") from e


async def _read_frame_body(reader: asyncio.StreamReader, head: bytes, max_size: int) -> Frame:
    first, second = head[0], head[1]

    if first & _RSV_MASK:
        raise FrameError("reserved bits set without a negotiated extension")
    try:
        opcode = Opcode(first & _OPCODE_MASK)
    except ValueError as e:
        raise FrameError(f"unknown opcode {first & _OPCODE_MASK:#x}") from e
    fin = bool(first & _FIN)

    masked = bool(second & _MASK_BIT)
    length = second & _LENGTH_MASK
    if length == _LENGTH_16:
        length = int.from_bytes(await reader.readexactly(2), "big")
    elif length == _LENGTH_64:
        length = int.from_bytes(await reader.readexactly(8), "big")
        if length >> 63:
            raise FrameError("64-bit payload length has the most significant bit set")

    if opcode.is_control and (not fin or length > _MAX_CONTROL_PAYLOAD):
        raise FrameError(f"invalid {opcode.name} control frame")
    if length > max_size:
        raise MessageTooLargeError(f"frame payload of {length} bytes exceeds limit of {max_size}")

    key = await reader.readexactly(4) if masked else b""
    payload = await reader.readexactly(length) if length else b""
    if masked:
        payload = apply_mask(payload, key)
    return Frame(fin=fin, opcode=opcode, payload=payload)


# ---------------------------------------------------------------------------
# Handshake
# ---------------------------------------------------------------------------


def _build_request(relay: Relay, key: str) -> bytes:
    lines = [
        f"GET {relay.resource} HTTP/1.1",
        f"Host: {relay.host_header}",
        "Upgrade: websocket",
        "Connection: Upgrade",
        f"Sec-WebSocket-Key: {key}",
        "Sec-WebSocket-Version: 13",
        f"User-Agent: {USER_AGENT}",
    ]
    return ("\r\n".join(lines) + "\r\n\r\n").encode("ascii")


async def _read_handshake_line(reader: asyncio.StreamReader) -> str:
    try:
        line = await reader.readline()
    except ValueError as e:
        raise HandshakeError("handshake response line too long") from e
    if not line.endswith(b"\n"):
        raise HandshakeError("truncated handshake response")
    return line.decode("latin-1").rstrip("\r\n")


async def _handshake(reader: asyncio.StreamReader, writer: asyncio.StreamWriter, relay: Relay) -> None:
    key = base64.b64encode(os.urandom(16)).decode("ascii")
    writer.write(_build_request(relay, key))
    await writer.drain()

    status_line = await _read_handshake_line(reader)
    parts = status_line.split(" ", 2)
    if len(parts) < 2 or not parts[0].startswith("HTTP/"):
        raise HandshakeError(f"invalid handshake status line: {status_line!r}")
    if parts[1] != "101":
        raise HandshakeError(f"handshake failed: server responded {status_line!r}")

    headers: dict[str, str] = {}
    for _ in range(_MAX_HANDSHAKE_HEADERS):
        line = await _read_handshake_line(reader)
        if not line:
            break
        name, sep, value = line.partition(":")
        if not sep:
            raise HandshakeError(f"malformed handshake header: {line!r}")
        headers[name.strip().lower()] = value.strip()
    else:
        raise HandshakeError("too many handshake headers")

    accept = headers.get("sec-websocket-accept")
    if accept is None:
        raise HandshakeError("handshake response lacks Sec-WebSocket-Accept")
    if accept != compute_accept_key(key):
        raise HandshakeError("Sec-WebSocket-Accept does not match the request key")


# ---------------------------------------------------------------------------
# Connection
# ---------------------------------------------------------------------------


class WebSocketConnection:
    """A connected client WebSocket.

    Writes are serialized by an ``asyncio.Lock``; a single task is expected
    to read. [close()][roostr.utils.websocket.WebSocketConnection.close] may be
    called from any task, including while another task is blocked in
    [recv()][roostr.utils.websocket.WebSocketConnection.recv], which then
    raises [ConnectionClosedError][roostr.core.exceptions.ConnectionClosedError].

    Use [connect()][roostr.utils.websocket.WebSocketConnection.connect] to
    create instances; the constructor takes already upgraded streams.
    """

    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        *,
        max_size: int = MAX_PAYLOAD_SIZE,
        close_timeout: float = DEFAULT_CLOSE_TIMEOUT,
        url: str = "",
    ) -> None:
        self._reader = reader
        self._writer = writer
        self._max_size = max_size
        self._close_timeout = close_timeout
        self._url = url
        self._write_lock = asyncio.Lock()
        self._closed = False
        self._close_started = False
        self._close_code: int | None = None
        self._close_reason = ""
        # In-progress fragmented message, kept across recv() calls
        self._fragment_opcode: Opcode | None = None
        self._fragments: list[bytes] = []
        self._fragment_size = 0

    @classmethod
    async def connect(
        cls,
        url: str,
        *,
        timeout: float = DEFAULT_CONNECT_TIMEOUT,  # noqa: ASYNC109
        ssl_context: ssl.SSLContext | None = None,
        max_size: int = MAX_PAYLOAD_SIZE,
        close_timeout: float = DEFAULT_CLOSE_TIMEOUT,
    ) -> WebSocketConnection:
        """Dial *url* and perform the upgrade handshake.

        Args:
            url: ``ws://`` or ``wss://`` URL.
            timeout: Bound on dial, TLS and handshake together.
            ssl_context: TLS context for ``wss``; the default verifying
                context when omitted.
            max_size: Largest accepted frame payload and reassembled message.
            close_timeout: Bound on the close handshake.

        Raises:
            ValueError: If *url* is not a valid relay URL.
            RelayTimeoutError: The timeout expired.
            RelaySSLError: TLS negotiation or certificate verification failed.
            HandshakeError: The server did not upgrade correctly.
            ConnectivityError: Any other dial or socket failure.
        """
        relay = Relay(url)
        context: ssl.SSLContext | None = None
        if relay.secure:
            context = ssl_context if ssl_context is not None else ssl.create_default_context()

        logger.debug("ws_connecting url=%s timeout_s=%s", relay.url, timeout)
        try:
            async with asyncio.timeout(timeout):
                reader, writer = await asyncio.open_connection(
                    relay.host,
                    relay.port,
                    ssl=context,
                    server_hostname=relay.host if context is not None else None,
                )
                try:
                    await _handshake(reader, writer, relay)
                except BaseException:
                    writer.close()
                    raise
        except TimeoutError as e:
            logger.debug("ws_connect_timeout url=%s", relay.url)
            raise RelayTimeoutError(f"connection to {relay.url} timed out after {timeout}s") from e
        except ssl.SSLError as e:
            logger.debug("ws_ssl_failed url=%s error=%s", relay.url, e)
            raise RelaySSLError(f"TLS failure connecting to {relay.url}: {e}") from e
        except OSError as e:
            logger.debug("ws_connect_failed url=%s error=%s", relay.url, e)
            raise ConnectivityError(f"failed to connect to {relay.url}: {e}") from e

        logger.debug("ws_connected url=%s", relay.url)
        return cls(reader, writer, max_size=max_size, close_timeout=close_timeout, url=relay.url)

    @property
    def closed(self) -> bool:
        """True once a close frame was received or ``close()`` was called."""
        return self._closed

    @property
    def url(self) -> str:
        return self._url

    async def send_text(self, text: str) -> None:
        """Send *text* as a single masked text frame.

        Raises:
            ConnectionClosedError: If the connection is closed.
            ConnectivityError: If the socket write fails.
        """
        await self.send_frame(Opcode.TEXT, text.encode("utf-8"))

    async def send_frame(self, opcode: Opcode, payload: bytes) -> None:
        """Send one masked frame under the write lock."""
        if self._closed and opcode != Opcode.CLOSE:
            raise ConnectionClosedError(code=self._close_code, reason=self._close_reason)
        frame = encode_frame(opcode, payload)
        async with self._write_lock:
            if self._writer.is_closing():
                raise ConnectionClosedError("connection transport is closing")
            try:
                self._writer.write(frame)
                await self._writer.drain()
            except OSError as e:
                raise ConnectivityError(f"write failed: {e}") from e

    async def recv(self, timeout: float | None = None) -> str:  # noqa: ASYNC109
        """Return the next application message.

        Text and binary messages are returned as ``str`` (decoded as UTF-8,
        invalid sequences replaced). Pings are answered, pongs are dropped and
        fragmented messages are reassembled.

        Args:
            timeout: Bound on the wait for each frame header.

        Raises:
            TimeoutError: No frame header arrived within *timeout*.
            ConnectionClosedError: A close frame was received or the
                connection is closed. Carries the peer's code and reason.
            FrameError: Protocol violation (including
                [MessageTooLargeError][roostr.core.exceptions.MessageTooLargeError]).
                The connection is failed and closed before raising.
            RelayTimeoutError: A frame stalled after its header; the
                connection is closed before raising.
            ConnectivityError: Socket error.
        """
        while True:
            if self._closed:
                raise ConnectionClosedError(code=self._close_code, reason=self._close_reason)

            try:
                frame = await read_frame(self._reader, max_size=self._max_size, timeout=timeout)
                message = None if frame.opcode.is_control else self._assemble(frame)
            except (FrameError, RelayTimeoutError) as e:
                await self._fail(e)
                raise

            if frame.opcode == Opcode.PING:
                await self._send_pong(frame.payload)
                continue
            if frame.opcode == Opcode.PONG:
                continue
            if frame.opcode == Opcode.CLOSE:
                await self._on_close_frame(frame.payload)
                raise ConnectionClosedError(
                    f"connection closed by peer (code={self._close_code})",
                    code=self._close_code,
                    reason=self._close_reason,
                )

            if message is not None:
                return message.decode("utf-8", errors="replace")

    async def close(self, code: int = CLOSE_NORMAL, reason: str = "") -> None:
        """Close the connection. Only the first call has any effect.

        Sends a close frame best-effort (bounded by the close timeout), then
        closes the socket.
        """
        if self._close_started:
            return
        self._close_started = True
        already_closed = self._closed
        self._closed = True

        try:
            if not already_closed:
                async with asyncio.timeout(self._close_timeout):
                    await self.send_frame(Opcode.CLOSE, code.to_bytes(2, "big") + reason.encode("utf-8"))
        except (TimeoutError, ConnectivityError) as e:
            logger.debug("ws_close_frame_failed url=%s error=%s", self._url, e)
        finally:
            self._writer.close()
            with contextlib.suppress(TimeoutError, OSError):
                async with asyncio.timeout(self._close_timeout):
                    await self._writer.wait_closed()
        logger.debug("ws_closed url=%s code=%s", self._url, code)

    async def _fail(self, error: Exception) -> None:
        """Close the connection after a frame error or a stalled frame."""
        if isinstance(error, MessageTooLargeError):
            code = CLOSE_MESSAGE_TOO_BIG
        elif isinstance(error, FrameError):
            code = CLOSE_PROTOCOL_ERROR
        else:
            code = CLOSE_GOING_AWAY
        logger.debug("ws_failed url=%s code=%s error=%s", self._url, code, error)
        await self.close(code)

    async def _send_pong(self, payload: bytes) -> None:
        try:
            await self.send_frame(Opcode.PONG, payload)
        except ConnectionClosedError:
            logger.debug("ws_pong_skipped url=%s", self._url)

    async def _on_close_frame(self, payload: bytes) -> None:
        if len(payload) >= 2:
            self._close_code = int.from_bytes(payload[:2], "big")
            self._close_reason = payload[2:].decode("utf-8", errors="replace")
        else:
            self._close_code = CLOSE_NO_STATUS
        logger.debug("ws_close_received url=%s code=%s reason=%s", self._url, self._close_code, self._close_reason)

        # Echo the close frame, then drop the socket
        echo = payload[:2] if self._close_code != CLOSE_NO_STATUS else b""
        self._closed = True
        try:
            async with asyncio.timeout(self._close_timeout):
                await self.send_frame(Opcode.CLOSE, echo)
        except (TimeoutError, ConnectivityError) as e:
            logger.debug("ws_close_echo_failed url=%s error=%s", self._url, e)
        finally:
            self._close_started = True
            self._writer.close()

    def _assemble(self, frame: Frame) -> bytes | None:
        if frame.opcode == Opcode.CONTINUATION:
            if self._fragment_opcode is None:
                raise FrameError("continuation frame without a started message")
            self._fragment_size += len(frame.payload)
            if self._fragment_size > self._max_size:
                raise MessageTooLargeError(
                    f"fragmented message exceeds limit of {self._max_size} bytes"
                )
            self._fragments.append(frame.payload)
            if not frame.fin:
                return None
            message = b"".join(self._fragments)
            self._fragment_opcode = None
            self._fragments = []
            self._fragment_size = 0
            return message

        if self._fragment_opcode is not None:
            raise FrameError("new data frame while a fragmented message is in progress")
        if frame.fin:
            return frame.payload

        self._fragment_opcode = frame.opcode
        self._fragments = [frame.payload]
        self._fragment_size = len(frame.payload)
        return None
