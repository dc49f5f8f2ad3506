"""
Pytest configuration and shared fixtures for Roostr tests.

Provides:
- Signed Nostr events produced with the ``secp256k1`` library
- An in-process fake relay speaking the WebSocket server side over
  ``asyncio.start_server``
"""

from __future__ import annotations

import asyncio
import base64
import contextlib
import hashlib
import json
import logging
from collections.abc import AsyncIterator, Awaitable, Callable, Sequence
from typing import Any

import pytest
import secp256k1

from roostr.core.exceptions import ConnectivityError
from roostr.utils.websocket import Frame, Opcode, compute_accept_key, encode_frame, read_frame


# Valid secp256k1 test keys (DO NOT USE IN PRODUCTION)
VALID_HEX_KEY = (
    "67dea2ed018072d675f5415ecfaed7d2597555e202d85b3d65ea4e58d2d92ffa"  # pragma: allowlist secret
)
OTHER_HEX_KEY = (
    "3f3f3f3f3f3f3f3f3f3f3f3f3f3f3f3f3f3f3f3f3f3f3f3f3f3f3f3f3f3f3f3f"  # pragma: allowlist secret
)


# ============================================================================
# Logging Configuration
# ============================================================================


@pytest.fixture(scope="session", autouse=True)
def setup_logging() -> None:
    """Configure logging for tests."""
    logging.basicConfig(level=logging.DEBUG)


# ============================================================================
# Signed Events
# ============================================================================


class EventSigner:
    """Builds NIP-01 events signed with a fixed BIP-340 key."""

    def __init__(self, secret_hex: str) -> None:
        self._key = secp256k1.PrivateKey(bytes.fromhex(secret_hex), raw=True)
        self.pubkey = self._key.pubkey.serialize()[1:].hex()

    def sign(
        self,
        *,
        content: str = "hello nostr",
        kind: int = 1,
        tags: Sequence[Sequence[str]] = (),
        created_at: int = 1_700_000_000,
    ) -> dict[str, Any]:
        tag_lists = [list(tag) for tag in tags]
        payload = [0, self.pubkey, created_at, kind, tag_lists, content]
        serialized = json.dumps(payload, separators=(",", ":"), ensure_ascii=False).encode("utf-8")
        event_id = hashlib.sha256(serialized).digest()
        sig = self._key.schnorr_sign(event_id, None, raw=True)
        return {
            "id": event_id.hex(),
            "pubkey": self.pubkey,
            "created_at": created_at,
            "kind": kind,
            "tags": tag_lists,
            "content": content,
            "sig": sig.hex(),
        }


@pytest.fixture
def signer() -> EventSigner:
    """Signer for the primary test key."""
    return EventSigner(VALID_HEX_KEY)


@pytest.fixture
def other_signer() -> EventSigner:
    """Signer for a second, unrelated key."""
    return EventSigner(OTHER_HEX_KEY)


@pytest.fixture
def signed_event(signer: EventSigner) -> dict[str, Any]:
    """A valid kind-1 event in wire form."""
    return signer.sign(tags=[["e", "a" * 64], ["p", signer.pubkey, "wss://relay.example.com"]])


# ============================================================================
# Fake Relay
# ============================================================================


class RelaySide:
    """Server end of one accepted WebSocket connection."""

    def __init__(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        self.reader = reader
        self.writer = writer

    async def recv_frame(self) -> Frame:
        return await asyncio.wait_for(read_frame(self.reader), 5.0)

    async def recv_json(self) -> Any:
        """Return the next client text message as decoded JSON, skipping pongs."""
        while True:
            frame = await self.recv_frame()
            if frame.opcode == Opcode.PONG:
                continue
            assert frame.opcode == Opcode.TEXT, f"expected text frame, got {frame.opcode!r}"
            return json.loads(frame.payload)

    async def send_frame(self, opcode: Opcode, payload: bytes, *, fin: bool = True) -> None:
        self.writer.write(encode_frame(opcode, payload, fin=fin, mask=False))
        await self.writer.drain()

    async def send_text(self, text: str) -> None:
        await self.send_frame(Opcode.TEXT, text.encode("utf-8"))

    async def send_json(self, message: Any) -> None:
        await self.send_text(json.dumps(message))

    async def send_close(self, code: int = 1000, reason: str = "") -> None:
        await self.send_frame(Opcode.CLOSE, code.to_bytes(2, "big") + reason.encode("utf-8"))


RelayHandler = Callable[[RelaySide], Awaitable[None]]


async def _idle(_side: RelaySide) -> None:
    await asyncio.sleep(3600)


class FakeRelay:
    """Minimal WebSocket relay for driving the client in-process.

    Args:
        handler: Coroutine run on every upgraded connection.
        handshake: ``"ok"``, ``"bad_accept"``, ``"no_accept"``,
            ``"status_200"`` or ``"silent"`` (never answers).
        greeting: Raw bytes written in the same packet as the 101 response.
    """

    def __init__(self, handler: RelayHandler = _idle, *, handshake: str = "ok", greeting: bytes = b"") -> None:
        self._handler = handler
        self._handshake = handshake
        self._greeting = greeting
        self._server: asyncio.Server | None = None
        self._tasks: list[asyncio.Task[None]] = []
        self.requests: list[str] = []
        self.port = 0

    @property
    def url(self) -> str:
        return f"ws://127.0.0.1:{self.port}"

    async def start(self) -> None:
        self._server = await asyncio.start_server(self._handle, "127.0.0.1", 0)
        self.port = self._server.sockets[0].getsockname()[1]

    async def wait_handlers(self, timeout: float = 5.0) -> None:  # noqa: ASYNC109
        """Wait for every connection handler to finish, re-raising its failures."""
        if self._tasks:
            await asyncio.wait_for(asyncio.gather(*self._tasks), timeout)

    async def close(self) -> None:
        for task in self._tasks:
            task.cancel()
        for task in self._tasks:
            with contextlib.suppress(BaseException):
                await task
        if self._server is not None:
            self._server.close()
            with contextlib.suppress(TimeoutError):
                await asyncio.wait_for(self._server.wait_closed(), 2.0)

    async def _handle(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        task = asyncio.current_task()
        assert task is not None
        self._tasks.append(task)
        try:
            request = (await reader.readuntil(b"\r\n\r\n")).decode("latin-1")
            self.requests.append(request)
            if self._handshake == "silent":
                await asyncio.sleep(3600)
                return

            writer.write(self._response(request) + self._greeting)
            await writer.drain()
            if self._handshake != "ok":
                return

            await self._handler(RelaySide(reader, writer))
        except (asyncio.IncompleteReadError, ConnectionError, ConnectivityError):
            pass
        finally:
            writer.close()

    def _response(self, request: str) -> bytes:
        key = ""
        for line in request.split("\r\n"):
            name, _, value = line.partition(":")
            if name.strip().lower() == "sec-websocket-key":
                key = value.strip()

        if self._handshake == "status_200":
            return b"HTTP/1.1 200 OK\r\nContent-Length: 0\r\n\r\n"

        lines = ["HTTP/1.1 101 Switching Protocols", "Upgrade: websocket", "Connection: Upgrade"]
        if self._handshake == "bad_accept":
            bogus = base64.b64encode(hashlib.sha1(b"wrong").digest()).decode()  # noqa: S324
            lines.append(f"Sec-WebSocket-Accept: {bogus}")
        elif self._handshake != "no_accept":
            lines.append(f"Sec-WebSocket-Accept: {compute_accept_key(key)}")
        return ("\r\n".join(lines) + "\r\n\r\n").encode("latin-1")


@pytest.fixture
async def fake_relay() -> AsyncIterator[Callable[..., Awaitable[FakeRelay]]]:
    """Factory starting fake relays that are shut down after the test."""
    relays: list[FakeRelay] = []

    async def factory(handler: RelayHandler = _idle, **kwargs: Any) -> FakeRelay:
        relay = FakeRelay(handler, **kwargs)
        await relay.start()
        relays.append(relay)
        return relay

    yield factory

    for relay in relays:
        await relay.close()
