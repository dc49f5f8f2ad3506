"""Bech32 codec, WebSocket transport, relay client and HTTP helpers.

The utils layer depends only on [roostr.models][roostr.models] and
[roostr.core][roostr.core]. It provides the low-level network and encoding
pieces used by [roostr.nips][roostr.nips] and
[roostr.services][roostr.services].

Attributes:
    bech32: BIP-173 checksummed text encoding.
    http: Size-capped reading of aiohttp response bodies.
    websocket: RFC 6455 client transport over asyncio streams.
    protocol: NIP-01 subscription client with event verification.

Examples:
    ```python
    from roostr.utils.protocol import RelayClient
    from roostr.utils.websocket import WebSocketConnection
    ```
"""
