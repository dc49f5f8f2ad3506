"""HTTP helpers for reading untrusted response bodies.

Note:
    This module depends only on ``aiohttp`` and the standard library, so it is
    importable from both ``nips`` and ``services``.

See Also:
    [resolve_nip05_parts()][roostr.nips.nip05.resolve_nip05_parts]: Reads
        ``nostr.json`` through [read_bounded_json][roostr.utils.http.read_bounded_json].
"""

from __future__ import annotations

import json
from typing import Any, Final

import aiohttp


DEFAULT_MAX_BODY_SIZE: Final[int] = 1024 * 1024


async def read_bounded(response: aiohttp.ClientResponse, max_size: int) -> bytes:
    """Read a whole response body, refusing anything above *max_size* bytes.

    Reads in a loop until EOF because a chunked body can return short reads
    while more data is pending.

    Raises:
        ValueError: If the body exceeds *max_size*.
    """
    chunks: list[bytes] = []
    total = 0
    while True:
        chunk = await response.content.read(max_size + 1 - total)
        if not chunk:
            break
        total += len(chunk)
        if total > max_size:
            raise ValueError(f"Response body too large: >{max_size} bytes")
        chunks.append(chunk)
    return b"".join(chunks)


async def read_bounded_json(
    response: aiohttp.ClientResponse,
    max_size: int = DEFAULT_MAX_BODY_SIZE,
) -> Any:
    """Read and parse a JSON body with size enforcement.

    The size check happens before parsing, so an oversized body is never
    handed to the JSON decoder.

    Raises:
        ValueError: If the body exceeds *max_size*.
        json.JSONDecodeError: If the body is not valid JSON.
    """
    body = await read_bounded(response, max_size)
    return json.loads(body)
