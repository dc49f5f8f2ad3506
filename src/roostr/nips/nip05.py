"""
NIP-05 identifier resolution and identity input handling.

A NIP-05 identifier ``name@domain`` maps to a public key through the JSON
document at ``https://<domain>/.well-known/nostr.json?name=<name>``:

```json
{
  "names": {"bob": "b0635d6a9851d3aed0cd6c495b282167acf761729078d975fc341b22650b07b9"},
  "relays": {"b0635d6a...": ["wss://relay.example.com"]}
}
```

[resolve_identity()][roostr.nips.nip05.resolve_identity] is the single entry
point for user-entered identities: it accepts an npub, a hex pubkey or a
NIP-05 identifier, in that order of precedence.

Warning:
    Resolution performs an outbound HTTPS request to a domain chosen by the
    user. The response body is size-capped and only the ``names`` and
    ``relays`` members are read.

See Also:
    [roostr.nips.nip19][]: npub/hex validation used for the first two forms.
    [read_bounded_json()][roostr.utils.http.read_bounded_json]: Size-capped
        body reading.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING, Any, Final, NamedTuple

import aiohttp

from roostr.core.exceptions import (
    InvalidPubkeyError,
    Nip05FetchError,
    Nip05FormatError,
    Nip05InvalidPubkeyError,
    Nip05NotFoundError,
)
from roostr.utils.http import DEFAULT_MAX_BODY_SIZE, read_bounded_json

from .nip19 import NPUB_HRP, encode_npub, is_valid_hex_pubkey, validate_pubkey


if TYPE_CHECKING:
    from collections.abc import Mapping


logger = logging.getLogger(__name__)


DEFAULT_NIP05_TIMEOUT: Final[float] = 10.0
USER_AGENT: Final[str] = "roostr/1.0"
WELL_KNOWN_PATH: Final[str] = "/.well-known/nostr.json"

# NIP-05: an empty local part means the root identifier "_@domain"
_ROOT_NAME: Final[str] = "_"
_MIN_DOMAIN_LENGTH: Final[int] = 3


class IdentitySource(StrEnum):
    """How a user-entered identity was recognized."""

    NPUB = "npub"
    HEX = "hex"
    NIP05 = "nip05"


@dataclass(frozen=True, slots=True)
class Nip05Result:
    """A resolved NIP-05 identifier.

    Attributes:
        name: Lower-cased local part (``_`` for the root identifier).
        domain: Lower-cased domain queried.
        pubkey: Lower-case hex public key.
        npub: The same key in ``npub1...`` form.
        relays: Relay hints published for the pubkey, possibly empty.
    """

    name: str
    domain: str
    pubkey: str
    npub: str
    relays: tuple[str, ...] = field(default=())


class ResolvedIdentity(NamedTuple):
    """Result of [resolve_identity()][roostr.nips.nip05.resolve_identity]."""

    pubkey: str
    npub: str
    source: IdentitySource
    nip05_name: str | None = None


def parse_nip05(identifier: str) -> tuple[str, str]:
    """Split a NIP-05 identifier into ``(name, domain)``, both lower-cased.

    An empty name becomes ``_``.

    Raises:
        Nip05FormatError: If there is not exactly one ``@`` or the domain is
            shorter than 3 characters or has no dot.
    """
    parts = identifier.strip().lower().split("@")
    if len(parts) != 2:
        raise Nip05FormatError(f"invalid NIP-05 identifier format: {identifier!r}")

    name, domain = parts
    if not _is_domain(domain):
        raise Nip05FormatError(f"invalid NIP-05 domain: {domain!r}")
    return name or _ROOT_NAME, domain


def is_nip05_identifier(value: str) -> bool:
    """Return True if *value* looks like ``name@domain`` with a non-empty name."""
    parts = value.split("@")
    if len(parts) != 2:
        return False
    name, domain = parts
    return bool(name) and _is_domain(domain)


def _is_domain(domain: str) -> bool:
    return len(domain) >= _MIN_DOMAIN_LENGTH and "." in domain


async def resolve_nip05(
    identifier: str,
    *,
    timeout: float = DEFAULT_NIP05_TIMEOUT,  # noqa: ASYNC109
    session: aiohttp.ClientSession | None = None,
) -> Nip05Result:
    """Resolve ``name@domain`` to a public key.

    Args:
        identifier: NIP-05 identifier.
        timeout: Total request timeout in seconds.
        session: Optional shared ``aiohttp.ClientSession``. A short-lived
            session is created and closed when omitted.

    Raises:
        Nip05FormatError: If *identifier* is malformed.
        Nip05FetchError: If the document cannot be fetched or decoded.
        Nip05NotFoundError: If the name is not in the document.
        Nip05InvalidPubkeyError: If the name maps to something other than
            a 64-character hex key.
    """
    name, domain = parse_nip05(identifier)
    return await resolve_nip05_parts(name, domain, timeout=timeout, session=session)


async def resolve_nip05_parts(
    name: str,
    domain: str,
    *,
    timeout: float = DEFAULT_NIP05_TIMEOUT,  # noqa: ASYNC109
    session: aiohttp.ClientSession | None = None,
) -> Nip05Result:
    """Resolve an already split NIP-05 ``name`` and ``domain``.

    See [resolve_nip05()][roostr.nips.nip05.resolve_nip05] for arguments and
    errors.
    """
    if session is None:
        async with aiohttp.ClientSession() as own_session:
            document = await _fetch_document(own_session, name, domain, timeout)
    else:
        document = await _fetch_document(session, name, domain, timeout)

    names = document.get("names")
    if not isinstance(names, dict):
        raise Nip05FetchError(f"invalid NIP-05 response from {domain}: 'names' is not an object")

    pubkey = _lookup_name(names, name)
    if pubkey is None:
        raise Nip05NotFoundError(f"name {name!r} not found at {domain}")
    if not isinstance(pubkey, str) or not is_valid_hex_pubkey(pubkey):
        raise Nip05InvalidPubkeyError(f"NIP-05 response for {name}@{domain} contains an invalid pubkey")

    pubkey = pubkey.lower()
    relays = _relay_hints(document.get("relays"), pubkey)
    logger.debug("nip05_resolved name=%s domain=%s pubkey=%s relays=%d", name, domain, pubkey, len(relays))
    return Nip05Result(name=name, domain=domain, pubkey=pubkey, npub=encode_npub(pubkey), relays=relays)


async def _fetch_document(
    session: aiohttp.ClientSession,
    name: str,
    domain: str,
    timeout: float,  # noqa: ASYNC109
) -> dict[str, Any]:
    url = f"https://{domain}{WELL_KNOWN_PATH}"
    headers = {"Accept": "application/json", "User-Agent": USER_AGENT}
    logger.debug("nip05_fetching url=%s name=%s", url, name)

    try:
        async with session.get(
            url,
            params={"name": name},
            headers=headers,
            timeout=aiohttp.ClientTimeout(total=timeout),
        ) as response:
            if response.status != 200:
                raise Nip05FetchError(f"failed to fetch NIP-05 data from {domain}: HTTP {response.status}")
            document = await read_bounded_json(response, DEFAULT_MAX_BODY_SIZE)
    except (aiohttp.ClientError, TimeoutError) as e:
        logger.debug("nip05_fetch_failed domain=%s error=%s", domain, e)
        raise Nip05FetchError(f"failed to fetch NIP-05 data from {domain}: {e}") from e
    except ValueError as e:
        # json.JSONDecodeError and the size cap are both ValueError
        raise Nip05FetchError(f"invalid NIP-05 response from {domain}: {e}") from e

    if not isinstance(document, dict):
        raise Nip05FetchError(f"invalid NIP-05 response from {domain}: not a JSON object")
    return document


def _lookup_name(names: Mapping[str, Any], name: str) -> Any:
    if name in names:
        return names[name]
    for key, value in names.items():
        if isinstance(key, str) and key.lower() == name:
            return value
    return None


def _relay_hints(relays: Any, pubkey: str) -> tuple[str, ...]:
    if not isinstance(relays, dict):
        return ()
    hints = relays.get(pubkey)
    if not isinstance(hints, list):
        return ()
    return tuple(url for url in hints if isinstance(url, str))


async def resolve_identity(
    value: str,
    *,
    timeout: float = DEFAULT_NIP05_TIMEOUT,  # noqa: ASYNC109
    session: aiohttp.ClientSession | None = None,
) -> ResolvedIdentity:
    """Resolve user input given as npub, hex pubkey or NIP-05 identifier.

    The forms are tried strictly in that order and the first matching shape
    wins, with no fallback: input starting with ``npub`` is only ever decoded
    as bech32, even if it also contains ``@``.

    Raises:
        InvalidPubkeyError: If the input matches no form, or is an invalid npub.
        Nip05Error: If a NIP-05 identifier fails to resolve.
    """
    value = value.strip()

    if value.lower().startswith(NPUB_HRP):
        pubkey, npub = validate_pubkey(value)
        return ResolvedIdentity(pubkey, npub, IdentitySource.NPUB)

    if is_valid_hex_pubkey(value):
        pubkey, npub = validate_pubkey(value)
        return ResolvedIdentity(pubkey, npub, IdentitySource.HEX)

    if is_nip05_identifier(value):
        result = await resolve_nip05(value, timeout=timeout, session=session)
        return ResolvedIdentity(result.pubkey, result.npub, IdentitySource.NIP05, result.name)

    raise InvalidPubkeyError(f"unrecognized identity: {value!r}")
