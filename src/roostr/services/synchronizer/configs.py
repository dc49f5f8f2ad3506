"""Synchronizer configuration models.

See Also:
    [Synchronizer][roostr.services.synchronizer.Synchronizer]: The service
        class that consumes these configurations.
    [load_yaml()][roostr.core.yaml.load_yaml]: Loads the YAML form of
        [SynchronizerConfig][roostr.services.synchronizer.SynchronizerConfig].
"""

from __future__ import annotations

from typing import Final

from pydantic import BaseModel, Field, field_validator

from roostr.core.exceptions import InvalidPubkeyError
from roostr.core.metrics import MetricsConfig
from roostr.models.constants import EVENT_KIND_MAX
from roostr.models.relay import Relay
from roostr.nips.nip19 import validate_pubkey


DEFAULT_SYNC_RELAYS: Final[tuple[str, ...]] = (
    "wss://relay.damus.io",
    "wss://relay.nostr.band",
    "wss://nos.lol",
    "wss://relay.primal.net",
    "wss://nostr.wine",
    "wss://relay.snort.social",
)


class TimeoutsConfig(BaseModel):
    """Network timeouts in seconds.

    ``read`` is the poll interval of a subscription: the longest single wait
    for the next frame before the cancel flag is re-checked. ``relay`` bounds
    the whole sync of one relay (all pubkeys).
    """

    connect: float = Field(default=10.0, gt=0.0, le=120.0, description="Dial and handshake timeout")
    read: float = Field(default=30.0, gt=0.0, le=300.0, description="Per-read poll interval")
    close: float = Field(default=5.0, gt=0.0, le=60.0, description="Close handshake timeout")
    nip05: float = Field(default=10.0, gt=0.0, le=60.0, description="NIP-05 fetch timeout")
    relay: float = Field(
        default=1800.0, ge=1.0, le=14_400.0, description="Max time per relay sync"
    )


class SynchronizerConfig(BaseModel):
    """Sync job configuration.

    Pubkeys may be given as npub or hex and are normalized to lowercase hex.
    An empty relay list means [DEFAULT_SYNC_RELAYS][roostr.services.synchronizer.configs.DEFAULT_SYNC_RELAYS].

    See Also:
        [Synchronizer][roostr.services.synchronizer.Synchronizer]: The
            service class that consumes this configuration.
        [TimeoutsConfig][roostr.services.synchronizer.configs.TimeoutsConfig]:
            Embedded timeout settings.
        [MetricsConfig][roostr.core.metrics.MetricsConfig]: Embedded
            configuration for the Prometheus metrics endpoint.
    """

    pubkeys: list[str] = Field(min_length=1, description="Authors to sync (npub or hex)")
    relays: list[str] = Field(
        default_factory=list,
        validate_default=True,
        description="Relays to sync from (empty = defaults)",
    )
    kinds: list[int] | None = Field(default=None, description="Event kinds to sync (None = all)")
    since: int | None = Field(default=None, ge=0, description="Only events created at or after")
    limit: int | None = Field(default=None, ge=1, description="Per-subscription limit sent to relays")
    max_parallel_relays: int = Field(default=4, ge=1, le=64, description="Relays synced concurrently")
    timeouts: TimeoutsConfig = Field(default_factory=TimeoutsConfig)
    metrics: MetricsConfig = Field(
        default_factory=MetricsConfig,
        description="Prometheus metrics configuration",
    )

    @field_validator("pubkeys", mode="after")
    @classmethod
    def normalize_pubkeys(cls, v: list[str]) -> list[str]:
        """Convert every pubkey to lowercase hex, dropping duplicates in order."""
        result: list[str] = []
        for value in v:
            try:
                hex_pubkey, _ = validate_pubkey(value)
            except InvalidPubkeyError as e:
                raise ValueError(f"Invalid pubkey {value!r}: {e}") from e
            if hex_pubkey not in result:
                result.append(hex_pubkey)
        return result

    @field_validator("relays", mode="after")
    @classmethod
    def validate_relays(cls, v: list[str]) -> list[str]:
        """Validate relay URLs, fall back to the defaults when empty."""
        if not v:
            return list(DEFAULT_SYNC_RELAYS)
        result: list[str] = []
        for url in v:
            relay = Relay(url)
            if relay.url not in result:
                result.append(relay.url)
        return result

    @field_validator("kinds", mode="after")
    @classmethod
    def validate_kinds(cls, v: list[int] | None) -> list[int] | None:
        """Validate that all event kinds are within the valid range (0-65535)."""
        if v is None:
            return v
        for kind in v:
            if not 0 <= kind <= EVENT_KIND_MAX:
                raise ValueError(f"Event kind {kind} out of valid range (0-{EVENT_KIND_MAX})")
        return v or None
