"""Synchronizer service for Roostr.

Backfills the history of configured identities from public relays into an
[EventStore][roostr.services.synchronizer.store.EventStore]. Uses
``asyncio.TaskGroup`` with a semaphore for structured, bounded concurrency
across relays.

The synchronization workflow proceeds as follows:

1. For each relay (at most ``max_parallel_relays`` at a time), open one
   [RelayClient][roostr.utils.protocol.RelayClient] connection.
2. For each pubkey, subscribe with
   ``Filter(authors=[pubkey], kinds, since, limit)`` until ``EOSE``.
3. Every event arrives already verified; events outside the requested
   filter are skipped, the rest are inserted into the store.
4. Count fetched, stored, skipped and rejected events and report per relay.

Note:
    A failing relay never stops the job: its error is recorded and the other
    relays continue. Storage errors are logged and the event is dropped. The
    job ends ``failed`` only when an error occurred and nothing at all was
    fetched.

See Also:
    [SynchronizerConfig][roostr.services.synchronizer.SynchronizerConfig]:
        Configuration model for pubkeys, relays, kinds and timeouts.
    [MemoryEventStore][roostr.services.synchronizer.store.MemoryEventStore]:
        In-memory store used by the CLI.

Examples:
    ```python
    from roostr.services.synchronizer import MemoryEventStore, Synchronizer

    store = MemoryEventStore()
    sync = Synchronizer.from_yaml("config/sync.yaml", store=store)
    report = await sync.run()
    print(report.status, report.stored)
    ```
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from enum import StrEnum
from functools import partial
from typing import TYPE_CHECKING, Any, Final

import yaml
from pydantic import ValidationError

from roostr.core.exceptions import (
    ConfigurationError,
    RoostrError,
    StorageError,
    SubscriptionCancelledError,
    SyncInProgressError,
)
from roostr.core.logger import Logger
from roostr.core.metrics import RELAY_SYNCS, SYNC_DURATION_SECONDS, SYNC_EVENTS
from roostr.core.yaml import load_yaml
from roostr.models.filter import Filter
from roostr.utils.protocol import RelayClient

from .configs import SynchronizerConfig


if TYPE_CHECKING:
    from collections.abc import Callable
    from pathlib import Path

    from roostr.models.event import Event

    from .store import EventStore

    ClientFactory = Callable[[str], RelayClient]


PROGRESS_LOG_INTERVAL: Final[int] = 100


class SyncStatus(StrEnum):
    """Final status of a sync job."""

    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


class RelayStatus(StrEnum):
    """Outcome of syncing one relay."""

    OK = "ok"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass(slots=True)
class RelaySyncOutcome:
    """Per-relay result of a sync job."""

    url: str
    status: RelayStatus = RelayStatus.OK
    fetched: int = 0
    error: str | None = None


@dataclass(slots=True)
class SyncReport:
    """Result of one [Synchronizer.run()][roostr.services.synchronizer.Synchronizer.run].

    Attributes:
        status: Final job status.
        fetched: Verified events received from relays.
        stored: Events the store reported as new.
        skipped: Duplicates and events outside the requested filter.
        rejected: Events that failed verification.
        relays: Per-relay outcomes, in configuration order.
        last_error: Last relay-level error message, if any.
        duration: Wall-clock seconds.
    """

    status: SyncStatus
    fetched: int = 0
    stored: int = 0
    skipped: int = 0
    rejected: int = 0
    relays: list[RelaySyncOutcome] = field(default_factory=list)
    last_error: str | None = None
    duration: float = 0.0


@dataclass(slots=True)
class _SyncCounters:
    fetched: int = 0
    stored: int = 0
    skipped: int = 0
    rejected: int = 0
    last_error: str | None = None


class Synchronizer:
    """Event synchronization service.

    One instance runs at most one job at a time; a second concurrent
    [run()][roostr.services.synchronizer.Synchronizer.run] raises
    [SyncInProgressError][roostr.core.exceptions.SyncInProgressError].

    Args:
        config: Validated job configuration.
        store: Destination for verified events.
        client_factory: Builds a [RelayClient][roostr.utils.protocol.RelayClient]
            for a relay URL. Defaults to one configured from
            ``config.timeouts``.
    """

    def __init__(
        self,
        config: SynchronizerConfig,
        store: EventStore,
        *,
        client_factory: ClientFactory | None = None,
    ) -> None:
        self._config = config
        self._store = store
        self._client_factory = client_factory or self._create_client
        self._logger = Logger("synchronizer")
        self._cancel = asyncio.Event()
        self._running = False

    @classmethod
    def from_yaml(cls, config_path: str | Path, store: EventStore, **kwargs: Any) -> Synchronizer:
        """Create a synchronizer from a YAML configuration file.

        Raises:
            ConfigurationError: If the file is missing, not valid YAML or
                fails validation.
        """
        try:
            data = load_yaml(config_path)
        except (OSError, ValueError, yaml.YAMLError) as e:
            raise ConfigurationError(f"cannot load config {config_path}: {e}") from e
        return cls.from_dict(data, store, **kwargs)

    @classmethod
    def from_dict(cls, data: dict[str, Any], store: EventStore, **kwargs: Any) -> Synchronizer:
        """Create a synchronizer from a configuration dictionary.

        Raises:
            ConfigurationError: If *data* fails validation.
        """
        try:
            config = SynchronizerConfig(**data)
        except (ValidationError, TypeError) as e:
            raise ConfigurationError(f"invalid synchronizer config: {e}") from e
        return cls(config, store, **kwargs)

    @property
    def config(self) -> SynchronizerConfig:
        return self._config

    @property
    def is_running(self) -> bool:
        return self._running

    def cancel(self) -> bool:
        """Request cancellation of the running job.

        Returns:
            True if a job was running, False otherwise.
        """
        if not self._running:
            return False
        self._logger.info("sync_cancel_requested")
        self._cancel.set()
        return True

    # -------------------------------------------------------------------------
    # Job
    # -------------------------------------------------------------------------

    async def run(self) -> SyncReport:
        """Sync every configured pubkey from every configured relay.

        Raises:
            SyncInProgressError: If a job is already running on this instance.
        """
        if self._running:
            raise SyncInProgressError("a sync job is already running")
        self._running = True
        self._cancel.clear()

        counters = _SyncCounters()
        outcomes = [RelaySyncOutcome(url) for url in self._config.relays]
        semaphore = asyncio.Semaphore(self._config.max_parallel_relays)
        start = time.monotonic()

        self._logger.info(
            "sync_started",
            relays=len(self._config.relays),
            pubkeys=len(self._config.pubkeys),
            kinds=self._config.kinds,
            since=self._config.since,
        )

        try:
            async with asyncio.TaskGroup() as tg:
                for outcome in outcomes:
                    tg.create_task(self._sync_relay(outcome, semaphore, counters))
        except ExceptionGroup as eg:
            for exc in eg.exceptions:
                self._logger.error(
                    "worker_unexpected_exception",
                    error=str(exc),
                    error_type=type(exc).__name__,
                )
                counters.last_error = str(exc)
        finally:
            self._running = False

        duration = time.monotonic() - start
        report = SyncReport(
            status=self._final_status(counters),
            fetched=counters.fetched,
            stored=counters.stored,
            skipped=counters.skipped,
            rejected=counters.rejected,
            relays=outcomes,
            last_error=counters.last_error,
            duration=duration,
        )
        SYNC_DURATION_SECONDS.observe(duration)

        self._logger.info(
            "sync_finished",
            status=report.status,
            fetched=report.fetched,
            stored=report.stored,
            skipped=report.skipped,
            rejected=report.rejected,
            failed_relays=sum(1 for o in outcomes if o.status == RelayStatus.FAILED),
            duration_s=round(duration, 2),
        )
        return report

    def _final_status(self, counters: _SyncCounters) -> SyncStatus:
        if self._cancel.is_set():
            return SyncStatus.CANCELLED
        if counters.last_error is not None and counters.fetched == 0:
            return SyncStatus.FAILED
        return SyncStatus.COMPLETED

    def _create_client(self, url: str) -> RelayClient:
        timeouts = self._config.timeouts
        return RelayClient(
            url,
            connect_timeout=timeouts.connect,
            read_timeout=timeouts.read,
            close_timeout=timeouts.close,
        )

    def _build_filter(self, pubkey: str) -> Filter:
        return Filter(
            authors=[pubkey],
            kinds=self._config.kinds,
            since=self._config.since,
            limit=self._config.limit,
        )

    async def _sync_relay(
        self,
        outcome: RelaySyncOutcome,
        semaphore: asyncio.Semaphore,
        counters: _SyncCounters,
    ) -> None:
        """Sync all pubkeys from one relay over a single connection."""
        async with semaphore:
            if self._cancel.is_set():
                outcome.status = RelayStatus.CANCELLED
                return

            self._logger.info("relay_sync_started", url=outcome.url)
            try:
                client = self._client_factory(outcome.url)
                async with asyncio.timeout(self._config.timeouts.relay):
                    await client.connect()
                    try:
                        await self._sync_pubkeys(client, outcome, counters)
                    finally:
                        await client.close()
            except SubscriptionCancelledError:
                outcome.status = RelayStatus.CANCELLED
            except (RoostrError, OSError, TimeoutError, ValueError) as e:
                outcome.status = RelayStatus.FAILED
                outcome.error = str(e) or type(e).__name__
                counters.last_error = f"{outcome.url}: {outcome.error}"
                self._logger.warning(
                    "relay_sync_failed",
                    url=outcome.url,
                    error=outcome.error,
                    error_type=type(e).__name__,
                )

        if outcome.status != RelayStatus.CANCELLED:
            RELAY_SYNCS.labels(status=outcome.status).inc()
        self._logger.info(
            "relay_sync_finished",
            url=outcome.url,
            status=outcome.status,
            fetched=outcome.fetched,
        )

    async def _sync_pubkeys(
        self,
        client: RelayClient,
        outcome: RelaySyncOutcome,
        counters: _SyncCounters,
    ) -> None:
        for pubkey in self._config.pubkeys:
            if self._cancel.is_set():
                outcome.status = RelayStatus.CANCELLED
                return

            self._logger.debug("pubkey_sync_started", url=outcome.url, pubkey=pubkey[:16])
            event_filter = self._build_filter(pubkey)
            result = await client.subscribe(
                event_filter,
                partial(self._store_event, event_filter, outcome, counters),
                cancel=self._cancel,
            )

            counters.rejected += result.rejected
            SYNC_EVENTS.labels(outcome="rejected").inc(result.rejected)
            if result.closed_by_relay:
                self._logger.warning(
                    "subscription_closed_by_relay",
                    url=outcome.url,
                    pubkey=pubkey[:16],
                    reason=result.closed_reason,
                )

    async def _store_event(
        self,
        event_filter: Filter,
        outcome: RelaySyncOutcome,
        counters: _SyncCounters,
        event: Event,
    ) -> None:
        """Sink for one verified event."""
        counters.fetched += 1
        outcome.fetched += 1
        SYNC_EVENTS.labels(outcome="fetched").inc()

        if not event_filter.matches(event):
            counters.skipped += 1
            SYNC_EVENTS.labels(outcome="skipped").inc()
        else:
            try:
                inserted = await self._store.insert_event(event)
            except StorageError as e:
                self._logger.warning("event_store_failed", event_id=event.id[:16], error=str(e))
            else:
                label = "stored" if inserted else "skipped"
                if inserted:
                    counters.stored += 1
                else:
                    counters.skipped += 1
                SYNC_EVENTS.labels(outcome=label).inc()

        if counters.fetched % PROGRESS_LOG_INTERVAL == 0:
            self._logger.info(
                "sync_progress",
                fetched=counters.fetched,
                stored=counters.stored,
                skipped=counters.skipped,
            )
