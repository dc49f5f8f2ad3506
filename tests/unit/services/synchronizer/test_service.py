"""
Unit tests for services.synchronizer.service module.

Tests:
- Construction from dict and YAML, configuration errors
- Default client factory wiring of configured timeouts
- run(): per-relay filters, store/skip accounting across relays,
  rejected counts, relay failures, final status
- Cancellation and concurrent run protection
- Parallelism bound and progress logging
- Prometheus counters
"""

import asyncio
import logging
from pathlib import Path

import pytest
from prometheus_client import REGISTRY

from roostr.core.exceptions import (
    ConfigurationError,
    ConnectivityError,
    HandshakeError,
    StorageError,
    SyncInProgressError,
)
from roostr.services.synchronizer import (
    MemoryEventStore,
    RelayStatus,
    SynchronizerConfig,
    SyncStatus,
    Synchronizer,
)
from roostr.utils.protocol import RelayClient


RELAY_A = "wss://relay-a.example.com"
RELAY_B = "wss://relay-b.example.com"
RELAY_C = "wss://relay-c.example.com"


def _config(pubkey: str, relays: list[str], **kwargs) -> SynchronizerConfig:
    return SynchronizerConfig(pubkeys=[pubkey], relays=relays, **kwargs)


def _metric(outcome: str) -> float:
    return REGISTRY.get_sample_value("roostr_sync_events_total", {"outcome": outcome}) or 0.0


# ============================================================================
# Construction
# ============================================================================


class TestConstruction:
    """from_dict(), from_yaml() and defaults."""

    def test_from_dict(self, signer) -> None:
        sync = Synchronizer.from_dict({"pubkeys": [signer.pubkey], "relays": [RELAY_A]}, MemoryEventStore())
        assert sync.config.relays == [RELAY_A]
        assert sync.is_running is False

    def test_from_dict_invalid(self) -> None:
        with pytest.raises(ConfigurationError, match="invalid synchronizer config"):
            Synchronizer.from_dict({"pubkeys": ["nope"]}, MemoryEventStore())

    def test_from_dict_unknown_shape(self) -> None:
        with pytest.raises(ConfigurationError):
            Synchronizer.from_dict({}, MemoryEventStore())

    def test_from_yaml(self, tmp_path: Path, signer) -> None:
        path = tmp_path / "sync.yaml"
        path.write_text(
            f"pubkeys:\n  - \"{signer.pubkey}\"\nrelays:\n  - {RELAY_A}\nkinds: [1, 7]\nsince: 1000\n",
            encoding="utf-8",
        )
        sync = Synchronizer.from_yaml(path, MemoryEventStore())
        assert sync.config.kinds == [1, 7]
        assert sync.config.since == 1000

    def test_from_yaml_missing(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigurationError, match="cannot load config"):
            Synchronizer.from_yaml(tmp_path / "missing.yaml", MemoryEventStore())

    def test_from_yaml_invalid(self, tmp_path: Path) -> None:
        path = tmp_path / "bad.yaml"
        path.write_text("pubkeys: [unclosed\n", encoding="utf-8")
        with pytest.raises(ConfigurationError):
            Synchronizer.from_yaml(path, MemoryEventStore())

    def test_default_client_factory(self, signer) -> None:
        config = _config(signer.pubkey, [RELAY_A], timeouts={"connect": 3.0, "read": 4.0, "close": 2.0})
        sync = Synchronizer(config, MemoryEventStore())

        client = sync._client_factory(RELAY_A)

        assert isinstance(client, RelayClient)
        assert client.url == RELAY_A
        assert client._connect_timeout == 3.0
        assert client._read_timeout == 4.0
        assert client._close_timeout == 2.0


# ============================================================================
# run()
# ============================================================================


class TestRun:
    """Synchronizer.run() outcomes."""

    async def test_two_relays_deduplicated(self, signer, make_event, fake_client_cls) -> None:
        events = [make_event(content=str(i), created_at=1_700_000_000 + i) for i in range(3)]
        clients = {url: fake_client_cls(url, events) for url in (RELAY_A, RELAY_B)}
        store = MemoryEventStore()
        sync = Synchronizer(_config(signer.pubkey, [RELAY_A, RELAY_B]), store, client_factory=clients.__getitem__)

        report = await sync.run()

        assert report.status == SyncStatus.COMPLETED
        assert report.fetched == 6
        assert report.stored == 3
        assert report.skipped == 3
        assert report.rejected == 0
        assert report.last_error is None
        assert report.duration >= 0
        assert len(store) == 3
        assert [o.url for o in report.relays] == [RELAY_A, RELAY_B]
        assert all(o.status == RelayStatus.OK and o.fetched == 3 for o in report.relays)
        assert all(c.connected and c.closed for c in clients.values())
        assert sync.is_running is False

    async def test_filter_per_pubkey(self, signer, other_signer, fake_client_cls) -> None:
        client = fake_client_cls(RELAY_A)
        config = SynchronizerConfig(
            pubkeys=[signer.pubkey, other_signer.pubkey],
            relays=[RELAY_A],
            kinds=[0, 1],
            since=100,
            limit=500,
        )
        sync = Synchronizer(config, MemoryEventStore(), client_factory=lambda url: client)

        await sync.run()

        assert [f.authors for f in client.filters] == [(signer.pubkey,), (other_signer.pubkey,)]
        assert all(f.kinds == (0, 1) and f.since == 100 and f.limit == 500 for f in client.filters)

    async def test_events_outside_filter_skipped(self, signer, make_event, fake_client_cls) -> None:
        events = [
            make_event(kind=1, content="note"),
            make_event(kind=7, content="reaction"),
            make_event(kind=1, content="old", created_at=10),
        ]
        client = fake_client_cls(RELAY_A, events)
        store = MemoryEventStore()
        sync = Synchronizer(
            _config(signer.pubkey, [RELAY_A], kinds=[1], since=1_000),
            store,
            client_factory=lambda url: client,
        )

        report = await sync.run()

        assert report.fetched == 3
        assert report.stored == 1
        assert report.skipped == 2
        assert [e.content for e in store.events] == ["note"]

    async def test_rejected_counted(self, signer, make_event, fake_client_cls) -> None:
        client = fake_client_cls(RELAY_A, [make_event()], rejected=4)
        sync = Synchronizer(_config(signer.pubkey, [RELAY_A]), MemoryEventStore(), client_factory=lambda url: client)

        report = await sync.run()

        assert report.rejected == 4
        assert report.stored == 1

    async def test_one_relay_fails(self, signer, make_event, fake_client_cls) -> None:
        clients = {
            RELAY_A: fake_client_cls(RELAY_A, [make_event()]),
            RELAY_B: fake_client_cls(RELAY_B, connect_error=HandshakeError("bad accept")),
        }
        sync = Synchronizer(
            _config(signer.pubkey, [RELAY_A, RELAY_B]),
            MemoryEventStore(),
            client_factory=clients.__getitem__,
        )

        report = await sync.run()

        assert report.status == SyncStatus.COMPLETED
        assert report.stored == 1
        outcomes = {o.url: o for o in report.relays}
        assert outcomes[RELAY_A].status == RelayStatus.OK
        assert outcomes[RELAY_B].status == RelayStatus.FAILED
        assert outcomes[RELAY_B].error == "bad accept"
        assert report.last_error == f"{RELAY_B}: bad accept"

    async def test_all_relays_fail(self, signer, fake_client_cls) -> None:
        clients = {
            RELAY_A: fake_client_cls(RELAY_A, connect_error=ConnectivityError("refused")),
            RELAY_B: fake_client_cls(RELAY_B, connect_error=TimeoutError()),
        }
        sync = Synchronizer(
            _config(signer.pubkey, [RELAY_A, RELAY_B]),
            MemoryEventStore(),
            client_factory=clients.__getitem__,
        )

        report = await sync.run()

        assert report.status == SyncStatus.FAILED
        assert report.fetched == 0
        assert {o.error for o in report.relays} == {"refused", "TimeoutError"}

    async def test_subscribe_failure_closes_client(self, signer, fake_client_cls) -> None:
        client = fake_client_cls(RELAY_A, subscribe_error=ConnectivityError("connection reset"))
        sync = Synchronizer(_config(signer.pubkey, [RELAY_A]), MemoryEventStore(), client_factory=lambda url: client)

        report = await sync.run()

        assert client.closed is True
        assert report.relays[0].status == RelayStatus.FAILED

    async def test_closed_by_relay_is_not_failure(self, signer, fake_client_cls, caplog) -> None:
        client = fake_client_cls(RELAY_A, closed_reason="restricted: members only")
        sync = Synchronizer(_config(signer.pubkey, [RELAY_A]), MemoryEventStore(), client_factory=lambda url: client)

        with caplog.at_level(logging.WARNING, logger="synchronizer"):
            report = await sync.run()

        assert report.status == SyncStatus.COMPLETED
        assert report.relays[0].status == RelayStatus.OK
        assert any(r.getMessage() == "subscription_closed_by_relay" for r in caplog.records)

    async def test_storage_error_logged_and_continues(self, signer, make_event, fake_client_cls, caplog) -> None:
        class FlakyStore(MemoryEventStore):
            async def insert_event(self, event):
                if event.content == "bad":
                    raise StorageError("disk full")
                return await super().insert_event(event)

        events = [make_event(content="bad"), make_event(content="good")]
        store = FlakyStore()
        client = fake_client_cls(RELAY_A, events)
        sync = Synchronizer(_config(signer.pubkey, [RELAY_A]), store, client_factory=lambda url: client)

        with caplog.at_level(logging.WARNING, logger="synchronizer"):
            report = await sync.run()

        assert report.status == SyncStatus.COMPLETED
        assert report.fetched == 2
        assert report.stored == 1
        assert [e.content for e in store.events] == ["good"]
        assert any(r.getMessage() == "event_store_failed" for r in caplog.records)

    async def test_relay_timeout(self, signer, fake_client_cls) -> None:
        client = fake_client_cls(RELAY_A, block=True)
        config = _config(signer.pubkey, [RELAY_A], timeouts={"relay": 1.0})
        sync = Synchronizer(config, MemoryEventStore(), client_factory=lambda url: client)

        report = await asyncio.wait_for(sync.run(), 5.0)

        assert report.relays[0].status == RelayStatus.FAILED
        assert report.status == SyncStatus.FAILED

    async def test_max_parallel_relays(self, signer, make_event, fake_client_cls, tracker) -> None:
        urls = [f"wss://relay-{i}.example.com" for i in range(6)]
        event = make_event()
        sync = Synchronizer(
            _config(signer.pubkey, urls, max_parallel_relays=2),
            MemoryEventStore(),
            client_factory=lambda url: fake_client_cls(url, [event], tracker=tracker),
        )

        report = await sync.run()

        assert report.fetched == 6
        assert report.stored == 1
        assert tracker.peak <= 2

    async def test_progress_logged(self, signer, make_event, fake_client_cls, caplog) -> None:
        events = [make_event(content=str(i)) for i in range(100)]
        client = fake_client_cls(RELAY_A, events)
        sync = Synchronizer(_config(signer.pubkey, [RELAY_A]), MemoryEventStore(), client_factory=lambda url: client)

        with caplog.at_level(logging.INFO, logger="synchronizer"):
            await sync.run()

        progress = [r for r in caplog.records if r.getMessage() == "sync_progress"]
        assert len(progress) == 1
        assert progress[0].structured_kv["fetched"] == 100

    async def test_metrics_recorded(self, signer, make_event, fake_client_cls) -> None:
        client = fake_client_cls(RELAY_A, [make_event()], rejected=2)
        sync = Synchronizer(_config(signer.pubkey, [RELAY_A]), MemoryEventStore(), client_factory=lambda url: client)
        before = {name: _metric(name) for name in ("fetched", "stored", "rejected")}
        relays_before = REGISTRY.get_sample_value("roostr_relay_syncs_total", {"status": "ok"}) or 0.0

        await sync.run()

        assert _metric("fetched") - before["fetched"] == 1
        assert _metric("stored") - before["stored"] == 1
        assert _metric("rejected") - before["rejected"] == 2
        assert REGISTRY.get_sample_value("roostr_relay_syncs_total", {"status": "ok"}) - relays_before == 1


# ============================================================================
# Cancellation
# ============================================================================


class TestCancellation:
    """cancel() and concurrent runs."""

    def test_cancel_when_idle(self, signer) -> None:
        sync = Synchronizer(_config(signer.pubkey, [RELAY_A]), MemoryEventStore())
        assert sync.cancel() is False

    async def test_cancel_running_job(self, signer, fake_client_cls) -> None:
        clients = {url: fake_client_cls(url, block=True) for url in (RELAY_A, RELAY_B, RELAY_C)}
        sync = Synchronizer(
            _config(signer.pubkey, [RELAY_A, RELAY_B, RELAY_C], max_parallel_relays=2),
            MemoryEventStore(),
            client_factory=clients.__getitem__,
        )

        task = asyncio.create_task(sync.run())
        await asyncio.sleep(0.05)
        assert sync.is_running is True

        assert sync.cancel() is True
        report = await asyncio.wait_for(task, 2.0)

        assert report.status == SyncStatus.CANCELLED
        assert all(o.status == RelayStatus.CANCELLED for o in report.relays)
        # The third relay never got a slot before cancellation
        assert clients[RELAY_C].connected is False
        assert sync.is_running is False

    async def test_concurrent_run_rejected(self, signer, fake_client_cls) -> None:
        client = fake_client_cls(RELAY_A, block=True)
        sync = Synchronizer(_config(signer.pubkey, [RELAY_A]), MemoryEventStore(), client_factory=lambda url: client)

        task = asyncio.create_task(sync.run())
        await asyncio.sleep(0.05)
        with pytest.raises(SyncInProgressError):
            await sync.run()

        sync.cancel()
        await asyncio.wait_for(task, 2.0)

    async def test_rerun_after_cancel(self, signer, make_event, fake_client_cls) -> None:
        blocking = fake_client_cls(RELAY_A, block=True)
        serving = fake_client_cls(RELAY_A, [make_event()])
        clients = iter([blocking, serving])
        sync = Synchronizer(_config(signer.pubkey, [RELAY_A]), MemoryEventStore(), client_factory=lambda url: next(clients))

        task = asyncio.create_task(sync.run())
        await asyncio.sleep(0.05)
        sync.cancel()
        first = await asyncio.wait_for(task, 2.0)
        second = await sync.run()

        assert first.status == SyncStatus.CANCELLED
        assert second.status == SyncStatus.COMPLETED
        assert second.stored == 1
