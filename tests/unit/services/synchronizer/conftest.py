"""Shared fixtures for synchronizer tests."""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Iterable
from typing import Any

import pytest

from roostr.core.exceptions import SubscriptionCancelledError
from roostr.models import Event, Filter
from roostr.utils.protocol import SubscriptionResult


class FakeRelayClient:
    """Stands in for RelayClient, serving canned events per author.

    Args:
        url: Relay URL.
        events: Events served; each subscription gets those whose author is
            in the filter.
        connect_error: Raised from ``connect()`` when set.
        subscribe_error: Raised from ``subscribe()`` when set.
        rejected: Rejected count reported per subscription.
        closed_reason: When set, subscriptions end with ``CLOSED``.
        block: Wait for the cancel flag instead of finishing.
    """

    def __init__(
        self,
        url: str,
        events: Iterable[Event] = (),
        *,
        connect_error: BaseException | None = None,
        subscribe_error: BaseException | None = None,
        rejected: int = 0,
        closed_reason: str | None = None,
        block: bool = False,
        tracker: ConcurrencyTracker | None = None,
    ) -> None:
        self.url = url
        self.events = list(events)
        self.connect_error = connect_error
        self.subscribe_error = subscribe_error
        self.rejected = rejected
        self.closed_reason = closed_reason
        self.block = block
        self.tracker = tracker
        self.connected = False
        self.closed = False
        self.filters: list[Filter] = []

    async def connect(self) -> None:
        if self.connect_error is not None:
            raise self.connect_error
        self.connected = True
        if self.tracker is not None:
            await self.tracker.enter()

    async def close(self) -> None:
        self.closed = True
        if self.tracker is not None:
            self.tracker.leave()

    async def subscribe(
        self,
        event_filter: Filter,
        sink: Callable[[Event], Any],
        *,
        cancel: asyncio.Event | None = None,
    ) -> SubscriptionResult:
        self.filters.append(event_filter)
        sub_id = f"sub-{len(self.filters)}"
        if self.subscribe_error is not None:
            raise self.subscribe_error
        if self.block:
            assert cancel is not None
            await cancel.wait()
            raise SubscriptionCancelledError(sub_id)

        result = SubscriptionResult(sub_id, rejected=self.rejected, closed_reason=self.closed_reason)
        for event in self.events:
            if event_filter.authors is None or event.pubkey in event_filter.authors:
                await sink(event)
                result.events += 1
        result.eose = self.closed_reason is None
        return result


class ConcurrencyTracker:
    """Records the peak number of simultaneously connected clients."""

    def __init__(self) -> None:
        self.active = 0
        self.peak = 0

    async def enter(self) -> None:
        self.active += 1
        self.peak = max(self.peak, self.active)
        await asyncio.sleep(0.01)

    def leave(self) -> None:
        self.active -= 1


@pytest.fixture
def make_event(signer) -> Callable[..., Event]:
    """Factory for verified events by the primary test key."""

    def factory(**kwargs: Any) -> Event:
        return Event.from_dict(signer.sign(**kwargs))

    return factory


@pytest.fixture
def tracker() -> ConcurrencyTracker:
    return ConcurrencyTracker()


@pytest.fixture
def fake_client_cls() -> type[FakeRelayClient]:
    """The fake client class, for building per-relay client factories."""
    return FakeRelayClient
