from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

import pytest

from farmguard._realtime import ChannelState
from farmguard.models.subscription import ChannelStatus


class FakeChannel:
    def __init__(
        self,
        collection: str,
        *,
        event: str,
        row_filter: str | None,
        on_event: Callable[[dict[str, Any]], None],
        on_status: Callable[[ChannelStatus, Exception | None], None],
    ) -> None:
        self.collection = collection
        self.event = event
        self.row_filter = row_filter
        self.on_event = on_event
        self.on_status = on_status
        self.state = ChannelState.JOINING
        self.close_calls = 0

    def close(self) -> None:
        self.close_calls += 1
        self.state = ChannelState.CLOSED

    # Test drivers -----------------------------------------------------

    def subscribed(self) -> None:
        self.state = ChannelState.JOINED
        self.on_status(ChannelStatus.SUBSCRIBED, None)

    def fail(self, status: ChannelStatus = ChannelStatus.CHANNEL_ERROR, error: Exception | None = None) -> None:
        self.state = ChannelState.ERRORED
        self.on_status(status, error)

    def closed_by_server(self) -> None:
        self.state = ChannelState.CLOSED
        self.on_status(ChannelStatus.CLOSED, None)

    def deliver(self, payload: dict[str, Any]) -> None:
        self.on_event(payload)


class FakeFeed:
    def __init__(self) -> None:
        self.channels: list[FakeChannel] = []
        self.raise_on_subscribe: Exception | None = None

    def subscribe_changes(
        self,
        collection: str,
        *,
        event: str = "*",
        row_filter: str | None = None,
        on_event: Callable[[dict[str, Any]], None],
        on_status: Callable[[ChannelStatus, Exception | None], None],
    ) -> FakeChannel:
        if self.raise_on_subscribe is not None:
            raise self.raise_on_subscribe
        channel = FakeChannel(collection, event=event, row_filter=row_filter, on_event=on_event, on_status=on_status)
        self.channels.append(channel)
        return channel

    def for_collection(self, collection: str) -> list[FakeChannel]:
        return [ch for ch in self.channels if ch.collection == collection]

    def latest(self, collection: str) -> FakeChannel:
        return self.for_collection(collection)[-1]

    def live(self, collection: str) -> list[FakeChannel]:
        return [
            ch
            for ch in self.for_collection(collection)
            if ch.state not in (ChannelState.CLOSED, ChannelState.ERRORED)
        ]


@dataclass
class FakeHandle:
    delay: float
    callback: Callable[[], None]
    cancelled: bool = False

    def cancel(self) -> None:
        self.cancelled = True


@dataclass
class FakeScheduler:
    handles: list[FakeHandle] = field(default_factory=list)

    def __call__(self, delay: float, callback: Callable[[], None]) -> FakeHandle:
        handle = FakeHandle(delay, callback)
        self.handles.append(handle)
        return handle

    @property
    def delays(self) -> list[float]:
        return [h.delay for h in self.handles]

    @property
    def pending(self) -> list[FakeHandle]:
        return [h for h in self.handles if not h.cancelled]

    def fire(self) -> None:
        pending = self.pending
        assert pending, "no retry is scheduled"
        handle = pending[-1]
        handle.cancelled = True
        handle.callback()


class FakeBackend:
    def __init__(self, rows: Mapping[str, list[dict[str, Any]]] | None = None) -> None:
        self.rows: dict[str, list[dict[str, Any]]] = {k: list(v) for k, v in (rows or {}).items()}
        self.fetch_errors: dict[str, Exception] = {}
        self.fetch_calls: list[tuple[str, str | None, bool]] = []
        self.updates: list[tuple[str, int | str, dict[str, Any]]] = []
        self.update_error: Exception | None = None

    async def fetch_all(
        self,
        collection: str,
        *,
        order_by: str | None = None,
        descending: bool = False,
    ) -> list[dict[str, Any]]:
        self.fetch_calls.append((collection, order_by, descending))
        error = self.fetch_errors.get(collection)
        if error is not None:
            raise error
        return list(self.rows.get(collection, []))

    async def update(self, collection: str, record_id: int | str, patch: Mapping[str, Any]) -> dict[str, Any]:
        if self.update_error is not None:
            raise self.update_error
        self.updates.append((collection, record_id, dict(patch)))
        return {"id": record_id, **patch}


@pytest.fixture
def feed() -> FakeFeed:
    return FakeFeed()


@pytest.fixture
def scheduler() -> FakeScheduler:
    return FakeScheduler()


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()
