from __future__ import annotations

import pytest
from conftest import FakeBackend, FakeFeed, FakeScheduler

from farmguard.client import FarmGuardClient, fetch_snapshot
from farmguard.config import FarmGuardConfig
from farmguard.exceptions import FarmGuardError, RefreshError, TransportError
from farmguard.models.notice import Notice, NoticeLevel
from farmguard.state.store import Snapshot

_CONFIG = FarmGuardConfig(url="https://demo.supabase.co", anon_key="anon-key")


def _rows() -> dict[str, list[dict[str, object]]]:
    return {
        "fire_zones": [{"id": 1, "name": "North field", "status": "Active"}],
        "security_points": [{"id": 10, "name": "Gate A"}],
        "team_members": [{"id": 7, "name": "Zoe", "status": "Off Duty"}, {"id": 8, "name": "adam"}],
    }


def _connect_all(feed: FakeFeed) -> None:
    for name in ("fire_zones", "security_points", "team_members"):
        feed.latest(name).subscribed()


def _client(
    feed: FakeFeed,
    scheduler: FakeScheduler,
    backend: FakeBackend,
    notices: list[Notice],
    **kwargs: object,
) -> FarmGuardClient:
    return FarmGuardClient(
        _CONFIG,
        backend=backend,  # type: ignore[arg-type]
        feed=feed,  # type: ignore[arg-type]
        scheduler=scheduler,
        on_notice=notices.append,
        **kwargs,  # type: ignore[arg-type]
    )


@pytest.mark.asyncio
async def test_fetch_snapshot_is_all_or_nothing() -> None:
    backend = FakeBackend(_rows())
    snapshot = await fetch_snapshot(backend)
    assert [m.name for m in snapshot.team_members] == ["Zoe", "adam"]

    backend.fetch_errors["fire_zones"] = TransportError("down")
    with pytest.raises(TransportError):
        await fetch_snapshot(backend)


def test_client_requires_context() -> None:
    client = FarmGuardClient(_CONFIG, backend=FakeBackend(), feed=FakeFeed())  # type: ignore[arg-type]
    assert not client.is_connected
    with pytest.raises(FarmGuardError, match="not initialized"):
        _ = client.fire_zones


@pytest.mark.asyncio
async def test_session_seeds_subscribes_and_applies_changes(feed: FakeFeed, scheduler: FakeScheduler) -> None:
    backend = FakeBackend(_rows())
    notices: list[Notice] = []

    async with _client(feed, scheduler, backend, notices) as client:
        assert [m.name for m in client.team_members] == ["adam", "Zoe"]
        assert not client.is_connected
        _connect_all(feed)
        assert client.is_connected
        status = client.get_subscription_status("fire_zones")
        assert status is not None and status.is_connected

        feed.latest("fire_zones").deliver(
            {
                "data": {
                    "type": "INSERT",
                    "record": {"id": 2, "name": "Orchard"},
                    "old_record": {},
                    "commit_timestamp": "2026-03-01T12:00:00Z",
                }
            }
        )
        assert [z.id for z in client.fire_zones] == [2, 1]
        assert notices[-1].title == "New Fire Zone"
        assert len(client.recent_activity) == 1

        # Redelivery after a reconnect changes nothing and is not announced twice.
        count = len(notices)
        feed.latest("fire_zones").deliver(
            {"data": {"type": "INSERT", "record": {"id": 2, "name": "Orchard"}, "old_record": {}}}
        )
        assert len(client.fire_zones) == 2
        assert len(notices) == count

    assert all(not feed.live(name) for name in ("fire_zones", "security_points", "team_members"))


@pytest.mark.asyncio
async def test_provided_snapshot_skips_initial_fetch(feed: FakeFeed, scheduler: FakeScheduler) -> None:
    backend = FakeBackend()
    snapshot = Snapshot.from_rows(fire_zones=[{"id": 5, "name": "Seeded"}])

    async with _client(feed, scheduler, backend, [], snapshot=snapshot) as client:
        assert [z.id for z in client.fire_zones] == [5]
        assert backend.fetch_calls == []


@pytest.mark.asyncio
async def test_write_through_converges_via_change_event(feed: FakeFeed, scheduler: FakeScheduler) -> None:
    backend = FakeBackend(_rows())

    async with _client(feed, scheduler, backend, []) as client:
        _connect_all(feed)
        await client.update_team_member_status(7, "On Duty")

        assert backend.updates[0][:2] == ("team_members", 7)
        assert next(m for m in client.team_members if m.id == 7).status == "Off Duty"

        feed.latest("team_members").deliver(
            {"data": {"type": "UPDATE", "record": {"id": 7, "name": "Zoe", "status": "On Duty"}, "old_record": {}}}
        )
        assert next(m for m in client.team_members if m.id == 7).status == "On Duty"


@pytest.mark.asyncio
async def test_refresh_failure_is_partial_and_notified(feed: FakeFeed, scheduler: FakeScheduler) -> None:
    backend = FakeBackend(_rows())
    notices: list[Notice] = []

    async with _client(feed, scheduler, backend, notices) as client:
        backend.rows["fire_zones"] = [{"id": 3, "name": "Fresh"}]
        backend.fetch_errors["team_members"] = TransportError("gateway timeout")

        with pytest.raises(RefreshError):
            await client.refresh_data()

        assert [z.id for z in client.fire_zones] == [3]
        assert client.error is not None
        assert notices[-1].level == NoticeLevel.ERROR
        assert not client.is_refreshing


@pytest.mark.asyncio
async def test_exhausted_collection_warns_and_restart_recovers(feed: FakeFeed, scheduler: FakeScheduler) -> None:
    backend = FakeBackend(_rows())
    notices: list[Notice] = []
    config = FarmGuardConfig(url="https://demo.supabase.co", anon_key="anon-key", max_retries=1)

    async with FarmGuardClient(
        config,
        backend=backend,  # type: ignore[arg-type]
        feed=feed,  # type: ignore[arg-type]
        scheduler=scheduler,
        on_notice=notices.append,
    ) as client:
        _connect_all(feed)
        feed.latest("security_points").fail()
        scheduler.fire()
        feed.latest("security_points").fail()

        warnings = [n for n in notices if n.level == NoticeLevel.WARNING]
        assert len(warnings) == 1
        assert warnings[0].collection == "security_points"
        assert not client.is_connected
        # The other collections keep streaming.
        fire_status = client.get_subscription_status("fire_zones")
        assert fire_status is not None and fire_status.is_connected

        client.restart_realtime("security_points")
        feed.latest("security_points").subscribed()
        assert client.is_connected
