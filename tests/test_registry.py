from __future__ import annotations

import logging

import pytest
from conftest import FakeFeed, FakeScheduler

from farmguard.exceptions import FarmGuardError, RetriesExhaustedError
from farmguard.models.notice import Notice, NoticeLevel
from farmguard.models.subscription import SubscriptionState
from farmguard.realtime.registry import SubscriptionRegistry

COLLECTIONS = ("fire_zones", "security_points", "team_members")


def _registry(
    feed: FakeFeed,
    scheduler: FakeScheduler,
    notices: list[Notice] | None = None,
    **defaults: object,
) -> SubscriptionRegistry:
    registry = SubscriptionRegistry(
        feed,  # type: ignore[arg-type]
        on_notice=notices.append if notices is not None else None,
        scheduler=scheduler,
        **defaults,
    )
    for name in COLLECTIONS:
        registry.watch(name, lambda event: None)
    return registry


def test_empty_registry_is_not_connected(feed: FakeFeed) -> None:
    registry = SubscriptionRegistry(feed)  # type: ignore[arg-type]
    assert registry.collections == ()
    assert not registry.is_connected


def test_aggregate_is_connected_requires_every_member(feed: FakeFeed, scheduler: FakeScheduler) -> None:
    registry = _registry(feed, scheduler)
    registry.start()
    assert registry.collections == COLLECTIONS
    assert not registry.is_connected

    feed.latest("fire_zones").subscribed()
    feed.latest("security_points").subscribed()
    assert not registry.is_connected

    feed.latest("team_members").subscribed()
    assert registry.is_connected

    feed.latest("security_points").fail()
    assert not registry.is_connected


def test_unknown_collection_status_is_none(feed: FakeFeed, scheduler: FakeScheduler) -> None:
    registry = _registry(feed, scheduler)
    assert registry.get_subscription_status("weather_stations") is None
    assert registry.get("weather_stations") is None


def test_subscription_status_view(feed: FakeFeed, scheduler: FakeScheduler) -> None:
    registry = _registry(feed, scheduler)
    registry.start()
    feed.latest("fire_zones").fail()
    scheduler.fire()

    status = registry.get_subscription_status("fire_zones")
    assert status is not None
    assert not status.is_connected
    assert status.retry_count == 1


def test_duplicate_watch_rejected(feed: FakeFeed, scheduler: FakeScheduler) -> None:
    registry = _registry(feed, scheduler)
    with pytest.raises(FarmGuardError, match="already watched"):
        registry.watch("fire_zones", lambda event: None)


def test_exhaustion_warns_once_per_collection(
    feed: FakeFeed,
    scheduler: FakeScheduler,
    caplog: pytest.LogCaptureFixture,
) -> None:
    notices: list[Notice] = []
    registry = _registry(feed, scheduler, notices, max_retries=1)
    registry.start()

    with caplog.at_level(logging.WARNING, logger="farmguard.realtime.registry"):
        feed.latest("fire_zones").fail()
        scheduler.fire()
        feed.latest("fire_zones").fail()
        # Late duplicate status from the same channel.
        feed.latest("fire_zones").fail()

    assert len(notices) == 1
    notice = notices[0]
    assert notice.level == NoticeLevel.WARNING
    assert notice.title == "Realtime Issue: Fire Zones"
    assert notice.collection == "fire_zones"
    assert len([r for r in caplog.records if r.levelno == logging.WARNING]) == 1

    state = registry.get("fire_zones").state  # type: ignore[union-attr]
    assert state.exhausted
    assert isinstance(state.last_error, RetriesExhaustedError)


def test_restart_rearms_warning(feed: FakeFeed, scheduler: FakeScheduler) -> None:
    notices: list[Notice] = []
    registry = _registry(feed, scheduler, notices, max_retries=0)
    registry.start()

    feed.latest("team_members").fail()
    assert len(notices) == 1

    registry.restart("team_members")
    feed.latest("team_members").fail()
    assert len(notices) == 2


def test_restart_unknown_collection_raises(feed: FakeFeed, scheduler: FakeScheduler) -> None:
    registry = _registry(feed, scheduler)
    with pytest.raises(FarmGuardError, match="not watched"):
        registry.restart("weather_stations")


def test_listeners_receive_member_states(feed: FakeFeed, scheduler: FakeScheduler) -> None:
    registry = _registry(feed, scheduler)
    seen: list[tuple[str, SubscriptionState]] = []
    remove = registry.add_listener(lambda name, state: seen.append((name, state)))
    registry.start()
    feed.latest("fire_zones").subscribed()

    assert ("fire_zones", registry.get("fire_zones").state) in seen  # type: ignore[union-attr]

    remove()
    count = len(seen)
    feed.latest("security_points").subscribed()
    assert len(seen) == count


def test_stop_closes_every_member(feed: FakeFeed, scheduler: FakeScheduler) -> None:
    registry = _registry(feed, scheduler)
    registry.start()
    registry.stop()
    for name in COLLECTIONS:
        assert not feed.live(name)
    assert not registry.is_connected
