"""High-level async client: one realtime session over the live collections."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime
from typing import Any

import aiohttp

from farmguard._constants import FETCH_ORDER, WATCHED_COLLECTIONS
from farmguard._realtime import ChangeFeed, RealtimeSocket
from farmguard._transport import Backend, RestTransport
from farmguard.config import FarmGuardConfig
from farmguard.exceptions import FarmGuardError
from farmguard.models.change import ChangeEvent
from farmguard.models.notice import Notice
from farmguard.models.records import COLLECTION_MODELS, FireZone, SecurityPoint, TeamMember
from farmguard.models.subscription import SubscriptionStatus
from farmguard.notices import RecentActivity, change_notice
from farmguard.realtime.registry import SubscriptionRegistry
from farmguard.realtime.subscription import Scheduler
from farmguard.state.refresh import AutoRefresher, ManualRefreshController
from farmguard.state.store import LiveStateStore, Snapshot

_logger = logging.getLogger(__name__)


async def fetch_snapshot(backend: Backend) -> Snapshot:
    """Fetch the initial contents of every watched collection.

    Unlike :meth:`ManualRefreshController.refresh` this is all-or-nothing:
    any failed fetch propagates.
    """
    rows = await asyncio.gather(
        *(
            backend.fetch_all(name, order_by=FETCH_ORDER[name].column, descending=FETCH_ORDER[name].descending)
            for name in WATCHED_COLLECTIONS
        )
    )
    by_name = dict(zip(WATCHED_COLLECTIONS, rows, strict=True))
    return Snapshot.from_rows(**by_name)


class FarmGuardClient:
    """Session-scoped realtime client.

    Usage::

        async with FarmGuardClient(config, snapshot=snapshot, on_notice=toast) as client:
            for zone in client.fire_zones:
                ...
            await client.update_team_member_status(7, "On Duty")

    When *snapshot* is omitted the initial contents are fetched on entry.
    """

    def __init__(
        self,
        config: FarmGuardConfig,
        *,
        snapshot: Snapshot | None = None,
        session: aiohttp.ClientSession | None = None,
        backend: Backend | None = None,
        feed: ChangeFeed | None = None,
        on_notice: Callable[[Notice], None] | None = None,
        on_change: Callable[[ChangeEvent], None] | None = None,
        scheduler: Scheduler | None = None,
    ) -> None:
        self._config = config
        self._snapshot = snapshot
        self._external_session = session is not None
        self._http_session = session
        self._backend = backend
        self._feed = feed
        self._owns_socket = feed is None
        self._on_notice_cb = on_notice
        self._on_change_cb = on_change
        self._scheduler = scheduler
        self._store: LiveStateStore | None = None
        self._registry: SubscriptionRegistry | None = None
        self._refresher: ManualRefreshController | None = None
        self._auto: AutoRefresher | None = None
        self._activity = RecentActivity()

    # ------------------------------------------------------------------
    # Context manager lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> FarmGuardClient:
        if (self._backend is None or self._feed is None) and self._http_session is None:
            self._http_session = aiohttp.ClientSession()
        if self._backend is None:
            assert self._http_session is not None  # noqa: S101
            self._backend = RestTransport(self._config, self._http_session)
        if self._feed is None:
            assert self._http_session is not None  # noqa: S101
            self._feed = RealtimeSocket(self._config, self._http_session, loop=asyncio.get_running_loop())

        try:
            snapshot = self._snapshot if self._snapshot is not None else await fetch_snapshot(self._backend)
        except BaseException:
            await self._close_io()
            raise

        self._store = LiveStateStore(snapshot, backend=self._backend)
        self._refresher = ManualRefreshController(self._store, self._backend, on_notice=self._emit)
        self._auto = AutoRefresher(
            self._refresher,
            interval=self._config.auto_refresh_interval,
            enabled=self._config.auto_refresh_enabled,
        )

        registry = SubscriptionRegistry(
            self._feed,
            on_notice=self._emit,
            max_retries=self._config.max_retries,
            initial_delay=self._config.initial_retry_delay,
            max_delay=self._config.max_retry_delay,
            scheduler=self._scheduler,
        )
        for collection in WATCHED_COLLECTIONS:
            registry.watch(collection, self._on_change, model=COLLECTION_MODELS[collection])
        self._registry = registry

        registry.start()
        self._auto.start()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        if self._auto is not None:
            await self._auto.stop()
        if self._registry is not None:
            self._registry.stop()
        await self._close_io()

    async def _close_io(self) -> None:
        if self._owns_socket and isinstance(self._feed, RealtimeSocket):
            await self._feed.close()
            self._feed = None
        if not self._external_session and self._http_session is not None:
            await self._http_session.close()
            self._http_session = None

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _require_store(self) -> LiveStateStore:
        if self._store is None:
            raise FarmGuardError("Client not initialized. Use 'async with FarmGuardClient(...) as client:'")
        return self._store

    def _require_registry(self) -> SubscriptionRegistry:
        if self._registry is None:
            raise FarmGuardError("Client not initialized. Use 'async with FarmGuardClient(...) as client:'")
        return self._registry

    def _emit(self, notice: Notice) -> None:
        if self._on_notice_cb is None:
            return
        try:
            self._on_notice_cb(notice)
        except Exception:
            _logger.debug("on_notice callback failed", exc_info=True)

    def _on_change(self, event: ChangeEvent) -> None:
        _logger.debug("Change received collection=%s kind=%s id=%s", event.collection, event.kind, event.record_id)
        changed = self._require_store().apply(event)

        if self._on_change_cb is not None:
            try:
                self._on_change_cb(event)
            except Exception:
                _logger.debug("on_change callback failed", exc_info=True)

        if not changed:
            return
        notice = change_notice(event)
        if notice is not None and self._activity.add(notice):
            self._emit(notice)

    # ------------------------------------------------------------------
    # Read access
    # ------------------------------------------------------------------

    @property
    def store(self) -> LiveStateStore:
        return self._require_store()

    @property
    def registry(self) -> SubscriptionRegistry:
        return self._require_registry()

    @property
    def fire_zones(self) -> tuple[FireZone, ...]:
        return self._require_store().fire_zones

    @property
    def security_points(self) -> tuple[SecurityPoint, ...]:
        return self._require_store().security_points

    @property
    def team_members(self) -> tuple[TeamMember, ...]:
        return self._require_store().team_members

    @property
    def is_connected(self) -> bool:
        return self._registry is not None and self._registry.is_connected

    @property
    def last_updated(self) -> datetime | None:
        return self._require_store().last_updated

    @property
    def error(self) -> str | None:
        return self._require_store().error

    @property
    def is_refreshing(self) -> bool:
        return self._refresher is not None and self._refresher.is_refreshing

    @property
    def recent_activity(self) -> RecentActivity:
        return self._activity

    @property
    def auto_refresh(self) -> AutoRefresher | None:
        return self._auto

    def subscribe(self, listener: Callable[[str], None]) -> Callable[[], None]:
        """Be notified with the collection name after every mutation."""
        return self._require_store().subscribe(listener)

    def get_subscription_status(self, collection: str) -> SubscriptionStatus | None:
        return self._require_registry().get_subscription_status(collection)

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def refresh_data(self) -> None:
        """Discard in-memory state and reload every collection from source.

        Raises :class:`RefreshError` when a fetch failed; the other
        collections are still replaced.
        """
        if self._refresher is None:
            raise FarmGuardError("Client not initialized. Use 'async with FarmGuardClient(...) as client:'")
        await self._refresher.refresh()

    async def update_team_member_status(self, record_id: int | str, status: str) -> None:
        await self._require_store().update_team_member_status(record_id, status)

    async def update_team_member_location(
        self,
        record_id: int | str,
        latitude: float,
        longitude: float,
        is_on_map: bool,
    ) -> None:
        await self._require_store().update_team_member_location(record_id, latitude, longitude, is_on_map)

    async def set_auto_refresh(self, enabled: bool) -> None:
        if self._auto is None:
            raise FarmGuardError("Client not initialized. Use 'async with FarmGuardClient(...) as client:'")
        await self._auto.set_enabled(enabled)

    def restart_realtime(self, collection: str | None = None) -> None:
        """Re-initialize one or all subscriptions after a terminal failure."""
        self._require_registry().restart(collection)
