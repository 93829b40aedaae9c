"""In-memory live collections.

This is the only component allowed to mutate the live collections. Every
mutation replaces the collection tuple, so a reader holding a previous
snapshot never observes a half-applied update.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from farmguard._constants import FIRE_ZONES, SECURITY_POINTS, TEAM_MEMBERS
from farmguard._transport import Backend
from farmguard.exceptions import FarmGuardError
from farmguard.models._base import Record, utc_isoformat
from farmguard.models.change import ChangeEvent
from farmguard.models.records import COLLECTION_MODELS, FireZone, SecurityPoint, TeamMember
from farmguard.state.policy import Records, apply_change, sort_by_name

_logger = logging.getLogger(__name__)

StoreListener = Callable[[str], None]


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True)
class Snapshot:
    """Initial contents of the three live collections."""

    fire_zones: tuple[FireZone, ...] = ()
    security_points: tuple[SecurityPoint, ...] = ()
    team_members: tuple[TeamMember, ...] = ()

    @classmethod
    def from_rows(
        cls,
        *,
        fire_zones: Iterable[Mapping[str, Any] | Record] = (),
        security_points: Iterable[Mapping[str, Any] | Record] = (),
        team_members: Iterable[Mapping[str, Any] | Record] = (),
    ) -> Snapshot:
        return cls(
            fire_zones=tuple(_coerce(FIRE_ZONES, fire_zones)),  # type: ignore[arg-type]
            security_points=tuple(_coerce(SECURITY_POINTS, security_points)),  # type: ignore[arg-type]
            team_members=tuple(_coerce(TEAM_MEMBERS, team_members)),  # type: ignore[arg-type]
        )


def _coerce(collection: str, rows: Iterable[Mapping[str, Any] | Record]) -> Records:
    model = COLLECTION_MODELS.get(collection, Record)
    return tuple(row if isinstance(row, model) else model.model_validate(row) for row in rows)


class LiveStateStore:
    """Process-wide live collections for one session.

    Usage::

        store = LiveStateStore(snapshot, backend=transport)
        unsubscribe = store.subscribe(lambda collection: redraw(collection))
        store.apply(event)
    """

    _NAME_SORTED = frozenset({TEAM_MEMBERS})

    def __init__(
        self,
        snapshot: Snapshot | None = None,
        *,
        backend: Backend | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        snapshot = snapshot or Snapshot()
        self._backend = backend
        self._clock = clock
        self._collections: dict[str, Records] = {
            FIRE_ZONES: _coerce(FIRE_ZONES, snapshot.fire_zones),
            SECURITY_POINTS: _coerce(SECURITY_POINTS, snapshot.security_points),
            TEAM_MEMBERS: sort_by_name(_coerce(TEAM_MEMBERS, snapshot.team_members)),
        }
        self._last_updated: datetime | None = clock()
        self._error: str | None = None
        self._listeners: list[StoreListener] = []

    # ------------------------------------------------------------------
    # Read access
    # ------------------------------------------------------------------

    @property
    def fire_zones(self) -> tuple[FireZone, ...]:
        return self._collections[FIRE_ZONES]  # type: ignore[return-value]

    @property
    def security_points(self) -> tuple[SecurityPoint, ...]:
        return self._collections[SECURITY_POINTS]  # type: ignore[return-value]

    @property
    def team_members(self) -> tuple[TeamMember, ...]:
        return self._collections[TEAM_MEMBERS]  # type: ignore[return-value]

    @property
    def last_updated(self) -> datetime | None:
        return self._last_updated

    @property
    def error(self) -> str | None:
        """Message of the last failed refresh, if any."""
        return self._error

    @error.setter
    def error(self, value: str | None) -> None:
        self._error = value

    def get(self, collection: str) -> Records:
        try:
            return self._collections[collection]
        except KeyError:
            raise FarmGuardError(f"Unknown collection {collection!r}") from None

    def subscribe(self, listener: StoreListener) -> Callable[[], None]:
        """Call *listener* with the collection name after every mutation."""
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    def apply(self, event: ChangeEvent) -> bool:
        """Merge a change event. Returns ``True`` when the collection changed."""
        current = self.get(event.collection)
        updated = apply_change(current, event, name_sorted=event.collection in self._NAME_SORTED)
        if updated is current:
            _logger.debug(
                "Change had no effect collection=%s kind=%s id=%s",
                event.collection,
                event.kind,
                event.record_id,
            )
            return False
        self._commit(event.collection, updated)
        return True

    def replace(self, collection: str, records: Iterable[Mapping[str, Any] | Record]) -> None:
        """Replace a whole collection (full refresh path)."""
        self.get(collection)
        rows = _coerce(collection, records)
        if collection in self._NAME_SORTED:
            rows = sort_by_name(rows)
        self._commit(collection, rows)

    def mark_updated(self) -> None:
        self._last_updated = self._clock()

    def _commit(self, collection: str, records: Records) -> None:
        self._collections[collection] = records
        self.mark_updated()
        for listener in list(self._listeners):
            try:
                listener(collection)
            except Exception:
                _logger.debug("Store listener failed collection=%s", collection, exc_info=True)

    # ------------------------------------------------------------------
    # Write-through
    # ------------------------------------------------------------------

    def _require_backend(self) -> Backend:
        if self._backend is None:
            raise FarmGuardError("No backend configured for write-through updates")
        return self._backend

    async def _write_through(self, collection: str, record_id: int | str, patch: dict[str, Any]) -> None:
        backend = self._require_backend()
        patch["updated_at"] = utc_isoformat(self._clock())
        _logger.debug("Write-through collection=%s id=%s fields=%s", collection, record_id, sorted(patch))
        # Local state converges through the resulting UPDATE change event.
        await backend.update(collection, record_id, patch)

    async def update_team_member_status(self, record_id: int | str, status: str) -> None:
        """Write a team member's status to the store.

        Raises
        ------
        BackendError, TransportError
            When the remote update fails; local state is left unchanged.
        """
        await self._write_through(TEAM_MEMBERS, record_id, {"status": status})

    async def update_team_member_location(
        self,
        record_id: int | str,
        latitude: float,
        longitude: float,
        is_on_map: bool,
    ) -> None:
        """Write a team member's location and map visibility to the store."""
        await self._write_through(
            TEAM_MEMBERS,
            record_id,
            {"latitude": latitude, "longitude": longitude, "is_on_map": is_on_map},
        )
