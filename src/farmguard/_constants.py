"""Internal constants shared across the library."""

from __future__ import annotations

from dataclasses import dataclass

USER_AGENT = "farmguard-python"

# ------------------------------------------------------------------
# Realtime reconnect policy
# ------------------------------------------------------------------

MAX_RETRIES = 3
INITIAL_RETRY_DELAY_S = 5.0
MAX_RETRY_DELAY_S = 30.0

DEFAULT_JOIN_TIMEOUT_S = 10.0
DEFAULT_HEARTBEAT_INTERVAL_S = 30.0
DEFAULT_AUTO_REFRESH_INTERVAL_S = 60.0

#: Number of change notices kept by :class:`farmguard.notices.RecentActivity`.
RECENT_ACTIVITY_LIMIT = 10

# ------------------------------------------------------------------
# Watched collections
# ------------------------------------------------------------------

FIRE_ZONES = "fire_zones"
SECURITY_POINTS = "security_points"
TEAM_MEMBERS = "team_members"


@dataclass(frozen=True)
class CollectionOrder:
    """Server-side ordering used when a collection is fetched in full."""

    column: str
    descending: bool


FETCH_ORDER: dict[str, CollectionOrder] = {
    FIRE_ZONES: CollectionOrder("reported_at", descending=True),
    SECURITY_POINTS: CollectionOrder("created_at", descending=True),
    TEAM_MEMBERS: CollectionOrder("name", descending=False),
}

WATCHED_COLLECTIONS: tuple[str, ...] = (FIRE_ZONES, SECURITY_POINTS, TEAM_MEMBERS)


def collection_label(collection: str) -> str:
    """Human-readable label, e.g. ``"fire_zones"`` -> ``"Fire Zones"``."""
    return " ".join(part.capitalize() for part in collection.split("_") if part)
