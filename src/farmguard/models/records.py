"""Row models for the dashboard tables.

Business columns are optional: DELETE change events usually carry only the
primary key of the removed row and must still validate.
"""

from __future__ import annotations

from typing import Any

from pydantic import Field

from farmguard._constants import FIRE_ZONES, SECURITY_POINTS, TEAM_MEMBERS
from farmguard.models._base import Record, Timestamp


class FireZone(Record):
    name: str | None = None
    latitude: float | None = None
    longitude: float | None = None
    severity: str | None = None
    status: str | None = None
    description: str | None = None
    reported_at: Timestamp = None


class SecurityPoint(Record):
    name: str | None = None
    latitude: float | None = None
    longitude: float | None = None
    status: str | None = None
    type: str | None = None
    description: str | None = None


class TeamMember(Record):
    name: str | None = None
    role: str | None = None
    email: str | None = None
    phone: str | None = None
    avatar: str | None = None
    status: str | None = None
    responsibility: str | None = None
    team: str | None = None
    latitude: float | None = None
    longitude: float | None = None
    is_on_map: bool | None = None


class Notification(Record):
    type: str | None = None
    title: str | None = None
    message: str | None = None
    severity: str | None = None
    read: bool = False
    user_id: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class MapConfig(Record):
    name: str | None = None
    center_latitude: float | None = None
    center_longitude: float | None = None
    zoom: float | None = None
    is_default: bool | None = None


class LiveFeedSetting(Record):
    title: str | None = None
    stream_url: str | None = None
    display_order: int | None = None
    is_enabled: bool | None = None


#: Row model used for each watched collection.
COLLECTION_MODELS: dict[str, type[Record]] = {
    FIRE_ZONES: FireZone,
    SECURITY_POINTS: SecurityPoint,
    TEAM_MEMBERS: TeamMember,
}
