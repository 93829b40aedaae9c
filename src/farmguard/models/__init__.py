"""Data models for rows, change events and subscription state."""

from farmguard.models._base import Record, Timestamp, parse_timestamp, utc_isoformat
from farmguard.models.change import ChangeEvent, ChangeKind
from farmguard.models.notice import Notice, NoticeLevel
from farmguard.models.records import (
    COLLECTION_MODELS,
    FireZone,
    LiveFeedSetting,
    MapConfig,
    Notification,
    SecurityPoint,
    TeamMember,
)
from farmguard.models.subscription import (
    ChannelStatus,
    ConnectionStatus,
    SubscriptionState,
    SubscriptionStatus,
)

__all__ = [
    "COLLECTION_MODELS",
    "ChangeEvent",
    "ChangeKind",
    "ChannelStatus",
    "ConnectionStatus",
    "FireZone",
    "LiveFeedSetting",
    "MapConfig",
    "Notice",
    "NoticeLevel",
    "Notification",
    "Record",
    "SecurityPoint",
    "SubscriptionState",
    "SubscriptionStatus",
    "TeamMember",
    "Timestamp",
    "parse_timestamp",
    "utc_isoformat",
]
