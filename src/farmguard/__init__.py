"""farmguard - Async realtime client for farm fire/security incident tracking."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("farmguard")
except PackageNotFoundError:
    __version__ = "0+local"
from farmguard.client import FarmGuardClient, fetch_snapshot
from farmguard.config import FarmGuardConfig
from farmguard.exceptions import (
    BackendError,
    ChangeEventError,
    ChannelError,
    FarmGuardConfigError,
    FarmGuardError,
    RealtimeError,
    RefreshError,
    RetriesExhaustedError,
    SubscriptionTimeoutError,
    TransportError,
)
from farmguard.models import (
    ChangeEvent,
    ChangeKind,
    ChannelStatus,
    ConnectionStatus,
    FireZone,
    LiveFeedSetting,
    MapConfig,
    Notice,
    NoticeLevel,
    Notification,
    Record,
    SecurityPoint,
    SubscriptionState,
    SubscriptionStatus,
    TeamMember,
)
from farmguard.realtime import ChangeSubscription, SubscriptionRegistry
from farmguard.state import AutoRefresher, LiveStateStore, ManualRefreshController, Snapshot

__all__ = [
    "__version__",
    "AutoRefresher",
    "BackendError",
    "ChangeEvent",
    "ChangeEventError",
    "ChangeKind",
    "ChangeSubscription",
    "ChannelError",
    "ChannelStatus",
    "ConnectionStatus",
    "FarmGuardClient",
    "FarmGuardConfig",
    "FarmGuardConfigError",
    "FarmGuardError",
    "FireZone",
    "LiveFeedSetting",
    "LiveStateStore",
    "ManualRefreshController",
    "MapConfig",
    "Notice",
    "NoticeLevel",
    "Notification",
    "RealtimeError",
    "Record",
    "RefreshError",
    "RetriesExhaustedError",
    "SecurityPoint",
    "Snapshot",
    "SubscriptionRegistry",
    "SubscriptionState",
    "SubscriptionStatus",
    "SubscriptionTimeoutError",
    "TeamMember",
    "TransportError",
    "fetch_snapshot",
]
