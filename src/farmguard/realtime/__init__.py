"""Realtime subscription layer.

Wraps the change-stream transport with a per-collection reconnect state
machine and aggregates the per-collection connectivity.
"""

from farmguard.realtime.registry import SubscriptionRegistry
from farmguard.realtime.subscription import ChangeSubscription, Decision, backoff_delay, on_channel_status

__all__ = [
    "ChangeSubscription",
    "Decision",
    "SubscriptionRegistry",
    "backoff_delay",
    "on_channel_status",
]
