"""State/store layer.

This package is the single source of truth for how change events, full
refreshes and write-through updates affect the live collections.
"""

from farmguard.state.refresh import AutoRefresher, ManualRefreshController
from farmguard.state.store import LiveStateStore, Snapshot

__all__ = ["AutoRefresher", "LiveStateStore", "ManualRefreshController", "Snapshot"]
