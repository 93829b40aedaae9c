"""User-facing notices.

The library does not render anything; it hands :class:`Notice` objects to an
``on_notice`` callback and keeps a short recent-activity log that a UI can
show as toasts or a feed.
"""

from __future__ import annotations

from collections import deque
from collections.abc import Iterator

from farmguard._constants import RECENT_ACTIVITY_LIMIT, TEAM_MEMBERS, collection_label
from farmguard.models.change import ChangeEvent, ChangeKind
from farmguard.models.notice import Notice, NoticeLevel


def _singular(collection: str) -> str:
    label = collection_label(collection)
    return label[:-1] if label.endswith("s") else label


def _activity_key(event: ChangeEvent) -> str:
    record = event.old_record if event.kind == ChangeKind.DELETE else event.new_record
    stamp = None
    if record is not None and record.updated_at is not None:
        stamp = record.updated_at
    elif event.commit_timestamp is not None:
        stamp = event.commit_timestamp
    suffix = int(stamp.timestamp() * 1000) if stamp is not None else "na"
    return f"{event.collection}-{event.kind.value.lower()}-{event.record_id}-{suffix}"


def change_notice(event: ChangeEvent) -> Notice | None:
    """Notice for a delivered change, or ``None`` when it is not announced.

    Team-member updates are frequent (status and location pings) and are
    not announced.
    """
    noun = _singular(event.collection)
    name = getattr(event.new_record, "name", None) or noun
    if event.kind == ChangeKind.INSERT:
        title, message = f"New {noun}", f"{name} has been added"
    elif event.kind == ChangeKind.UPDATE:
        if event.collection == TEAM_MEMBERS:
            return None
        title, message = f"{noun} Updated", f"{name} has been updated"
    else:
        title, message = f"{noun} Removed", f"A {noun.lower()} has been removed"
    return Notice(
        level=NoticeLevel.INFO,
        title=title,
        message=message,
        collection=event.collection,
        key=_activity_key(event),
    )


def realtime_issue_notice(collection: str, error: Exception | None) -> Notice:
    return Notice(
        level=NoticeLevel.WARNING,
        title=f"Realtime Issue: {collection_label(collection)}",
        message=f"Persistent connection problem with '{collection}' updates. Last error: {error}.",
        collection=collection,
        key=f"realtime-issue-{collection}",
    )


def refresh_notice(error: Exception | None = None) -> Notice:
    if error is None:
        return Notice(level=NoticeLevel.SUCCESS, title="Success", message="Data has been refreshed.")
    return Notice(level=NoticeLevel.ERROR, title="Data Refresh Error", message=str(error))


class RecentActivity:
    """Bounded, most-recent-first log of change notices, deduped by key."""

    def __init__(self, limit: int = RECENT_ACTIVITY_LIMIT) -> None:
        self._items: deque[Notice] = deque(maxlen=limit)

    def add(self, notice: Notice) -> bool:
        """Record *notice*; returns ``False`` if its key was already logged."""
        if notice.key is not None and any(item.key == notice.key for item in self._items):
            return False
        self._items.appendleft(notice)
        return True

    def dismiss(self) -> Notice | None:
        """Drop and return the most recent notice."""
        return self._items.popleft() if self._items else None

    def clear(self) -> None:
        self._items.clear()

    def __iter__(self) -> Iterator[Notice]:
        return iter(tuple(self._items))

    def __len__(self) -> int:
        return len(self._items)
