"""Deterministic change merge policy.

Pure functions over immutable record tuples. Every function returns the
*same* tuple object when the change is a no-op so callers can detect
"nothing changed" with an identity check.
"""

from __future__ import annotations

from collections.abc import Iterable

from farmguard.models._base import Record
from farmguard.models.change import ChangeEvent, ChangeKind

Records = tuple[Record, ...]


def name_key(record: Record) -> str:
    name = getattr(record, "name", None)
    return name.casefold() if isinstance(name, str) else ""


def sort_by_name(records: Iterable[Record]) -> Records:
    """Canonical team-member order (case-insensitive, stable)."""
    return tuple(sorted(records, key=name_key))


def index_of(records: Records, record_id: int | str) -> int | None:
    for index, record in enumerate(records):
        if record.id == record_id:
            return index
    return None


def apply_insert(records: Records, record: Record, *, name_sorted: bool = False) -> Records:
    # Duplicate delivery after a reconnect must not create a second row.
    if index_of(records, record.id) is not None:
        return records
    if name_sorted:
        return sort_by_name((*records, record))
    return (record, *records)


def apply_update(records: Records, record: Record, *, name_sorted: bool = False) -> Records:
    index = index_of(records, record.id)
    if index is None:
        return records
    updated = (*records[:index], record, *records[index + 1 :])
    return sort_by_name(updated) if name_sorted else updated


def apply_delete(records: Records, record_id: int | str) -> Records:
    index = index_of(records, record_id)
    if index is None:
        return records
    return (*records[:index], *records[index + 1 :])


def apply_change(records: Records, event: ChangeEvent, *, name_sorted: bool = False) -> Records:
    """Apply one change event keyed by ``id``."""
    if event.kind == ChangeKind.INSERT:
        assert event.new_record is not None  # noqa: S101
        return apply_insert(records, event.new_record, name_sorted=name_sorted)
    if event.kind == ChangeKind.UPDATE:
        assert event.new_record is not None  # noqa: S101
        return apply_update(records, event.new_record, name_sorted=name_sorted)
    return apply_delete(records, event.record_id)
