"""Change-stream events."""

from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, ValidationError, model_validator

from farmguard.exceptions import ChangeEventError
from farmguard.models._base import Record, Timestamp


class ChangeKind(StrEnum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


def _pick(data: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in data:
            return data[key]
    return None


def _as_record(value: Any, model: type[Record]) -> Record | None:
    # The realtime server sends {} for the side of the change that does not exist.
    if value is None or (isinstance(value, Mapping) and not value):
        return None
    if isinstance(value, Record):
        return value
    return model.model_validate(value)


class ChangeEvent(BaseModel):
    """A committed row change delivered by the change stream.

    Invariants: INSERT and UPDATE carry ``new_record``; DELETE carries
    ``old_record`` (at least its ``id``).
    """

    model_config = ConfigDict(frozen=True)

    kind: ChangeKind
    new_record: Record | None = None
    old_record: Record | None = None
    collection: str = ""
    commit_timestamp: Timestamp = None

    @model_validator(mode="after")
    def _check_records(self) -> ChangeEvent:
        if self.kind in (ChangeKind.INSERT, ChangeKind.UPDATE) and self.new_record is None:
            raise ValueError(f"{self.kind} event requires new_record")
        if self.kind == ChangeKind.DELETE and self.old_record is None:
            raise ValueError("DELETE event requires old_record")
        return self

    @property
    def record_id(self) -> int | str:
        """Primary key of the affected row."""
        record = self.old_record if self.kind == ChangeKind.DELETE else self.new_record
        assert record is not None  # noqa: S101
        return record.id

    @property
    def committed_at(self) -> datetime | None:
        return self.commit_timestamp

    @classmethod
    def from_payload(
        cls,
        payload: Mapping[str, Any],
        *,
        model: type[Record] = Record,
        collection: str = "",
    ) -> ChangeEvent:
        """Parse a raw change-stream payload.

        Accepts the realtime server shape (``{"data": {"type", "record",
        "old_record", "commit_timestamp"}}``, with or without the ``data``
        wrapper) as well as the ``eventType``/``new``/``old`` shape used by
        the JavaScript client.

        Raises
        ------
        ChangeEventError
            If the payload has no recognizable kind or fails validation.
        """
        data = payload.get("data") if isinstance(payload.get("data"), Mapping) else payload
        assert isinstance(data, Mapping)  # noqa: S101

        kind_raw = _pick(data, "type", "eventType", "event_type")
        if not isinstance(kind_raw, str):
            raise ChangeEventError(f"change payload has no event type: keys={sorted(data)}")
        try:
            kind = ChangeKind(kind_raw.strip().upper())
        except ValueError as exc:
            raise ChangeEventError(f"unknown change type {kind_raw!r}") from exc

        table = _pick(data, "table")
        try:
            return cls(
                kind=kind,
                new_record=_as_record(_pick(data, "record", "new"), model),
                old_record=_as_record(_pick(data, "old_record", "old"), model),
                collection=collection or (table if isinstance(table, str) else ""),
                commit_timestamp=_pick(data, "commit_timestamp"),
            )
        except ValidationError as exc:
            raise ChangeEventError(f"invalid {kind} payload for {collection or table}: {exc}") from exc
