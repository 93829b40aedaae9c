"""Base model for rows of the hosted store.

Every row model inherits from :class:`Record` which provides:

* a required ``id`` (integer or string primary key) used for identity and
  dedupe by the live state store,
* optional ``created_at`` / ``updated_at`` timestamps coerced to UTC
  datetimes,
* ``extra="allow"`` so business columns the library does not model are
  carried through unchanged.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Annotated, Any

from pydantic import BaseModel, BeforeValidator, ConfigDict

# Threshold to distinguish seconds from milliseconds.
_MS_THRESHOLD = 1_000_000_000_000


def parse_timestamp(value: Any) -> datetime | None:
    """Convert an ISO-8601 string or epoch number to a UTC datetime.

    Naive datetimes are assumed to be UTC. Returns ``None`` for ``None``
    and empty strings.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value if value.tzinfo is not None else value.replace(tzinfo=UTC)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        ts = float(value)
        if ts >= _MS_THRESHOLD:
            ts /= 1000.0
        return datetime.fromtimestamp(ts, tz=UTC)
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        # PostgREST emits "+00:00"; older payloads may use a trailing "Z".
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)
        return parsed if parsed.tzinfo is not None else parsed.replace(tzinfo=UTC)
    raise ValueError(f"unsupported timestamp value: {value!r}")


Timestamp = Annotated[datetime | None, BeforeValidator(parse_timestamp)]
"""Annotated type that coerces ISO strings or epoch numbers to UTC datetimes."""


def utc_isoformat(value: datetime) -> str:
    """Format *value* the way the store expects timestamps in patches."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat()


class Record(BaseModel):
    """A row with a stable primary key."""

    model_config = ConfigDict(
        frozen=True,
        extra="allow",
        populate_by_name=True,
    )

    id: int | str
    created_at: Timestamp = None
    updated_at: Timestamp = None

    def to_row(self) -> dict[str, Any]:
        """Dump back to a JSON-compatible row dict (extras included)."""
        return self.model_dump(mode="json", exclude_none=True)
