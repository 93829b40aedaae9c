"""User-facing notices (the library's rendition of UI toasts)."""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field


class NoticeLevel(StrEnum):
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


class Notice(BaseModel):
    model_config = ConfigDict(frozen=True)

    level: NoticeLevel
    title: str
    message: str
    collection: str | None = None
    key: str | None = Field(default=None, description="Dedupe key for activity feeds")
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
