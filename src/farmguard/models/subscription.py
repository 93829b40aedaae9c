"""Subscription state vocabulary."""

from __future__ import annotations

from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field

from farmguard.exceptions import RealtimeError


class ConnectionStatus(StrEnum):
    """Lifecycle of one collection's change subscription."""

    CONNECTING = "connecting"
    SUBSCRIBED = "subscribed"
    ERROR = "error"
    TIMED_OUT = "timed_out"
    CLOSED = "closed"


class ChannelStatus(StrEnum):
    """Statuses reported by the transport's subscribe callback."""

    SUBSCRIBED = "SUBSCRIBED"
    TIMED_OUT = "TIMED_OUT"
    CHANNEL_ERROR = "CHANNEL_ERROR"
    CLOSED = "CLOSED"


class SubscriptionState(BaseModel):
    """Immutable snapshot of a subscription's state machine."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    collection: str
    connection_status: ConnectionStatus = ConnectionStatus.CLOSED
    last_error: RealtimeError | None = None
    retry_count: int = Field(default=0, ge=0)
    exhausted: bool = False

    @property
    def is_connected(self) -> bool:
        return self.connection_status == ConnectionStatus.SUBSCRIBED

    def status(self) -> SubscriptionStatus:
        return SubscriptionStatus(
            is_connected=self.is_connected,
            error=self.last_error,
            retry_count=self.retry_count,
        )


class SubscriptionStatus(BaseModel):
    """Public ``{is_connected, error, retry_count}`` view for diagnostics."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    is_connected: bool
    error: RealtimeError | None = None
    retry_count: int = 0
