"""Custom exception hierarchy for farmguard."""

from __future__ import annotations


class FarmGuardError(Exception):
    """Base exception for all farmguard errors."""


class FarmGuardConfigError(FarmGuardError):
    """Invalid or missing configuration."""


class TransportError(FarmGuardError):
    """HTTP-level failure (network, invalid JSON, unexpected body)."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        endpoint: str = "",
    ) -> None:
        self.status_code = status_code
        self.endpoint = endpoint
        super().__init__(message)


class BackendError(FarmGuardError):
    """The hosted store rejected a request (non-2xx with an error body)."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        code: str = "",
        endpoint: str = "",
    ) -> None:
        self.status_code = status_code
        self.code = code
        self.endpoint = endpoint
        super().__init__(message)


class ChangeEventError(FarmGuardError):
    """A change-stream message could not be parsed into a ChangeEvent."""


class RealtimeError(FarmGuardError):
    """Base for change-stream subscription failures.

    These are never raised out of a subscription; they are recorded on the
    subscription state and surfaced through status listeners.
    """

    def __init__(self, message: str, *, collection: str = "") -> None:
        self.collection = collection
        super().__init__(message)


class SubscriptionTimeoutError(RealtimeError):
    """The channel join was not acknowledged in time."""


class ChannelError(RealtimeError):
    """The server or socket reported an error for the channel."""


class RetriesExhaustedError(RealtimeError):
    """Automatic reconnects gave up for this collection.

    The subscription stays disconnected until it is explicitly restarted.
    """

    def __init__(self, message: str, *, collection: str = "", last_error: RealtimeError | None = None) -> None:
        self.last_error = last_error
        super().__init__(message, collection=collection)


class RefreshError(FarmGuardError):
    """One or more collection fetches failed during a full refresh.

    Collections whose fetch succeeded have already been replaced when this
    is raised; ``failures`` maps each failed collection to its exception.
    """

    def __init__(self, message: str, *, failures: dict[str, BaseException]) -> None:
        self.failures = failures
        super().__init__(message)
