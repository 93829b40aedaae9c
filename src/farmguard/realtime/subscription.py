"""Per-collection change subscription with reconnect/backoff.

The state machine is split in two:

* pure transition functions over :class:`SubscriptionState` that decide
  what the next state is and whether a retry must be scheduled, and
* :class:`ChangeSubscription`, which owns the single current transport
  channel and the single pending retry timer and applies those decisions.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Protocol

from farmguard._constants import INITIAL_RETRY_DELAY_S, MAX_RETRIES, MAX_RETRY_DELAY_S
from farmguard._realtime import Channel, ChangeFeed, ChannelState
from farmguard.exceptions import (
    ChangeEventError,
    ChannelError,
    RealtimeError,
    RetriesExhaustedError,
    SubscriptionTimeoutError,
)
from farmguard.models._base import Record
from farmguard.models.change import ChangeEvent
from farmguard.models.subscription import ChannelStatus, ConnectionStatus, SubscriptionState

_logger = logging.getLogger(__name__)


class Cancellable(Protocol):
    def cancel(self) -> None: ...


Scheduler = Callable[[float, Callable[[], None]], Cancellable]


# ---------------------------------------------------------------------------
# Pure transitions
# ---------------------------------------------------------------------------


def backoff_delay(
    retry_count: int,
    *,
    initial: float = INITIAL_RETRY_DELAY_S,
    ceiling: float = MAX_RETRY_DELAY_S,
) -> float:
    """Exponential delay with a ceiling: ``min(initial * 2**k, ceiling)``."""
    if retry_count < 0:
        raise ValueError(f"retry_count must be >= 0, got {retry_count}")
    return min(initial * (2**retry_count), ceiling)


@dataclass(frozen=True)
class Decision:
    """What the runtime must do after a transition."""

    retry_after: float | None = None
    give_up: bool = False

    @property
    def should_retry(self) -> bool:
        return self.retry_after is not None


NO_ACTION = Decision()


def on_attempt(state: SubscriptionState) -> SubscriptionState:
    """A new channel is being opened."""
    return state.model_copy(
        update={
            "connection_status": ConnectionStatus.CONNECTING,
            "last_error": state.last_error if state.exhausted else None,
        }
    )


def on_retry_fired(state: SubscriptionState) -> SubscriptionState:
    return state.model_copy(update={"retry_count": state.retry_count + 1})


def on_channel_status(
    state: SubscriptionState,
    status: ChannelStatus,
    error: Exception | None = None,
    *,
    max_retries: int = MAX_RETRIES,
    initial_delay: float = INITIAL_RETRY_DELAY_S,
    max_delay: float = MAX_RETRY_DELAY_S,
) -> tuple[SubscriptionState, Decision]:
    """Apply a transport status to *state*."""
    if status == ChannelStatus.SUBSCRIBED:
        return (
            state.model_copy(
                update={
                    "connection_status": ConnectionStatus.SUBSCRIBED,
                    "last_error": None,
                    "retry_count": 0,
                    "exhausted": False,
                }
            ),
            NO_ACTION,
        )

    if status == ChannelStatus.CLOSED:
        return state.model_copy(update={"connection_status": ConnectionStatus.CLOSED}), NO_ACTION

    failure = _typed_error(state.collection, status, error)
    connection_status = ConnectionStatus.TIMED_OUT if status == ChannelStatus.TIMED_OUT else ConnectionStatus.ERROR

    if state.retry_count < max_retries:
        delay = backoff_delay(state.retry_count, initial=initial_delay, ceiling=max_delay)
        return (
            state.model_copy(update={"connection_status": connection_status, "last_error": failure}),
            Decision(retry_after=delay),
        )

    exhausted = RetriesExhaustedError(
        f"Max retries for {state.collection}. Last error: {failure}",
        collection=state.collection,
        last_error=failure,
    )
    return (
        state.model_copy(
            update={"connection_status": connection_status, "last_error": exhausted, "exhausted": True}
        ),
        Decision(give_up=True),
    )


def _typed_error(collection: str, status: ChannelStatus, error: Exception | None) -> RealtimeError:
    if isinstance(error, RealtimeError):
        return error
    if status == ChannelStatus.TIMED_OUT:
        return SubscriptionTimeoutError(f"Connection timed out for table {collection}", collection=collection)
    detail = str(error) if error is not None else "Unknown channel error"
    return ChannelError(f"Channel error for table {collection}: {detail}", collection=collection)


# ---------------------------------------------------------------------------
# Runtime
# ---------------------------------------------------------------------------


def _default_scheduler(delay: float, callback: Callable[[], None]) -> Cancellable:
    return asyncio.get_running_loop().call_later(delay, callback)


class ChangeSubscription:
    """Maintain one live change feed for a single collection.

    Failures never raise to the caller; they are recorded on :attr:`state`
    and published through ``on_state``.
    """

    def __init__(
        self,
        feed: ChangeFeed,
        collection: str,
        *,
        on_change: Callable[[ChangeEvent], None] | None = None,
        on_state: Callable[[SubscriptionState], None] | None = None,
        model: type[Record] = Record,
        event: str = "*",
        row_filter: str | None = None,
        max_retries: int = MAX_RETRIES,
        initial_delay: float = INITIAL_RETRY_DELAY_S,
        max_delay: float = MAX_RETRY_DELAY_S,
        scheduler: Scheduler | None = None,
    ) -> None:
        self._feed = feed
        self.collection = collection
        self._on_change = on_change
        self._on_state = on_state
        self._model = model
        self._event = event
        self._row_filter = row_filter
        self._max_retries = max_retries
        self._initial_delay = initial_delay
        self._max_delay = max_delay
        self._scheduler = scheduler or _default_scheduler
        self._state = SubscriptionState(collection=collection)
        self._channel: Channel | None = None
        self._retry_handle: Cancellable | None = None
        self._running = False
        self._attempt_token: object | None = None

    @property
    def state(self) -> SubscriptionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state.is_connected

    @property
    def channel(self) -> Channel | None:
        """The current transport channel, if any."""
        return self._channel

    @property
    def retry_pending(self) -> bool:
        return self._retry_handle is not None

    def start(self) -> None:
        """Open the feed. No-op when already running."""
        if self._running:
            return
        self._running = True
        self._attempt()

    def stop(self) -> None:
        """Cancel any pending retry and close the current channel."""
        self._running = False
        self._teardown()
        if self._state.connection_status != ConnectionStatus.CLOSED:
            self._set_state(self._state.model_copy(update={"connection_status": ConnectionStatus.CLOSED}))

    def restart(self) -> None:
        """External reset: clear the retry counter and reconnect from scratch."""
        self._teardown()
        self._running = True
        self._set_state(SubscriptionState(collection=self.collection))
        self._attempt()

    # ------------------------------------------------------------------

    def _set_state(self, state: SubscriptionState) -> None:
        self._state = state
        if self._on_state is None:
            return
        try:
            self._on_state(state)
        except Exception:
            _logger.debug("on_state callback failed collection=%s", self.collection, exc_info=True)

    def _teardown(self) -> None:
        self._attempt_token = None
        if self._retry_handle is not None:
            self._retry_handle.cancel()
            self._retry_handle = None
        channel = self._channel
        self._channel = None
        if channel is None:
            return
        if channel.state in (ChannelState.CLOSED, ChannelState.ERRORED):
            _logger.debug("Channel for %s already %s, no removal needed", self.collection, channel.state)
            return
        _logger.debug("Closing channel for %s state=%s", self.collection, channel.state)
        try:
            channel.close()
        except Exception:
            _logger.debug("Channel close failed collection=%s", self.collection, exc_info=True)

    def _attempt(self) -> None:
        self._teardown()
        if not self._running:
            return
        _logger.debug(
            "Subscribing to %s attempt=%d/%d filter=%s",
            self.collection,
            self._state.retry_count + 1,
            self._max_retries + 1,
            self._row_filter,
        )
        self._set_state(on_attempt(self._state))

        # Each attempt gets its own callbacks so late statuses from a
        # superseded channel can be recognised and dropped.
        token = object()
        self._attempt_token = token

        def on_status(status: ChannelStatus, error: Exception | None) -> None:
            if self._attempt_token is not token:
                _logger.debug("Ignoring %s from superseded channel for %s", status, self.collection)
                return
            self._handle_status(status, error)

        def on_event(payload: dict[str, Any]) -> None:
            if self._attempt_token is not token:
                return
            self._handle_payload(payload)

        try:
            self._channel = self._feed.subscribe_changes(
                self.collection,
                event=self._event,
                row_filter=self._row_filter,
                on_event=on_event,
                on_status=on_status,
            )
        except Exception as exc:
            _logger.debug("Opening channel for %s failed", self.collection, exc_info=True)
            self._channel = None
            self._handle_status(ChannelStatus.CHANNEL_ERROR, exc)

    def _handle_status(self, status: ChannelStatus, error: Exception | None) -> None:
        _logger.debug("Subscription status collection=%s status=%s error=%s", self.collection, status, error)
        new_state, decision = on_channel_status(
            self._state,
            status,
            error,
            max_retries=self._max_retries,
            initial_delay=self._initial_delay,
            max_delay=self._max_delay,
        )
        self._set_state(new_state)

        if decision.should_retry and self._running:
            assert decision.retry_after is not None  # noqa: S101
            _logger.debug(
                "Retrying subscription for %s in %.1fs (attempt %d/%d)",
                self.collection,
                decision.retry_after,
                new_state.retry_count + 2,
                self._max_retries + 1,
            )
            if self._retry_handle is not None:
                self._retry_handle.cancel()
            self._retry_handle = self._scheduler(decision.retry_after, self._fire_retry)
        elif decision.give_up:
            _logger.debug("Max retries reached for %s; giving up", self.collection)

    def _fire_retry(self) -> None:
        self._retry_handle = None
        if not self._running:
            return
        self._state = on_retry_fired(self._state)
        self._attempt()

    def _handle_payload(self, payload: dict[str, Any]) -> None:
        try:
            event = ChangeEvent.from_payload(payload, model=self._model, collection=self.collection)
        except ChangeEventError:
            _logger.debug("Dropping unparseable change for %s", self.collection, exc_info=True)
            return
        if self._on_change is None:
            return
        try:
            self._on_change(event)
        except Exception:
            _logger.debug("on_change callback failed collection=%s", self.collection, exc_info=True)
