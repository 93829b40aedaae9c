"""One change subscription per watched collection, with an aggregate status."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from farmguard._realtime import ChangeFeed
from farmguard.exceptions import FarmGuardError
from farmguard.models.change import ChangeEvent
from farmguard.models.notice import Notice
from farmguard.models.subscription import SubscriptionState, SubscriptionStatus
from farmguard.notices import realtime_issue_notice
from farmguard.realtime.subscription import ChangeSubscription

_logger = logging.getLogger(__name__)

StateListener = Callable[[str, SubscriptionState], None]


class SubscriptionRegistry:
    """Owns exactly one :class:`ChangeSubscription` per collection name."""

    def __init__(
        self,
        feed: ChangeFeed,
        *,
        on_notice: Callable[[Notice], None] | None = None,
        **subscription_defaults: Any,
    ) -> None:
        self._feed = feed
        self._on_notice = on_notice
        self._defaults = subscription_defaults
        self._subscriptions: dict[str, ChangeSubscription] = {}
        self._warned: set[str] = set()
        self._listeners: list[StateListener] = []

    def watch(
        self,
        collection: str,
        on_change: Callable[[ChangeEvent], None],
        **options: Any,
    ) -> ChangeSubscription:
        """Register *collection*. Does not start it.

        Raises
        ------
        FarmGuardError
            If the collection is already watched.
        """
        if collection in self._subscriptions:
            raise FarmGuardError(f"{collection} is already watched")
        kwargs = {**self._defaults, **options}
        subscription = ChangeSubscription(
            self._feed,
            collection,
            on_change=on_change,
            on_state=lambda state: self._on_member_state(collection, state),
            **kwargs,
        )
        self._subscriptions[collection] = subscription
        return subscription

    def add_listener(self, listener: StateListener) -> Callable[[], None]:
        """Receive ``(collection, state)`` on every member change."""
        self._listeners.append(listener)

        def _remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _remove

    @property
    def collections(self) -> tuple[str, ...]:
        return tuple(self._subscriptions)

    @property
    def is_connected(self) -> bool:
        """Aggregate "realtime connected": every member is subscribed."""
        if not self._subscriptions:
            return False
        return all(sub.is_connected for sub in self._subscriptions.values())

    def get(self, collection: str) -> ChangeSubscription | None:
        return self._subscriptions.get(collection)

    def get_subscription_status(self, collection: str) -> SubscriptionStatus | None:
        subscription = self._subscriptions.get(collection)
        if subscription is None:
            return None
        return subscription.state.status()

    def start(self) -> None:
        for subscription in self._subscriptions.values():
            subscription.start()

    def stop(self) -> None:
        for subscription in self._subscriptions.values():
            subscription.stop()

    def restart(self, collection: str | None = None) -> None:
        """Reset retry counters and reconnect one or all collections."""
        names = [collection] if collection is not None else list(self._subscriptions)
        for name in names:
            subscription = self._subscriptions.get(name)
            if subscription is None:
                raise FarmGuardError(f"{name} is not watched")
            self._warned.discard(name)
            subscription.restart()

    # ------------------------------------------------------------------

    def _on_member_state(self, collection: str, state: SubscriptionState) -> None:
        if state.is_connected:
            self._warned.discard(collection)
        elif state.exhausted and collection not in self._warned:
            self._warned.add(collection)
            self._warn_degraded(collection, state)

        for listener in list(self._listeners):
            try:
                listener(collection, state)
            except Exception:
                _logger.debug("Registry listener failed collection=%s", collection, exc_info=True)

    def _warn_degraded(self, collection: str, state: SubscriptionState) -> None:
        error = state.last_error
        _logger.warning(
            "Persistent connection problem with '%s' updates after %d retries. Last error: %s",
            collection,
            state.retry_count,
            error,
        )
        if self._on_notice is None:
            return
        try:
            self._on_notice(realtime_issue_notice(collection, error))
        except Exception:
            _logger.debug("on_notice callback failed", exc_info=True)
