"""Full resync of the live collections, independent of the change stream."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from collections.abc import Callable
from typing import Any

from farmguard._constants import DEFAULT_AUTO_REFRESH_INTERVAL_S, FETCH_ORDER, WATCHED_COLLECTIONS
from farmguard._transport import Backend
from farmguard.exceptions import FarmGuardError, RefreshError
from farmguard.models.notice import Notice
from farmguard.notices import refresh_notice
from farmguard.state.store import LiveStateStore

_logger = logging.getLogger(__name__)


def _consume_result(task: asyncio.Task[None]) -> None:
    # Retrieved even when every awaiting caller was cancelled.
    if not task.cancelled():
        task.exception()


class ManualRefreshController:
    """Re-fetch every watched collection and replace it wholesale.

    Each fetch is independent: collections whose fetch succeeded are
    replaced even when another fetch fails (no rollback).
    """

    def __init__(
        self,
        store: LiveStateStore,
        backend: Backend,
        *,
        collections: tuple[str, ...] = WATCHED_COLLECTIONS,
        on_notice: Callable[[Notice], None] | None = None,
    ) -> None:
        self._store = store
        self._backend = backend
        self._collections = collections
        self._on_notice = on_notice
        self._inflight: asyncio.Task[None] | None = None

    @property
    def is_refreshing(self) -> bool:
        return self._inflight is not None and not self._inflight.done()

    async def refresh(self) -> None:
        """Fetch and replace all collections.

        Concurrent callers share one in-flight refresh.

        Raises
        ------
        RefreshError
            If at least one fetch failed. Successful fetches are applied
            before this is raised.
        """
        if self._inflight is None or self._inflight.done():
            self._inflight = asyncio.get_running_loop().create_task(self._run())
            self._inflight.add_done_callback(_consume_result)
        # Shield so one caller's cancellation does not abort a shared refresh.
        await asyncio.shield(self._inflight)

    async def _fetch(self, collection: str) -> list[dict[str, Any]]:
        order = FETCH_ORDER.get(collection)
        if order is None:
            return await self._backend.fetch_all(collection)
        return await self._backend.fetch_all(collection, order_by=order.column, descending=order.descending)

    async def _run(self) -> None:
        _logger.debug("Refreshing collections %s", ", ".join(self._collections))
        self._store.error = None
        results = await asyncio.gather(
            *(self._fetch(collection) for collection in self._collections),
            return_exceptions=True,
        )

        failures: dict[str, BaseException] = {}
        for collection, result in zip(self._collections, results, strict=True):
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                _logger.debug("Refresh fetch failed collection=%s", collection, exc_info=result)
                failures[collection] = result
                continue
            try:
                self._store.replace(collection, result)
            except (FarmGuardError, ValueError) as exc:
                failures[collection] = exc

        self._store.mark_updated()

        if failures:
            message = "; ".join(f"Fetch {name}: {exc}" for name, exc in failures.items())
            self._store.error = message
            error = RefreshError(message, failures=failures)
            _logger.debug("Refresh finished with %d failure(s): %s", len(failures), message)
            self._notify(refresh_notice(error))
            raise error

        _logger.debug("Refresh finished")
        self._notify(refresh_notice())

    def _notify(self, notice: Notice) -> None:
        if self._on_notice is None:
            return
        try:
            self._on_notice(notice)
        except Exception:
            _logger.debug("on_notice callback failed", exc_info=True)


class AutoRefresher:
    """Opt-in periodic full refresh.

    Runs ``controller.refresh()`` every *interval* seconds while enabled.
    Refresh failures are logged and do not stop the loop.
    """

    def __init__(
        self,
        controller: ManualRefreshController,
        *,
        interval: float = DEFAULT_AUTO_REFRESH_INTERVAL_S,
        enabled: bool = False,
    ) -> None:
        if interval <= 0:
            raise ValueError(f"interval must be > 0, got {interval}")
        self._controller = controller
        self._interval = interval
        self._enabled = enabled
        self._task: asyncio.Task[None] | None = None
        self._next_at: float | None = None

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def interval(self) -> float:
        return self._interval

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def next_refresh_in(self) -> float | None:
        """Seconds until the next scheduled refresh, ``None`` when idle."""
        if self._next_at is None or not self.is_running:
            return None
        return max(0.0, self._next_at - time.monotonic())

    def start(self) -> None:
        """Start the loop if enabled. Must be called from a running loop."""
        if not self._enabled or self.is_running:
            return
        self._task = asyncio.get_running_loop().create_task(self._loop())

    async def stop(self) -> None:
        task = self._task
        self._task = None
        self._next_at = None
        if task is None:
            return
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task

    async def set_enabled(self, enabled: bool) -> None:
        self._enabled = enabled
        if enabled:
            self.start()
        else:
            await self.stop()

    async def _loop(self) -> None:
        while True:
            self._next_at = time.monotonic() + self._interval
            await asyncio.sleep(self._interval)
            try:
                await self._controller.refresh()
            except RefreshError as exc:
                _logger.debug("Auto refresh incomplete: %s", exc)
            except Exception:
                _logger.debug("Auto refresh failed", exc_info=True)
