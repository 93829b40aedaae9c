"""Internal change-stream transport: Phoenix channels over an aiohttp websocket.

The hosted store pushes committed row changes (``postgres_changes``) over a
single websocket; each watched table is a separately joined channel on that
socket. This module only speaks the wire protocol. Reconnect policy lives in
:mod:`farmguard.realtime.subscription`.
"""

from __future__ import annotations

import asyncio
import contextlib
import itertools
import json
import logging
import secrets
from collections.abc import Callable, Coroutine
from enum import StrEnum
from typing import Any, Protocol
from urllib.parse import urlencode

import aiohttp

from farmguard._redact import redact_for_log, redact_url
from farmguard.config import FarmGuardConfig
from farmguard.exceptions import ChannelError, SubscriptionTimeoutError
from farmguard.models.subscription import ChannelStatus

_logger = logging.getLogger(__name__)

_PHOENIX_TOPIC = "phoenix"
_PROTOCOL_VSN = "1.0.0"

EventCallback = Callable[[dict[str, Any]], None]
StatusCallback = Callable[[ChannelStatus, Exception | None], None]


class ChannelState(StrEnum):
    """Transport-level state of one channel object."""

    JOINING = "joining"
    JOINED = "joined"
    ERRORED = "errored"
    CLOSED = "closed"


class Channel(Protocol):
    @property
    def state(self) -> ChannelState: ...

    def close(self) -> None: ...


class ChangeFeed(Protocol):
    """Structural interface for the change-subscription primitive.

    ``subscribe_changes`` must not block: it returns a channel immediately
    and reports progress through ``on_status``.
    """

    def subscribe_changes(
        self,
        collection: str,
        *,
        event: str = "*",
        row_filter: str | None = None,
        on_event: EventCallback,
        on_status: StatusCallback,
    ) -> Channel: ...


class RealtimeChannel:
    """One joined ``postgres_changes`` channel for a single table."""

    def __init__(
        self,
        socket: RealtimeSocket,
        *,
        topic: str,
        collection: str,
        join_payload: dict[str, Any],
        on_event: EventCallback,
        on_status: StatusCallback,
    ) -> None:
        self._socket = socket
        self.topic = topic
        self.collection = collection
        self.join_payload = join_payload
        self.join_ref: str | None = None
        self._on_event = on_event
        self._on_status = on_status
        self._state = ChannelState.JOINING
        self._join_timer: asyncio.TimerHandle | None = None

    @property
    def state(self) -> ChannelState:
        return self._state

    def close(self) -> None:
        """Leave the channel. Does not report a status back to the owner."""
        if self._state == ChannelState.CLOSED:
            return
        was_active = self._state in (ChannelState.JOINING, ChannelState.JOINED)
        self._state = ChannelState.CLOSED
        self._cancel_join_timer()
        self._socket._forget(self, send_leave=was_active)

    def _cancel_join_timer(self) -> None:
        if self._join_timer is not None:
            self._join_timer.cancel()
            self._join_timer = None

    def _report(self, status: ChannelStatus, error: Exception | None = None) -> None:
        try:
            self._on_status(status, error)
        except Exception:
            _logger.debug("Status callback failed topic=%s", self.topic, exc_info=True)

    def _fail(self, status: ChannelStatus, error: Exception, *, send_leave: bool = False) -> None:
        if self._state in (ChannelState.CLOSED, ChannelState.ERRORED):
            return
        self._state = ChannelState.ERRORED
        self._cancel_join_timer()
        self._socket._forget(self, send_leave=send_leave)
        self._report(status, error)

    def _on_join_timeout(self) -> None:
        self._join_timer = None
        if self._state != ChannelState.JOINING:
            return
        # Leave server-side as well; a late ack must not keep the topic subscribed.
        self._fail(
            ChannelStatus.TIMED_OUT,
            SubscriptionTimeoutError(f"Join timed out for {self.topic}", collection=self.collection),
            send_leave=self.join_ref is not None,
        )

    def _handle_message(self, event: str, payload: dict[str, Any], ref: str | None) -> None:
        if event == "phx_reply" and ref is not None and ref == self.join_ref:
            self._handle_join_reply(payload)
        elif event == "postgres_changes":
            if self._state != ChannelState.JOINED:
                return
            try:
                self._on_event(payload)
            except Exception:
                _logger.debug("Event callback failed topic=%s", self.topic, exc_info=True)
        elif event == "system" and str(payload.get("status", "")).lower() == "error":
            self._fail(
                ChannelStatus.CHANNEL_ERROR,
                ChannelError(str(payload.get("message") or "system error"), collection=self.collection),
            )
        elif event == "phx_error":
            self._fail(
                ChannelStatus.CHANNEL_ERROR,
                ChannelError(f"Server reported an error for {self.topic}", collection=self.collection),
            )
        elif event == "phx_close":
            if self._state == ChannelState.CLOSED:
                return
            self._state = ChannelState.CLOSED
            self._cancel_join_timer()
            self._socket._forget(self, send_leave=False)
            self._report(ChannelStatus.CLOSED)

    def _handle_join_reply(self, payload: dict[str, Any]) -> None:
        if self._state != ChannelState.JOINING:
            return
        status = str(payload.get("status", "")).lower()
        if status == "ok":
            self._cancel_join_timer()
            self._state = ChannelState.JOINED
            self._report(ChannelStatus.SUBSCRIBED)
            return
        response = payload.get("response")
        reason = response.get("reason") if isinstance(response, dict) else None
        self._fail(
            ChannelStatus.CHANNEL_ERROR,
            ChannelError(f"Join rejected for {self.topic}: {reason or status or 'unknown'}", collection=self.collection),
        )


class RealtimeSocket:
    """Shared websocket that multiplexes change channels.

    The socket connects lazily on the first subscription and is not
    reconnected on its own: a lost socket fails every active channel with
    ``CHANNEL_ERROR`` and the next join reconnects.
    """

    def __init__(
        self,
        config: FarmGuardConfig,
        http_session: aiohttp.ClientSession,
        *,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        self._config = config
        self._http = http_session
        self._loop = loop
        self._ws: aiohttp.ClientWebSocketResponse | None = None
        self._connect_lock = asyncio.Lock()
        self._channels: dict[str, RealtimeChannel] = {}
        self._refs = itertools.count(1)
        self._reader_task: asyncio.Task[None] | None = None
        self._heartbeat_task: asyncio.Task[None] | None = None
        self._pending_heartbeat: str | None = None
        self._background: set[asyncio.Task[Any]] = set()

    @property
    def is_connected(self) -> bool:
        return self._ws is not None and not self._ws.closed

    def _next_ref(self) -> str:
        return str(next(self._refs))

    def _get_loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> None:
        task = self._get_loop().create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    # ------------------------------------------------------------------
    # ChangeFeed
    # ------------------------------------------------------------------

    def subscribe_changes(
        self,
        collection: str,
        *,
        event: str = "*",
        row_filter: str | None = None,
        on_event: EventCallback,
        on_status: StatusCallback,
    ) -> RealtimeChannel:
        change_filter: dict[str, Any] = {"event": event, "schema": self._config.schema, "table": collection}
        if row_filter:
            change_filter["filter"] = row_filter
        join_payload: dict[str, Any] = {
            "config": {
                "broadcast": {"ack": False, "self": False},
                "presence": {"key": ""},
                "private": False,
                "postgres_changes": [change_filter],
            },
            "access_token": self._config.anon_key,
        }
        channel = RealtimeChannel(
            self,
            topic=f"realtime:{collection}:{secrets.token_hex(4)}",
            collection=collection,
            join_payload=join_payload,
            on_event=on_event,
            on_status=on_status,
        )
        self._channels[channel.topic] = channel
        channel._join_timer = self._get_loop().call_later(self._config.join_timeout, channel._on_join_timeout)
        self._spawn(self._join(channel))
        return channel

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    async def _ensure_connected(self) -> aiohttp.ClientWebSocketResponse:
        async with self._connect_lock:
            if self._ws is not None and not self._ws.closed:
                return self._ws
            url = self._config.realtime_url
            params = {"apikey": self._config.anon_key, "vsn": _PROTOCOL_VSN}
            _logger.debug("Realtime socket connecting url=%s", redact_url(f"{url}?{urlencode(params)}"))
            ws = await self._http.ws_connect(url, params=params, heartbeat=None, autoping=True)
            self._ws = ws
            self._pending_heartbeat = None
            loop = self._get_loop()
            self._reader_task = loop.create_task(self._read_loop(ws))
            self._heartbeat_task = loop.create_task(self._heartbeat_loop(ws))
            _logger.debug("Realtime socket connected")
            return ws

    async def _join(self, channel: RealtimeChannel) -> None:
        try:
            ws = await self._ensure_connected()
            if channel.state != ChannelState.JOINING:
                return
            channel.join_ref = self._next_ref()
            await self._send(
                ws,
                {
                    "topic": channel.topic,
                    "event": "phx_join",
                    "payload": channel.join_payload,
                    "ref": channel.join_ref,
                    "join_ref": channel.join_ref,
                },
            )
        except asyncio.CancelledError:
            raise
        except (aiohttp.ClientError, OSError, TimeoutError) as exc:
            _logger.debug("Realtime join failed topic=%s", channel.topic, exc_info=True)
            channel._fail(
                ChannelStatus.CHANNEL_ERROR,
                ChannelError(f"Could not join {channel.topic}: {exc}", collection=channel.collection),
            )

    async def _send(self, ws: aiohttp.ClientWebSocketResponse, message: dict[str, Any]) -> None:
        _logger.debug("Realtime send %s", redact_for_log(message))
        await ws.send_str(json.dumps(message, separators=(",", ":")))

    async def _leave(self, topic: str) -> None:
        ws = self._ws
        if ws is None or ws.closed:
            return
        try:
            await self._send(ws, {"topic": topic, "event": "phx_leave", "payload": {}, "ref": self._next_ref()})
        except (aiohttp.ClientError, OSError):
            _logger.debug("Realtime leave failed topic=%s", topic, exc_info=True)

    def _forget(self, channel: RealtimeChannel, *, send_leave: bool) -> None:
        if self._channels.get(channel.topic) is channel:
            del self._channels[channel.topic]
        if send_leave and channel.join_ref is not None:
            self._spawn(self._leave(channel.topic))

    async def _heartbeat_loop(self, ws: aiohttp.ClientWebSocketResponse) -> None:
        while not ws.closed:
            await asyncio.sleep(self._config.heartbeat_interval)
            if self._pending_heartbeat is not None:
                _logger.debug("Realtime heartbeat not acknowledged; closing socket")
                await ws.close()
                return
            self._pending_heartbeat = self._next_ref()
            try:
                await self._send(
                    ws,
                    {"topic": _PHOENIX_TOPIC, "event": "heartbeat", "payload": {}, "ref": self._pending_heartbeat},
                )
            except (aiohttp.ClientError, OSError):
                _logger.debug("Realtime heartbeat send failed", exc_info=True)
                await ws.close()
                return

    async def _read_loop(self, ws: aiohttp.ClientWebSocketResponse) -> None:
        try:
            async for msg in ws:
                if msg.type == aiohttp.WSMsgType.TEXT:
                    self._dispatch(msg.data)
                elif msg.type == aiohttp.WSMsgType.ERROR:
                    _logger.debug("Realtime socket error: %s", ws.exception())
                    break
        finally:
            self._on_socket_lost(ws)

    def _dispatch(self, text: str) -> None:
        try:
            message = json.loads(text)
        except json.JSONDecodeError:
            _logger.debug("Realtime frame is not JSON: %s", text[:128])
            return
        if not isinstance(message, dict):
            return

        topic = message.get("topic")
        event = message.get("event")
        payload = message.get("payload")
        ref = message.get("ref")
        if not isinstance(topic, str) or not isinstance(event, str):
            return
        payload = payload if isinstance(payload, dict) else {}
        ref = str(ref) if ref is not None else None

        if topic == _PHOENIX_TOPIC:
            if event == "phx_reply" and ref == self._pending_heartbeat:
                self._pending_heartbeat = None
            return

        channel = self._channels.get(topic)
        if channel is None:
            return
        channel._handle_message(event, payload, ref)

    def _on_socket_lost(self, ws: aiohttp.ClientWebSocketResponse) -> None:
        if self._ws is not ws:
            return
        self._ws = None
        if self._heartbeat_task is not None:
            self._heartbeat_task.cancel()
            self._heartbeat_task = None
        _logger.debug("Realtime socket closed; failing %d channel(s)", len(self._channels))
        for channel in list(self._channels.values()):
            channel._fail(
                ChannelStatus.CHANNEL_ERROR,
                ChannelError("Realtime socket closed", collection=channel.collection),
            )

    async def close(self) -> None:
        """Close every channel and the socket."""
        for channel in list(self._channels.values()):
            channel.close()
        ws = self._ws
        self._ws = None
        for task in (self._heartbeat_task, self._reader_task, *self._background):
            if task is not None and not task.done():
                task.cancel()
        for task in (self._heartbeat_task, self._reader_task):
            if task is not None:
                with contextlib.suppress(asyncio.CancelledError):
                    await task
        self._heartbeat_task = None
        self._reader_task = None
        if ws is not None and not ws.closed:
            await ws.close()
        _logger.debug("Realtime socket stopped")
