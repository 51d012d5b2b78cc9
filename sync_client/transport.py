"""Transports carrying named story events between client and server."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Callable, Optional, Protocol

import aiohttp

from sync_client.errors import NotConnectedError

logger = logging.getLogger(__name__)

EventHandler = Callable[[str, Any], None]
CloseHandler = Callable[[str], None]


class Transport(Protocol):
    """What the sync controller needs from a connection.

    ``connect`` raises ``ConnectionError`` when the server cannot be reached.
    The close handler fires only when the remote side drops the connection,
    never after a local ``disconnect``.
    """

    @property
    def connected(self) -> bool: ...

    def bind(self, on_event: EventHandler, on_close: CloseHandler) -> None: ...

    async def connect(self) -> None: ...

    async def disconnect(self) -> None: ...

    async def emit(self, event: str, data: dict) -> None: ...


class WebSocketTransport:
    """JSON frames ``{"event": ..., "data": ...}`` over an aiohttp WebSocket."""

    def __init__(self, url: str, heartbeat: Optional[float] = 30.0, connect_timeout: float = 10.0) -> None:
        self.url = url
        self.heartbeat = heartbeat
        self.connect_timeout = connect_timeout
        self._session: Optional[aiohttp.ClientSession] = None
        self._ws: Optional[aiohttp.ClientWebSocketResponse] = None
        self._reader: Optional[asyncio.Task] = None
        self._closing = False
        self._on_event: Optional[EventHandler] = None
        self._on_close: Optional[CloseHandler] = None

    @property
    def connected(self) -> bool:
        return self._ws is not None and not self._ws.closed

    def bind(self, on_event: EventHandler, on_close: CloseHandler) -> None:
        self._on_event = on_event
        self._on_close = on_close

    async def connect(self) -> None:
        if self.connected:
            return
        self._closing = False
        session = aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=None, connect=self.connect_timeout))
        try:
            self._ws = await session.ws_connect(self.url, heartbeat=self.heartbeat)
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            await session.close()
            raise ConnectionError(f"WebSocket connection to {self.url} failed: {exc}") from exc
        self._session = session
        self._reader = asyncio.create_task(self._read_loop(self._ws))
        logger.info("Connected to %s", self.url)

    async def disconnect(self) -> None:
        self._closing = True
        reader, self._reader = self._reader, None
        if self._ws is not None:
            await self._ws.close()
        if reader is not None and reader is not asyncio.current_task():
            reader.cancel()
            await asyncio.gather(reader, return_exceptions=True)
        await self._close_session()

    async def emit(self, event: str, data: dict) -> None:
        if not self.connected:
            raise NotConnectedError(f"Cannot send {event} while disconnected")
        try:
            await self._ws.send_json({"event": event, "data": data})
        except (aiohttp.ClientError, ConnectionResetError) as exc:
            raise NotConnectedError(f"Sending {event} failed: {exc}") from exc

    async def _read_loop(self, ws: aiohttp.ClientWebSocketResponse) -> None:
        reason = "transport closed"
        async for msg in ws:
            if msg.type == aiohttp.WSMsgType.TEXT:
                self._dispatch(msg.data)
            elif msg.type == aiohttp.WSMsgType.ERROR:
                reason = f"transport error: {ws.exception()}"
                break
        if self._closing:
            return
        logger.warning("Connection to %s lost (%s)", self.url, reason)
        self._ws = None
        self._reader = None
        await self._close_session()
        if self._on_close is not None:
            self._on_close(reason)

    def _dispatch(self, raw: str) -> None:
        try:
            frame = json.loads(raw)
        except ValueError:
            logger.warning("Ignoring non-JSON frame from server")
            return
        if not isinstance(frame, dict) or "event" not in frame:
            logger.warning("Ignoring frame without an event name")
            return
        if self._on_event is not None:
            self._on_event(frame["event"], frame.get("data"))

    async def _close_session(self) -> None:
        session, self._session = self._session, None
        if session is not None:
            await session.close()
