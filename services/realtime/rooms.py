"""Per-session rooms of live connections."""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol

from fastapi import WebSocket


class RealtimeConnection(Protocol):
	"""What the gateway needs from a client connection."""

	connection_id: str

	async def send(self, event: str, data: Dict[str, Any]) -> None: ...


class WebSocketConnection:
	"""Send named events over a FastAPI WebSocket as JSON frames."""

	def __init__(self, websocket: WebSocket, connection_id: str) -> None:
		self.websocket = websocket
		self.connection_id = connection_id
		self._send_lock = asyncio.Lock()

	async def send(self, event: str, data: Dict[str, Any]) -> None:
		async with self._send_lock:
			await self.websocket.send_text(json.dumps({"event": event, "data": data}))


@dataclass
class ConnectionContext:
	"""Server-side state for one live connection; discarded on disconnect."""

	connection: RealtimeConnection
	session_id: Optional[str] = None
	participant_id: Optional[str] = None


class RoomManager:
	"""Track which connections belong to which session room.

	A connection sits in at most one room; joining another room leaves the
	previous one. Room member order is join order, which is also fan-out order.
	"""

	def __init__(self) -> None:
		self._rooms: Dict[str, Dict[str, ConnectionContext]] = {}
		self._contexts: Dict[str, ConnectionContext] = {}

	def register(self, connection: RealtimeConnection) -> ConnectionContext:
		ctx = ConnectionContext(connection=connection)
		self._contexts[connection.connection_id] = ctx
		return ctx

	def context(self, connection_id: str) -> Optional[ConnectionContext]:
		return self._contexts.get(connection_id)

	def join(self, ctx: ConnectionContext, session_id: str) -> None:
		if ctx.session_id and ctx.session_id != session_id:
			self._leave_room(ctx)
		ctx.session_id = session_id
		self._rooms.setdefault(session_id, {})[ctx.connection.connection_id] = ctx

	def unregister(self, connection_id: str) -> Optional[ConnectionContext]:
		ctx = self._contexts.pop(connection_id, None)
		if ctx is not None:
			self._leave_room(ctx)
		return ctx

	def members(self, session_id: str) -> List[ConnectionContext]:
		return list(self._rooms.get(session_id, {}).values())

	def close_room(self, session_id: str) -> List[ConnectionContext]:
		members = list(self._rooms.pop(session_id, {}).values())
		for ctx in members:
			ctx.session_id = None
		return members

	def _leave_room(self, ctx: ConnectionContext) -> None:
		if ctx.session_id is None:
			return
		room = self._rooms.get(ctx.session_id)
		if room is not None:
			room.pop(ctx.connection.connection_id, None)
			if not room:
				del self._rooms[ctx.session_id]
		ctx.session_id = None
