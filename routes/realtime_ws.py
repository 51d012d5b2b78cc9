"""WebSocket endpoint for collaborative story sessions."""

from __future__ import annotations

import json
from uuid import uuid4

from fastapi import APIRouter, Depends, HTTPException, WebSocket
from starlette.websockets import WebSocketDisconnect

from services.realtime.broadcast_gateway import BroadcastGateway
from services.realtime.errors import ErrorCode
from services.realtime.rooms import WebSocketConnection

router = APIRouter()


def _require_gateway(websocket: WebSocket) -> BroadcastGateway:
	gateway = getattr(websocket.app.state, "gateway", None)
	if gateway is None:
		raise HTTPException(status_code=500, detail="Realtime gateway unavailable")
	return gateway


@router.websocket("/ws")
async def story_socket(websocket: WebSocket, gateway: BroadcastGateway = Depends(_require_gateway)):
	"""Carry named story events as JSON frames: {"event": ..., "data": {...}}."""
	await websocket.accept()
	connection = WebSocketConnection(websocket, uuid4().hex)
	gateway.connect(connection)
	try:
		while True:
			try:
				raw = await websocket.receive_text()
			except WebSocketDisconnect:
				break
			try:
				frame = json.loads(raw)
			except ValueError:
				await connection.send("error", {"message": "Payload must be JSON", "code": ErrorCode.INVALID_PAYLOAD})
				continue
			if not isinstance(frame, dict) or not isinstance(frame.get("event"), str):
				await connection.send(
					"error", {"message": "Frame must carry an 'event' name", "code": ErrorCode.INVALID_PAYLOAD}
				)
				continue
			await gateway.handle(connection, frame["event"], frame.get("data"))
	except WebSocketDisconnect:
		pass
	finally:
		await gateway.disconnect(connection.connection_id)
