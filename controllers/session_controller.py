"""Read-only session helpers for the HTTP API."""

from __future__ import annotations

from typing import Any, Dict

from fastapi import HTTPException, Request

from services.realtime.broadcast_gateway import BroadcastGateway
from services.realtime.errors import ExportFormatError, SessionNotFoundError
from services.realtime.invite_tokens import InviteTokenStore
from services.realtime.session_store import SessionRegistry

EXPORT_MEDIA_TYPES = {"text": "text/plain; charset=utf-8", "html": "text/html; charset=utf-8"}


def _registry(request: Request) -> SessionRegistry:
	return request.app.state.session_registry


async def get_session(request: Request, session_id: str) -> Dict[str, Any]:
	"""Return the full session, segments in chronological order."""
	try:
		return _registry(request).get_session(session_id).to_dict()
	except SessionNotFoundError as exc:
		raise HTTPException(status_code=404, detail="Session not found") from exc


async def get_presence(request: Request, session_id: str) -> Dict[str, Any]:
	"""Return the participants connected right now and the current mood tags."""
	gateway: BroadcastGateway = request.app.state.gateway
	try:
		return gateway.presence(session_id)
	except SessionNotFoundError as exc:
		raise HTTPException(status_code=404, detail="Session not found") from exc


async def export_session(request: Request, session_id: str, fmt: str) -> tuple[str, str]:
	"""Return (content, media_type) for a text or HTML export."""
	try:
		content = _registry(request).export_session(session_id, fmt)
	except SessionNotFoundError as exc:
		raise HTTPException(status_code=404, detail="Session not found") from exc
	except ExportFormatError as exc:
		raise HTTPException(status_code=400, detail=str(exc)) from exc
	return content, EXPORT_MEDIA_TYPES[fmt]


async def resolve_invite(request: Request, token: str) -> Dict[str, Any]:
	"""Map an invite token to its session id."""
	invites: InviteTokenStore = request.app.state.invite_store
	session_id = invites.validate(token)
	if session_id is None:
		raise HTTPException(status_code=404, detail="Invalid or expired invite token")
	if not _registry(request).has_session(session_id):
		raise HTTPException(status_code=404, detail="Session not found")
	return {"sessionId": session_id}
