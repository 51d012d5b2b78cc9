"""FastAPI routes for reading sessions, exports and invite links."""

from fastapi import APIRouter, HTTPException, Query, Request
from fastapi.responses import Response

from controllers.session_controller import export_session, get_presence, get_session, resolve_invite

router = APIRouter()


@router.get("/sessions/{session_id}")
async def get_session_route(request: Request, session_id: str):
	try:
		return await get_session(request, session_id)
	except HTTPException:
		raise
	except Exception as exc:
		raise HTTPException(status_code=500, detail=str(exc))


@router.get("/sessions/{session_id}/presence")
async def get_presence_route(request: Request, session_id: str):
	try:
		return await get_presence(request, session_id)
	except HTTPException:
		raise
	except Exception as exc:
		raise HTTPException(status_code=500, detail=str(exc))


@router.get("/sessions/{session_id}/export")
async def export_session_route(request: Request, session_id: str, format: str = Query("text")):
	try:
		content, media_type = await export_session(request, session_id, format)
	except HTTPException:
		raise
	except Exception as exc:
		raise HTTPException(status_code=500, detail=str(exc))
	extension = "html" if format == "html" else "txt"
	return Response(
		content=content,
		media_type=media_type,
		headers={"Content-Disposition": f'attachment; filename="story-{session_id}.{extension}"'},
	)


@router.get("/invites/{token}")
async def resolve_invite_route(request: Request, token: str):
	try:
		return await resolve_invite(request, token)
	except HTTPException:
		raise
	except Exception as exc:
		raise HTTPException(status_code=500, detail=str(exc))
