"""FastAPI routes for inspecting and notifying live chat sessions."""

from typing import Literal

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel

from controllers.session_controller import broadcast_notice, list_sessions

router = APIRouter()


class BroadcastPayload(BaseModel):
	message: str
	type: Literal["status", "error"] = "status"


@router.get("/sessions")
async def list_sessions_route(request: Request):
	try:
		return await list_sessions(request)
	except HTTPException:
		raise
	except Exception as exc:
		raise HTTPException(status_code=500, detail=str(exc))


@router.post("/broadcast")
async def broadcast_route(request: Request, payload: BroadcastPayload):
	try:
		return await broadcast_notice(request, payload.message, payload.type)
	except HTTPException:
		raise
	except Exception as exc:
		raise HTTPException(status_code=500, detail=str(exc))
