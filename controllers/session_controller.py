"""Operational helpers over live chat connections."""

from __future__ import annotations

from typing import Any, Dict, List

from fastapi import HTTPException, Request

from models import envelopes
from services.realtime.ws_session import ChatGateway


def _gateway(request: Request) -> ChatGateway:
	gateway = getattr(request.app.state, "gateway", None)
	if gateway is None:
		raise HTTPException(status_code=503, detail="Chat gateway unavailable")
	return gateway


async def list_sessions(request: Request) -> Dict[str, Any]:
	"""Return a summary of every live connection."""
	gateway = _gateway(request)
	rows: List[Dict[str, Any]] = []
	for connection in gateway.store.all():
		session = connection.session
		rows.append(
			{
				"connection_id": connection.connection_id,
				"state": connection.state.value,
				"user_id": session.user_id if session else None,
				"session_id": session.session_id if session else None,
				"message_count": len(session.history) if session else 0,
				"opened_at": connection.opened_at,
			}
		)
	return {"connections": rows, "count": len(rows)}


async def broadcast_notice(request: Request, message: str, kind: str = "status") -> Dict[str, Any]:
	"""Fan a status or error notice out to every authenticated connection."""
	text = (message or "").strip()
	if not text:
		raise HTTPException(status_code=400, detail="Notice text is required")
	builder = envelopes.error if kind == "error" else envelopes.status
	delivered = await _gateway(request).broadcast(builder(text))
	return {"delivered": delivered}
