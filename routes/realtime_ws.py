"""WebSocket endpoint for the streaming market chat."""

from __future__ import annotations

import json
from typing import Any, Dict

from fastapi import APIRouter, Depends, HTTPException, WebSocket
from starlette.websockets import WebSocketDisconnect

from services.realtime.ws_session import ChatGateway

router = APIRouter()


def _require_gateway(websocket: WebSocket) -> ChatGateway:
	gateway = getattr(websocket.app.state, "gateway", None)
	if gateway is None:
		raise HTTPException(status_code=500, detail="Chat gateway unavailable")
	return gateway


@router.websocket("/ws")
async def chat_socket(websocket: WebSocket, gateway: ChatGateway = Depends(_require_gateway)):
	"""Relay one client's chat turns until the socket closes."""
	await websocket.accept()

	async def send(payload: Dict[str, Any]) -> None:
		await websocket.send_text(json.dumps(payload))

	connection_id = gateway.accept(send)
	try:
		while True:
			try:
				raw = await websocket.receive_text()
			except WebSocketDisconnect:
				break
			except KeyError:
				# Binary frames carry no "text" key.
				await gateway.send_error(connection_id, "Invalid websocket frame")
				continue
			try:
				payload = json.loads(raw)
			except ValueError:
				await gateway.send_error(connection_id, "Payload must be JSON")
				continue
			await gateway.handle(connection_id, payload)
	finally:
		gateway.disconnect(connection_id)
