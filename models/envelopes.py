"""Wire envelopes exchanged over the chat websocket.

Inbound envelopes are validated with pydantic; outbound envelopes are plain
dictionaries so the transport owns serialization.
"""

from __future__ import annotations

from typing import Any, Dict, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

END_MARKER = "[END]"


class ProtocolError(ValueError):
	"""Raised when a client violates the envelope protocol."""


class AuthEnvelope(BaseModel):
	model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)

	type: str = "auth"
	user_id: str = Field(alias="userId", min_length=1)
	session_id: Optional[str] = Field(default=None, alias="sessionId")


class MessageEnvelope(BaseModel):
	model_config = ConfigDict(populate_by_name=True)

	type: str = "message"
	user_id: Optional[str] = Field(default=None, alias="userId")
	content: str


InboundEnvelope = Union[AuthEnvelope, MessageEnvelope]

_INBOUND: Dict[str, type] = {
	"auth": AuthEnvelope,
	"message": MessageEnvelope,
}


def parse_envelope(payload: Any) -> InboundEnvelope:
	"""Validate a decoded JSON frame and return the matching envelope model."""
	if not isinstance(payload, dict):
		raise ProtocolError("Envelope must be a JSON object.")
	message_type = payload.get("type")
	model = _INBOUND.get(message_type) if isinstance(message_type, str) else None
	if model is None:
		raise ProtocolError(f"Unknown message type: {message_type}")
	try:
		return model.model_validate(payload)
	except ValidationError as exc:
		first = exc.errors()[0] if exc.errors() else {}
		field_name = ".".join(str(part) for part in first.get("loc", ())) or "payload"
		reason = first.get("msg", "invalid value")
		raise ProtocolError(f"Invalid '{message_type}' envelope: {field_name}: {reason}") from exc


def auth_success(session_id: str) -> Dict[str, Any]:
	return {"type": "auth_success", "sessionId": session_id}


def processing(message: str = "Thinking...") -> Dict[str, Any]:
	return {"type": "processing", "message": message}


def status(message: str) -> Dict[str, Any]:
	return {"type": "status", "message": message}


def stream(content: str) -> Dict[str, Any]:
	return {"type": "stream", "content": content}


def stream_end() -> Dict[str, Any]:
	return stream(END_MARKER)


def error(message: str) -> Dict[str, Any]:
	return {"type": "error", "message": message}
