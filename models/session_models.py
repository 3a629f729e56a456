"""Session domain models for the realtime chat relay."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional
from uuid import uuid4


class ConnectionState(str, Enum):
	"""Lifecycle of one websocket connection."""

	CONNECTED = "connected"
	AUTHENTICATING = "authenticating"
	AUTHENTICATED = "authenticated"
	PROCESSING = "processing"
	CLOSED = "closed"


@dataclass
class ChatMessage:
	"""One conversational turn exchanged with the assistant."""

	role: str
	content: str
	created_at: float = field(default_factory=lambda: time.time())
	message_id: str = field(default_factory=lambda: uuid4().hex)


@dataclass
class ClientSession:
	"""Application state bound to a connection after authentication."""

	user_id: str
	session_id: str
	history: List[ChatMessage] = field(default_factory=list)


@dataclass
class Connection:
	"""A live transport endpoint tracked by the gateway."""

	connection_id: str
	state: ConnectionState = ConnectionState.CONNECTED
	session: Optional[ClientSession] = None
	opened_at: float = field(default_factory=lambda: time.time())

	@property
	def is_authenticated(self) -> bool:
		return self.session is not None and self.state in (
			ConnectionState.AUTHENTICATED,
			ConnectionState.PROCESSING,
		)
