"""Simple in-memory store for live chat connections."""

from __future__ import annotations

from typing import Dict, Iterable, List, Optional
from uuid import uuid4

from models.session_models import ClientSession, Connection, ConnectionState


class ConnectionStore:
	"""Map generated connection ids to their connection and client session."""

	def __init__(self) -> None:
		self._connections: Dict[str, Connection] = {}

	def open(self) -> Connection:
		"""Register a new connection in the CONNECTED state."""
		connection = Connection(connection_id=uuid4().hex)
		self._connections[connection.connection_id] = connection
		return connection

	def get(self, connection_id: str) -> Connection:
		"""Return a connection or raise KeyError if missing."""
		connection = self._connections.get(connection_id)
		if connection is None:
			raise KeyError(f"Connection {connection_id} not found")
		return connection

	def find(self, connection_id: str) -> Optional[Connection]:
		return self._connections.get(connection_id)

	def bind(self, connection_id: str, user_id: str, session_id: Optional[str] = None) -> ClientSession:
		"""Attach a fresh client session, generating a session id if absent."""
		connection = self.get(connection_id)
		session = ClientSession(user_id=user_id, session_id=session_id or uuid4().hex)
		connection.session = session
		connection.state = ConnectionState.AUTHENTICATED
		return session

	def drop(self, connection_id: str) -> Optional[Connection]:
		"""Forget a connection and mark it closed."""
		connection = self._connections.pop(connection_id, None)
		if connection is not None:
			connection.state = ConnectionState.CLOSED
		return connection

	def authenticated(self) -> List[Connection]:
		return [conn for conn in self._connections.values() if conn.is_authenticated]

	def all(self) -> Iterable[Connection]:
		return list(self._connections.values())

	def __len__(self) -> int:
		return len(self._connections)
