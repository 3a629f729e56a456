"""Dispatch chat websocket envelopes and own per-connection session state."""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Coroutine, Dict, Optional, Set

from models import envelopes
from models.envelopes import AuthEnvelope, MessageEnvelope, ProtocolError
from models.session_models import Connection, ConnectionState
from services.market.tool_session import ToolSessionManager
from services.realtime.assistant import ChatAssistant
from services.realtime.session_store import ConnectionStore
from services.realtime.ws_chat import ChatTurnHandler

logger = logging.getLogger(__name__)

Sender = Callable[[Dict[str, Any]], Awaitable[None]]


class ChatGateway:
	"""Route envelopes for every live chat connection.

	Connections are keyed by generated ids; the transport registers an async
	``sender`` per connection and never hands the socket itself to the gateway.
	"""

	def __init__(
		self,
		tool_sessions: ToolSessionManager,
		assistant: ChatAssistant,
		store: Optional[ConnectionStore] = None,
	) -> None:
		self.store = store or ConnectionStore()
		self.tool_sessions = tool_sessions
		self.turn_handler = ChatTurnHandler(tool_sessions, assistant)
		self._senders: Dict[str, Sender] = {}
		self._tasks: Set[asyncio.Task] = set()

	def accept(self, sender: Sender) -> str:
		"""Register a new connection and return its id."""
		connection = self.store.open()
		self._senders[connection.connection_id] = sender
		logger.info("New chat connection %s", connection.connection_id)
		return connection.connection_id

	async def handle(self, connection_id: str, payload: Any) -> None:
		"""Process a single inbound envelope; errors are reported, never raised."""
		if self.store.find(connection_id) is None:
			logger.debug("Ignoring envelope for closed connection %s", connection_id)
			return
		try:
			envelope = envelopes.parse_envelope(payload)
			if isinstance(envelope, AuthEnvelope):
				await self._authenticate(connection_id, envelope)
			elif isinstance(envelope, MessageEnvelope):
				self._start_turn(connection_id, envelope)
		except (ProtocolError, ValueError, RuntimeError) as exc:
			logger.warning("Rejected envelope on connection %s: %s", connection_id, exc)
			await self.send_error(connection_id, str(exc))
		except Exception as exc:
			logger.exception("Error handling envelope on connection %s", connection_id)
			await self.send_error(connection_id, f"Error: {exc}")

	async def send_error(self, connection_id: str, message: str) -> None:
		"""Report an error; end the stream unless a turn is still streaming."""
		await self._send(connection_id, envelopes.error(message))
		connection = self.store.find(connection_id)
		if connection is None or connection.state != ConnectionState.PROCESSING:
			await self._send(connection_id, envelopes.stream_end())

	def disconnect(self, connection_id: str) -> None:
		"""Drop the connection; the user's tool session stays for reconnects."""
		self._senders.pop(connection_id, None)
		connection = self.store.drop(connection_id)
		if connection is not None and connection.session is not None:
			logger.info("Chat connection %s closed for user %s", connection_id, connection.session.user_id)
		else:
			logger.info("Chat connection %s closed", connection_id)

	async def broadcast(self, payload: Dict[str, Any]) -> int:
		"""Send ``payload`` to every authenticated connection."""
		recipients = [conn.connection_id for conn in self.store.authenticated()]
		for connection_id in recipients:
			await self._send(connection_id, payload)
		return len(recipients)

	async def wait_for_pending(self) -> None:
		"""Wait for in-flight turns and background work to finish."""
		while True:
			pending = [task for task in self._tasks if not task.done()]
			if not pending:
				return
			await asyncio.gather(*pending, return_exceptions=True)

	async def close(self) -> None:
		tasks = list(self._tasks)
		for task in tasks:
			task.cancel()
		await asyncio.gather(*tasks, return_exceptions=True)
		for connection_id in list(self._senders):
			self.disconnect(connection_id)

	async def _authenticate(self, connection_id: str, envelope: AuthEnvelope) -> None:
		connection = self.store.get(connection_id)
		if connection.state == ConnectionState.PROCESSING:
			raise ProtocolError("Cannot re-authenticate while a response is in progress.")
		connection.state = ConnectionState.AUTHENTICATING
		session = self.store.bind(connection_id, envelope.user_id, envelope.session_id)
		self._spawn(self._warm_tool_session(session.user_id))
		await self._send(connection_id, envelopes.auth_success(session.session_id))
		logger.info("User %s authenticated on %s, session %s", session.user_id, connection_id, session.session_id)

	def _start_turn(self, connection_id: str, envelope: MessageEnvelope) -> None:
		connection = self.store.get(connection_id)
		if connection.session is None:
			raise ProtocolError("Not authenticated. Please reconnect.")
		if connection.state == ConnectionState.PROCESSING:
			raise ProtocolError("A response is already in progress; wait for it to finish.")
		if envelope.user_id and envelope.user_id != connection.session.user_id:
			raise ProtocolError("userId does not match the authenticated session.")
		text = envelope.content.strip()
		if not text:
			raise ValueError("Message content is required.")
		# Flip state before yielding to the loop so a second envelope is rejected.
		connection.state = ConnectionState.PROCESSING
		self._spawn(self._run_turn(connection, text))

	async def _run_turn(self, connection: Connection, text: str) -> None:
		connection_id = connection.connection_id

		async def send(payload: Dict[str, Any]) -> None:
			await self._send(connection_id, payload)

		try:
			await self.turn_handler.run(connection.session, text, send)
			logger.info("Message processed for user %s", connection.session.user_id)
		except Exception as exc:
			logger.exception("Error processing chat message on %s", connection_id)
			await send(envelopes.error(f"Error: {exc}"))
			await send(envelopes.stream_end())
		finally:
			if connection.state == ConnectionState.PROCESSING:
				connection.state = ConnectionState.AUTHENTICATED

	async def _warm_tool_session(self, user_id: str) -> None:
		try:
			await self.tool_sessions.get_session(user_id)
		except Exception:
			logger.exception("Failed to prepare tool session for user %s", user_id)

	def _spawn(self, coro: Coroutine[Any, Any, None]) -> asyncio.Task:
		task = asyncio.create_task(coro)
		self._tasks.add(task)
		task.add_done_callback(self._tasks.discard)
		return task

	async def _send(self, connection_id: str, payload: Dict[str, Any]) -> None:
		sender = self._senders.get(connection_id)
		if sender is None:
			logger.debug("Dropping %s envelope for closed connection %s", payload.get("type"), connection_id)
			return
		try:
			await sender(payload)
		except Exception as exc:
			logger.debug("Could not deliver %s envelope to %s: %s", payload.get("type"), connection_id, exc)
