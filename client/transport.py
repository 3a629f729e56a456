"""Websocket transport for the market chat client.

Keeps one logical session against the gateway: authenticates on every open,
feeds streamed envelopes into a ``ChatStore`` and reconnects with a linear
backoff (``reconnect_delay * attempt``) until ``max_reconnect_attempts`` is
exhausted.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Callable, Dict, List, Optional

import websockets
from websockets.exceptions import WebSocketException

from client.chat_store import ChatStore
from models.envelopes import END_MARKER

logger = logging.getLogger(__name__)

MessageHandler = Callable[[Dict[str, Any]], None]

RETRY_EXHAUSTED = "Failed to connect after multiple attempts"


class ChatTransport:
	def __init__(
		self,
		url: str,
		store: ChatStore,
		*,
		max_reconnect_attempts: int = 5,
		reconnect_delay: float = 2.0,
		connect: Callable[..., Any] = websockets.connect,
		sleep: Callable[[float], Any] = asyncio.sleep,
	) -> None:
		self.url = url
		self.store = store
		self.max_reconnect_attempts = max_reconnect_attempts
		self.reconnect_delay = reconnect_delay
		self.user_id: Optional[str] = None
		self.session_id: Optional[str] = None
		self.reconnect_attempts = 0
		self._connect = connect
		self._sleep = sleep
		self._ws: Any = None
		self._task: Optional[asyncio.Task] = None
		self._closing = False
		self._handlers: Dict[str, List[MessageHandler]] = {}

	def connect(self, user_id: str) -> asyncio.Task:
		"""Start (or restart) the connection loop for ``user_id``."""
		if self._task is not None and not self._task.done():
			self._task.cancel()
		self.user_id = user_id
		self.reconnect_attempts = 0
		self._closing = False
		self.store.set_connection_error(None)
		self._task = asyncio.create_task(self.run())
		return self._task

	async def run(self) -> None:
		"""Open, authenticate and receive until retries are exhausted or closed."""
		while True:
			await self._session()
			if self._closing:
				return
			if self.reconnect_attempts >= self.max_reconnect_attempts:
				logger.error("Giving up after %d reconnect attempts", self.reconnect_attempts)
				self.store.set_connection_error(RETRY_EXHAUSTED)
				return
			self.reconnect_attempts += 1
			delay = self.reconnect_delay * self.reconnect_attempts
			logger.info(
				"Reconnecting in %.1fs (%d/%d)", delay, self.reconnect_attempts, self.max_reconnect_attempts
			)
			await self._sleep(delay)
			if self._closing:
				return

	async def _session(self) -> None:
		self.store.set_connecting(True)
		try:
			async with self._connect(self.url) as ws:
				self._ws = ws
				self.reconnect_attempts = 0
				self.store.set_connecting(False)
				self.store.set_connection_error(None)
				self.store.set_connected(True)
				logger.info("Connected to %s", self.url)
				await self._send({"type": "auth", "userId": self.user_id, "sessionId": self.session_id})
				async for raw in ws:
					self._handle_frame(raw)
		except (OSError, WebSocketException, asyncio.TimeoutError) as exc:
			logger.warning("Websocket connection lost: %s", exc)
		finally:
			self._ws = None
			self.store.abort_streaming()
			self.store.set_connecting(False)
			self.store.set_connected(False)

	def _handle_frame(self, raw: Any) -> None:
		try:
			data = json.loads(raw)
		except ValueError as exc:
			logger.error("Error parsing websocket message: %s", exc)
			return
		if isinstance(data, dict):
			self.handle_message(data)

	def handle_message(self, data: Dict[str, Any]) -> None:
		"""Apply one gateway envelope to the store."""
		message_type = data.get("type")
		if message_type == "auth_success":
			self.session_id = data.get("sessionId")
			logger.info("Authenticated with session %s", self.session_id)
		elif message_type == "stream":
			content = data.get("content") or ""
			if content == END_MARKER:
				self.store.finalize_streaming_message()
			else:
				self.store.append_streaming_content(content)
		elif message_type == "processing":
			self.store.set_processing(True)
		elif message_type == "status":
			self.store.set_status_message(data.get("message"))
		elif message_type == "error":
			logger.error("Server error: %s", data.get("message"))
			# Processing ends on the "[END]" that follows; a rejected second
			# message gets no "[END]" while the earlier reply keeps streaming.
			self.store.add_message("assistant", f"Error: {data.get('message')}")
		else:
			logger.debug("Ignoring unknown message type %r", message_type)

		for handler in list(self._handlers.get(message_type, [])):
			handler(data)

	async def send_message(self, text: str) -> bool:
		"""Send a chat turn; returns False (and logs) when not connected."""
		if not self.is_connected():
			logger.error("Websocket not connected; message not sent")
			return False
		self.store.add_message("user", text)
		await self._send({"type": "message", "userId": self.user_id, "content": text})
		return True

	async def _send(self, payload: Dict[str, Any]) -> None:
		if self._ws is None:
			logger.error("Cannot send %s, websocket not open", payload.get("type"))
			return
		await self._ws.send(json.dumps(payload))

	def is_connected(self) -> bool:
		return self._ws is not None

	async def disconnect(self) -> None:
		self._closing = True
		ws, task = self._ws, self._task
		if ws is not None:
			await ws.close()
		if task is not None and not task.done():
			task.cancel()
			try:
				await task
			except asyncio.CancelledError:
				pass
		self._task = None
		self.user_id = None
		self.session_id = None
		self.store.set_connected(False)

	def on(self, message_type: str, handler: MessageHandler) -> None:
		self._handlers.setdefault(message_type, []).append(handler)

	def off(self, message_type: str, handler: MessageHandler) -> None:
		handlers = self._handlers.get(message_type)
		if handlers and handler in handlers:
			handlers.remove(handler)
