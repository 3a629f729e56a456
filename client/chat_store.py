"""Client-side chat state fed by the websocket transport."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, List, Optional

from models.session_models import ChatMessage
from services.content.render_plan import RenderPlan, plan_render

Listener = Callable[["ChatStore"], None]


@dataclass
class ChatStore:
	"""Connection flags, finished messages and the in-flight assistant buffer."""

	is_connected: bool = False
	is_connecting: bool = False
	connection_error: Optional[str] = None
	messages: List[ChatMessage] = field(default_factory=list)
	is_processing: bool = False
	current_streaming_message: str = ""
	status_message: Optional[str] = None
	_listeners: List[Listener] = field(default_factory=list, repr=False)

	def subscribe(self, listener: Listener) -> Callable[[], None]:
		"""Call ``listener`` after every change; returns an unsubscribe function."""
		self._listeners.append(listener)

		def unsubscribe() -> None:
			if listener in self._listeners:
				self._listeners.remove(listener)

		return unsubscribe

	def _changed(self) -> None:
		for listener in list(self._listeners):
			listener(self)

	def set_connected(self, connected: bool) -> None:
		self.is_connected = connected
		self._changed()

	def set_connecting(self, connecting: bool) -> None:
		self.is_connecting = connecting
		self._changed()

	def set_connection_error(self, error: Optional[str]) -> None:
		self.connection_error = error
		self._changed()

	def add_message(self, role: str, content: str) -> ChatMessage:
		message = ChatMessage(role=role, content=content)
		self.messages.append(message)
		self._changed()
		return message

	def set_processing(self, processing: bool) -> None:
		self.is_processing = processing
		self._changed()

	def set_status_message(self, status: Optional[str]) -> None:
		self.status_message = status
		self._changed()

	def append_streaming_content(self, content: str) -> None:
		self.current_streaming_message += content
		# New content supersedes any pending status note.
		self.status_message = None
		self._changed()

	def finalize_streaming_message(self) -> Optional[ChatMessage]:
		"""Flush the buffer as one assistant message and end processing."""
		text = self.current_streaming_message.strip()
		message = ChatMessage(role="assistant", content=text) if text else None
		if message is not None:
			self.messages.append(message)
		self.current_streaming_message = ""
		self.is_processing = False
		self.status_message = None
		self._changed()
		return message

	def abort_streaming(self) -> None:
		"""Discard a partial reply, e.g. when the connection drops mid-turn."""
		if not (self.current_streaming_message or self.is_processing or self.status_message):
			return
		self.current_streaming_message = ""
		self.is_processing = False
		self.status_message = None
		self._changed()

	def clear_messages(self) -> None:
		self.messages = []
		self.current_streaming_message = ""
		self.status_message = None
		self._changed()

	def streaming_plan(self) -> RenderPlan:
		return plan_render(self.current_streaming_message, is_streaming=True)
