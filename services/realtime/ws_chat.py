"""Run one conversational turn for an authenticated chat connection."""
from __future__ import annotations

from typing import Any, Awaitable, Callable, Dict

from models import envelopes
from models.session_models import ChatMessage, ClientSession
from services.market.tool_session import ToolSessionManager
from services.realtime.assistant import ChatAssistant

Sender = Callable[[Dict[str, Any]], Awaitable[None]]


class ChatTurnHandler:
	"""Relay an assistant reply for a single user message."""

	def __init__(self, tool_sessions: ToolSessionManager, assistant: ChatAssistant) -> None:
		self.tool_sessions = tool_sessions
		self.assistant = assistant

	async def run(self, session: ClientSession, text: str, send: Sender) -> None:
		"""Stream the reply to ``text`` through ``send`` and record the exchange.

		History is only touched once the tool session is usable, and the user
		message is rolled back if the assistant fails, so the transcript keeps
		strict user/assistant alternation.
		"""
		tool_session = self.tool_sessions.get_or_create(session.user_id)
		if not tool_session.is_connected:
			await send(envelopes.status("Connecting to market data..."))
			if not await tool_session.ensure_connected():
				await send(envelopes.error("Failed to connect to market data"))
				await send(envelopes.stream_end())
				return

		user_message = ChatMessage(role="user", content=text)
		session.history.append(user_message)
		await send(envelopes.processing())

		async def on_chunk(chunk: str) -> None:
			await send(envelopes.stream(chunk))

		async def on_status(message: str) -> None:
			await send(envelopes.status(message))

		try:
			reply = await self.assistant.process_message_with_tools(
				text,
				list(session.history),
				tool_session,
				on_chunk,
				on_status,
			)
		except Exception:
			if session.history and session.history[-1] is user_message:
				session.history.pop()
			raise

		session.history.append(ChatMessage(role="assistant", content=reply))
		await send(envelopes.stream_end())
