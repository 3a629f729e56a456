"""Per-user market tool sessions backed by an MCP server."""

from __future__ import annotations

import asyncio
import logging
from contextlib import AsyncExitStack
from typing import Any, Callable, Dict, List, Optional

import httpx
from mcp import ClientSession
from mcp.client.streamable_http import streamablehttp_client

logger = logging.getLogger(__name__)

MAX_CALL_ATTEMPTS = 2


def _result_text(result: Any) -> str:
	"""Flatten an MCP tool result into text for the model."""
	parts: List[str] = []
	for item in getattr(result, "content", None) or []:
		text = getattr(item, "text", None)
		if text is not None:
			parts.append(text)
		elif hasattr(item, "model_dump_json"):
			parts.append(item.model_dump_json())
		else:
			parts.append(str(item))
	return "\n".join(parts)


class UserToolSession:
	"""MCP client session owned by a single user.

	Outlives individual websocket connections; the manager hands the same
	instance to every connection of the user.
	"""

	def __init__(
		self,
		user_id: str,
		url: str,
		*,
		api_key: Optional[str] = None,
		profile: Optional[str] = None,
	) -> None:
		self.user_id = user_id
		self.url = url
		self.api_key = api_key
		self.profile = profile
		self.is_connected = False
		self._client: Optional[ClientSession] = None
		self._stack: Optional[AsyncExitStack] = None
		self._tools: List[Dict[str, Any]] = []
		self._init_lock = asyncio.Lock()

	def _endpoint(self) -> httpx.URL:
		params = {}
		if self.api_key:
			params["api_key"] = self.api_key
		if self.profile:
			params["profile"] = self.profile
		return httpx.URL(self.url).copy_merge_params(params)

	def _redacted(self, endpoint: httpx.URL) -> str:
		text = str(endpoint)
		return text.replace(self.api_key, "***") if self.api_key else text

	async def initialize(self) -> None:
		"""Connect to the tool server and cache its tool list."""
		await self._close_client()
		endpoint = self._endpoint()
		logger.info("Connecting tool session for user %s to %s", self.user_id, self._redacted(endpoint))
		stack = AsyncExitStack()
		try:
			read_stream, write_stream, _ = await stack.enter_async_context(streamablehttp_client(str(endpoint)))
			client = await stack.enter_async_context(ClientSession(read_stream, write_stream))
			await client.initialize()
			listing = await client.list_tools()
		except Exception:
			await stack.aclose()
			self.is_connected = False
			raise
		self._stack = stack
		self._client = client
		self._tools = [
			{
				"name": tool.name,
				"description": tool.description or "",
				"input_schema": tool.inputSchema,
			}
			for tool in listing.tools
		]
		self.is_connected = True
		logger.info("Tool session ready for user %s with %d tools", self.user_id, len(self._tools))

	async def ensure_connected(self) -> bool:
		"""Initialize once; concurrent callers wait for the same attempt."""
		async with self._init_lock:
			if self.is_connected:
				return True
			try:
				await self.initialize()
			except Exception as exc:
				logger.warning("Tool session initialization failed for user %s: %s", self.user_id, exc)
			return self.is_connected

	def get_tools(self) -> List[Dict[str, Any]]:
		return list(self._tools)

	async def call_tool(self, name: str, arguments: Dict[str, Any]) -> str:
		"""Invoke a tool, reconnecting once if the server dropped our session."""
		if self._client is None:
			raise RuntimeError("Tool session not initialized")

		for attempt in range(1, MAX_CALL_ATTEMPTS + 1):
			try:
				logger.debug("Calling tool %s for user %s with %s", name, self.user_id, arguments)
				result = await self._client.call_tool(name, arguments)
			except Exception as exc:
				if "Session not found" in str(exc) and attempt < MAX_CALL_ATTEMPTS:
					logger.warning("Tool session expired for user %s, reconnecting", self.user_id)
					await self.reconnect()
					continue
				raise
			text = _result_text(result)
			if getattr(result, "isError", False):
				raise RuntimeError(text or f"Tool {name} failed")
			return text
		raise RuntimeError(f"Failed to call tool {name} after {MAX_CALL_ATTEMPTS} attempts")

	async def reconnect(self) -> None:
		logger.info("Reconnecting tool session for user %s", self.user_id)
		await self.initialize()

	async def _close_client(self) -> None:
		stack, self._stack, self._client = self._stack, None, None
		self.is_connected = False
		if stack is None:
			return
		try:
			await stack.aclose()
		except Exception as exc:
			# The transport may already be gone; nothing left to release.
			logger.debug("Error closing tool session for user %s: %s", self.user_id, exc)

	async def disconnect(self) -> None:
		await self._close_client()
		self._tools = []
		logger.info("Disconnected tool session for user %s", self.user_id)


class ToolSessionManager:
	"""Keep at most one tool session per user id."""

	def __init__(self, session_factory: Callable[[str], UserToolSession]) -> None:
		self._factory = session_factory
		self._sessions: Dict[str, UserToolSession] = {}

	async def get_session(self, user_id: str) -> UserToolSession:
		"""Return the user's session, creating and initializing it if needed.

		The map entry is written before the first await, so interleaved
		callers for one user share the same instance. Initialization
		failures are logged; the caller sees ``is_connected`` False.
		"""
		session = self.get_or_create(user_id)
		await session.ensure_connected()
		return session

	def get_or_create(self, user_id: str) -> UserToolSession:
		"""Return the user's session without connecting it."""
		session = self._sessions.get(user_id)
		if session is None:
			session = self._factory(user_id)
			self._sessions[user_id] = session
		return session

	def peek(self, user_id: str) -> Optional[UserToolSession]:
		return self._sessions.get(user_id)

	def all_sessions(self) -> List[UserToolSession]:
		return list(self._sessions.values())

	async def remove_session(self, user_id: str) -> None:
		session = self._sessions.pop(user_id, None)
		if session is not None:
			await session.disconnect()

	async def cleanup(self) -> None:
		logger.info("Cleaning up %d tool sessions", len(self._sessions))
		sessions, self._sessions = list(self._sessions.values()), {}
		for session in sessions:
			await session.disconnect()
