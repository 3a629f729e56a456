"""Market chat assistant built on OpenAI streaming Responses with MCP tools."""
from __future__ import annotations

import asyncio
import inspect
import logging
import re
import time
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Union

from openai import AsyncOpenAI

from models.content_blocks import MARKET_CARD, MARKET_LIST
from models.session_models import ChatMessage
from services.content.block_parser import parse_message_content
from services.market.tool_session import UserToolSession
from services.realtime.prompts import (
	assistant_system_prompt,
	tool_error_message,
	tool_limit_message,
	tool_status,
)
from services.realtime.response_parser import (
	FunctionCall,
	extract_text,
	extract_usage,
	function_call_output,
	parse_function_calls,
)

logger = logging.getLogger(__name__)

TextCallback = Callable[[str], Union[None, Awaitable[None]]]

FALLBACK_REPLY = "I apologize, but I couldn't generate a response."

_SLUG_RE = re.compile(r"^[a-z0-9-]+$")


async def _notify(callback: Optional[TextCallback], text: str) -> None:
	if callback is None:
		return
	result = callback(text)
	if inspect.isawaitable(result):
		await result


def _function_tools(tools: Sequence[Dict[str, Any]]) -> List[Dict[str, Any]]:
	return [
		{
			"type": "function",
			"name": tool["name"],
			"description": tool.get("description", ""),
			"parameters": tool.get("input_schema") or {"type": "object", "properties": {}},
			"strict": False,
		}
		for tool in tools
	]


def _conversation_input(user_message: str, history: Sequence[ChatMessage]) -> List[Dict[str, Any]]:
	"""Build Responses input from history, adding the new turn if not yet recorded."""
	inputs = [{"role": msg.role, "content": msg.content} for msg in history]
	if not history or history[-1].role != "user" or history[-1].content != user_message:
		inputs.append({"role": "user", "content": user_message})
	return inputs


def find_slug_titles(text: str) -> List[str]:
	"""Return market titles in ``text`` that look like URL slugs."""
	slugs: List[str] = []
	for block in parse_message_content(text):
		if block.type == MARKET_CARD:
			markets = [block.content]
		elif block.type == MARKET_LIST:
			markets = list(block.content)
		else:
			continue
		for market in markets:
			if _SLUG_RE.match(market.title) and "-" in market.title:
				slugs.append(market.title)
	return slugs


class ChatAssistant:
	"""Answer chat turns, streaming text and running market tools as needed."""

	def __init__(
		self,
		client: AsyncOpenAI,
		*,
		model: str = "gpt-4.1",
		max_output_tokens: int = 4096,
		max_tool_rounds: int = 2,
	) -> None:
		if client is None:
			raise ValueError("AsyncOpenAI client is required.")
		self.client = client
		self.model = model
		self.max_output_tokens = max_output_tokens
		self.max_tool_rounds = max_tool_rounds

	async def process_message_with_tools(
		self,
		user_message: str,
		history: Sequence[ChatMessage],
		tool_session: UserToolSession,
		on_chunk: Optional[TextCallback] = None,
		on_status: Optional[TextCallback] = None,
	) -> str:
		"""Return the full reply text after streaming it through ``on_chunk``.

		Args:
			user_message: The user's new message.
			history: Prior conversation, optionally already ending with ``user_message``.
			tool_session: Connected market tool session.
			on_chunk: Receives every text fragment as it is produced.
			on_status: Receives progress notes such as "Searching markets...".
		"""
		tools = _function_tools(tool_session.get_tools())
		inputs = _conversation_input(user_message, history)
		fragments: List[str] = []
		start = time.time()

		response = await self._stream_round(inputs, tools, fragments, on_chunk, on_status)
		calls = parse_function_calls(response)
		rounds = 0
		while calls and rounds < self.max_tool_rounds:
			rounds += 1
			logger.info("Tool round %d/%d: %s", rounds, self.max_tool_rounds, [call.name for call in calls])
			inputs.extend(call.as_input() for call in calls)
			outputs = await asyncio.gather(*(self._run_tool(tool_session, call, on_status) for call in calls))
			inputs.extend(outputs)
			await _notify(on_status, "Analyzing results...")
			response = await self._stream_round(inputs, tools, fragments, on_chunk, on_status)
			calls = parse_function_calls(response)

		if calls:
			logger.warning("Hit max tool rounds (%d), forcing final response", self.max_tool_rounds)
			await _notify(on_status, "Finalizing response...")
			inputs.extend(call.as_input() for call in calls)
			inputs.extend(function_call_output(call.call_id, tool_limit_message()) for call in calls)
			response = await self._stream_round(
				inputs, tools, fragments, on_chunk, on_status, tool_choice="none"
			)

		text = "".join(fragments).strip() or extract_text(response).strip()
		logger.info("Assistant reply in %.3fs, usage %s", time.time() - start, extract_usage(response))
		for title in find_slug_titles(text):
			logger.warning("Possible slug used as market title: %r", title)
		return text or FALLBACK_REPLY

	async def _stream_round(
		self,
		inputs: List[Dict[str, Any]],
		tools: List[Dict[str, Any]],
		fragments: List[str],
		on_chunk: Optional[TextCallback],
		on_status: Optional[TextCallback],
		tool_choice: Optional[str] = None,
	) -> Any:
		kwargs: Dict[str, Any] = {
			"model": self.model,
			"instructions": assistant_system_prompt(),
			"input": inputs,
			"max_output_tokens": self.max_output_tokens,
		}
		if tools:
			kwargs["tools"] = tools
			if tool_choice:
				kwargs["tool_choice"] = tool_choice

		async with self.client.responses.stream(**kwargs) as stream:
			async for event in stream:
				event_type = getattr(event, "type", None)
				if event_type == "response.output_text.delta":
					fragments.append(event.delta)
					await _notify(on_chunk, event.delta)
				elif event_type == "response.output_item.added":
					item = getattr(event, "item", None)
					if getattr(item, "type", None) == "function_call":
						await _notify(on_status, tool_status(getattr(item, "name", "")))
			getter = getattr(stream, "get_final_response", None)
			if getter:
				response = await getter()
			else:
				response = getattr(stream, "response", None)
			if response is None:
				raise RuntimeError("No response returned from OpenAI stream")
		return response

	async def _run_tool(
		self,
		tool_session: UserToolSession,
		call: FunctionCall,
		on_status: Optional[TextCallback],
	) -> Dict[str, Any]:
		await _notify(on_status, tool_status(call.name))
		try:
			output = await tool_session.call_tool(call.name, call.parsed_arguments())
		except Exception as exc:
			logger.error("Tool %s failed: %s", call.name, exc)
			return function_call_output(call.call_id, tool_error_message(str(exc)))
		logger.info("Tool %s returned %d characters", call.name, len(output))
		return function_call_output(call.call_id, output)
