"""Shared fakes for chat relay tests."""

from __future__ import annotations

import asyncio
import json
from types import SimpleNamespace
from typing import Any, Dict, List, Optional, Sequence

import pytest

from services.market.tool_session import ToolSessionManager
from services.realtime.ws_session import ChatGateway

MARKET_TOOLS = [
    {
        "name": "search_markets",
        "description": "Search prediction markets",
        "input_schema": {"type": "object", "properties": {"query": {"type": "string"}}},
    }
]


class FakeToolSession:
    def __init__(self, user_id: str, *, connected: bool = True, fail_init: bool = False) -> None:
        self.user_id = user_id
        self.is_connected = connected
        self.fail_init = fail_init
        self.init_calls = 0
        self.tool_calls: List[tuple] = []
        self.tool_results: Dict[str, Any] = {}

    async def ensure_connected(self) -> bool:
        if self.is_connected:
            return True
        self.init_calls += 1
        if not self.fail_init:
            self.is_connected = True
        return self.is_connected

    def get_tools(self) -> List[Dict[str, Any]]:
        return list(MARKET_TOOLS)

    async def call_tool(self, name: str, arguments: Dict[str, Any]) -> str:
        self.tool_calls.append((name, arguments))
        result = self.tool_results.get(name, '[{"question": "Will BTC hit 100k?", "slug": "btc-100k"}]')
        if isinstance(result, Exception):
            raise result
        return result

    async def disconnect(self) -> None:
        self.is_connected = False


class FakeAssistant:
    def __init__(
        self,
        chunks: Sequence[str] = ("Hello", " there"),
        statuses: Sequence[str] = (),
        error: Optional[Exception] = None,
        gate: Optional[asyncio.Event] = None,
    ) -> None:
        self.chunks = list(chunks)
        self.statuses = list(statuses)
        self.error = error
        self.gate = gate
        self.calls: List[tuple] = []

    async def process_message_with_tools(self, user_message, history, tool_session, on_chunk, on_status):
        self.calls.append((user_message, [(msg.role, msg.content) for msg in history]))
        if self.gate is not None:
            await self.gate.wait()
        for status in self.statuses:
            await on_status(status)
        for chunk in self.chunks:
            await on_chunk(chunk)
        if self.error is not None:
            raise self.error
        return "".join(self.chunks).strip()


class Recorder:
    """Collects envelopes the gateway sends to one connection."""

    def __init__(self) -> None:
        self.sent: List[Dict[str, Any]] = []

    async def __call__(self, payload: Dict[str, Any]) -> None:
        self.sent.append(payload)

    def types(self) -> List[str]:
        return [payload["type"] for payload in self.sent]

    def of_type(self, message_type: str) -> List[Dict[str, Any]]:
        return [payload for payload in self.sent if payload["type"] == message_type]


class FakeStream:
    """Stands in for ``AsyncOpenAI().responses.stream(...)``."""

    def __init__(self, events: Sequence[Any], response: Any) -> None:
        self.events = list(events)
        self.response = response

    async def __aenter__(self) -> "FakeStream":
        return self

    async def __aexit__(self, *exc) -> bool:
        return False

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for event in self.events:
            yield event

    async def get_final_response(self) -> Any:
        return self.response


class FakeResponses:
    def __init__(self, rounds: Sequence[FakeStream]) -> None:
        self.rounds = list(rounds)
        self.requests: List[Dict[str, Any]] = []

    def stream(self, **kwargs) -> FakeStream:
        self.requests.append(dict(kwargs, input=list(kwargs["input"])))
        return self.rounds.pop(0)


def text_delta(text: str) -> SimpleNamespace:
    return SimpleNamespace(type="response.output_text.delta", delta=text)


def function_call_item(name: str, arguments: Dict[str, Any], call_id: str = "call-1") -> SimpleNamespace:
    return SimpleNamespace(type="function_call", call_id=call_id, name=name, arguments=json.dumps(arguments))


def text_round(*chunks: str) -> FakeStream:
    return FakeStream([text_delta(chunk) for chunk in chunks], SimpleNamespace(output=[], usage=None))


def tool_round(*items: SimpleNamespace) -> FakeStream:
    events = [SimpleNamespace(type="response.output_item.added", item=item) for item in items]
    return FakeStream(events, SimpleNamespace(output=list(items), usage=None))


def fake_openai(rounds: Sequence[FakeStream]) -> SimpleNamespace:
    return SimpleNamespace(responses=FakeResponses(rounds))


@pytest.fixture
def tool_manager() -> ToolSessionManager:
    return ToolSessionManager(lambda user_id: FakeToolSession(user_id))


@pytest.fixture
def assistant() -> FakeAssistant:
    return FakeAssistant()


@pytest.fixture
def gateway(tool_manager, assistant) -> ChatGateway:
    return ChatGateway(tool_manager, assistant)
