"""Tests for per-user MCP tool sessions and their manager."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

import pytest

from services.market.tool_session import ToolSessionManager, UserToolSession


def tool_result(text: str, is_error: bool = False) -> SimpleNamespace:
    return SimpleNamespace(content=[SimpleNamespace(text=text)], isError=is_error)


def connected_session(**kwargs) -> UserToolSession:
    session = UserToolSession("alice", "https://tools.example/mcp", **kwargs)
    session._client = AsyncMock()
    session.is_connected = True
    return session


class TestToolSessionManager:
    @pytest.mark.asyncio
    async def test_concurrent_requests_share_one_session(self):
        created = []

        class SlowSession:
            def __init__(self, user_id):
                self.user_id = user_id
                self.is_connected = False
                created.append(self)

            async def ensure_connected(self):
                await asyncio.sleep(0)
                self.is_connected = True
                return True

        manager = ToolSessionManager(SlowSession)
        first, second, third = await asyncio.gather(
            manager.get_session("alice"),
            manager.get_session("alice"),
            manager.get_session("bob"),
        )
        assert first is second
        assert first is not third
        assert len(created) == 2

    def test_get_or_create_does_not_connect(self):
        session = SimpleNamespace(ensure_connected=AsyncMock(return_value=True))
        manager = ToolSessionManager(lambda user_id: session)
        assert manager.get_or_create("alice") is session
        assert manager.get_or_create("alice") is session
        session.ensure_connected.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_remove_and_cleanup_disconnect(self):
        session = SimpleNamespace(ensure_connected=AsyncMock(return_value=True), disconnect=AsyncMock())
        manager = ToolSessionManager(lambda user_id: session)
        await manager.get_session("alice")
        await manager.remove_session("alice")
        session.disconnect.assert_awaited_once()
        assert manager.peek("alice") is None

        await manager.get_session("bob")
        await manager.cleanup()
        assert session.disconnect.await_count == 2
        assert manager.all_sessions() == []


class TestUserToolSession:
    def test_endpoint_carries_credentials(self):
        session = UserToolSession("alice", "https://tools.example/mcp?x=1", api_key="secret", profile="p1")
        endpoint = session._endpoint()
        assert endpoint.params["api_key"] == "secret"
        assert endpoint.params["profile"] == "p1"
        assert endpoint.params["x"] == "1"
        assert "secret" not in session._redacted(endpoint)

    def test_endpoint_without_credentials(self):
        session = UserToolSession("alice", "https://tools.example/mcp")
        endpoint = session._endpoint()
        assert "api_key" not in endpoint.params
        assert endpoint.host == "tools.example"

    @pytest.mark.asyncio
    async def test_call_tool_returns_text(self):
        session = connected_session()
        session._client.call_tool.return_value = tool_result('[{"slug": "btc"}]')
        assert await session.call_tool("search_markets", {"query": "btc"}) == '[{"slug": "btc"}]'
        session._client.call_tool.assert_awaited_once_with("search_markets", {"query": "btc"})

    @pytest.mark.asyncio
    async def test_call_tool_reconnects_once_on_expired_session(self):
        session = connected_session()
        client = session._client
        client.call_tool.side_effect = [RuntimeError("Session not found"), tool_result("ok")]

        async def fake_reconnect():
            session._client = client

        with patch.object(session, "reconnect", side_effect=fake_reconnect) as reconnect:
            assert await session.call_tool("search_markets", {}) == "ok"
        reconnect.assert_awaited_once()
        assert client.call_tool.await_count == 2

    @pytest.mark.asyncio
    async def test_call_tool_gives_up_after_second_expiry(self):
        session = connected_session()
        client = session._client
        client.call_tool.side_effect = RuntimeError("Session not found")

        async def fake_reconnect():
            session._client = client

        with patch.object(session, "reconnect", side_effect=fake_reconnect):
            with pytest.raises(RuntimeError, match="Session not found"):
                await session.call_tool("search_markets", {})
        assert client.call_tool.await_count == 2

    @pytest.mark.asyncio
    async def test_other_errors_are_not_retried(self):
        session = connected_session()
        session._client.call_tool.side_effect = ValueError("bad arguments")
        with pytest.raises(ValueError):
            await session.call_tool("search_markets", {})
        assert session._client.call_tool.await_count == 1

    @pytest.mark.asyncio
    async def test_error_result_raises(self):
        session = connected_session()
        session._client.call_tool.return_value = tool_result("Market not found", is_error=True)
        with pytest.raises(RuntimeError, match="Market not found"):
            await session.call_tool("get_market", {"slug": "nope"})

    @pytest.mark.asyncio
    async def test_call_before_initialize(self):
        session = UserToolSession("alice", "https://tools.example/mcp")
        with pytest.raises(RuntimeError, match="not initialized"):
            await session.call_tool("search_markets", {})

    @pytest.mark.asyncio
    async def test_ensure_connected_reports_failure(self):
        session = UserToolSession("alice", "https://tools.example/mcp")
        with patch.object(session, "initialize", AsyncMock(side_effect=OSError("refused"))):
            assert await session.ensure_connected() is False
        assert not session.is_connected

    @pytest.mark.asyncio
    async def test_ensure_connected_initializes_once(self):
        session = UserToolSession("alice", "https://tools.example/mcp")

        async def fake_initialize():
            await asyncio.sleep(0)
            session.is_connected = True

        with patch.object(session, "initialize", AsyncMock(side_effect=fake_initialize)) as initialize:
            results = await asyncio.gather(session.ensure_connected(), session.ensure_connected())
        assert results == [True, True]
        initialize.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_disconnect_clears_state(self):
        session = connected_session()
        session._tools = [{"name": "search_markets"}]
        await session.disconnect()
        assert not session.is_connected
        assert session.get_tools() == []


class StreamableHttpStub:
    """Records transport opens and closes made through the MCP client helpers."""

    def __init__(self, list_error=None) -> None:
        self.opened = []
        self.closed = 0
        self.list_error = list_error
        stub = self

        class StubClientSession:
            def __init__(self, read_stream, write_stream):
                self.streams = (read_stream, write_stream)

            async def __aenter__(self):
                return self

            async def __aexit__(self, *exc):
                return False

            async def initialize(self):
                return None

            async def list_tools(self):
                if stub.list_error is not None:
                    raise stub.list_error
                tool = SimpleNamespace(
                    name="search_markets",
                    description=None,
                    inputSchema={"type": "object", "properties": {"query": {"type": "string"}}},
                )
                return SimpleNamespace(tools=[tool])

        self.client_session = StubClientSession

    @asynccontextmanager
    async def transport(self, url):
        self.opened.append(url)
        try:
            yield "read", "write", lambda: "mcp-session"
        finally:
            self.closed += 1

    def patches(self):
        return (
            patch("services.market.tool_session.streamablehttp_client", self.transport),
            patch("services.market.tool_session.ClientSession", self.client_session),
        )


class TestInitialize:
    @pytest.mark.asyncio
    async def test_connects_and_caches_tools(self):
        stub = StreamableHttpStub()
        session = UserToolSession("alice", "https://tools.example/mcp", api_key="secret")
        transport_patch, client_patch = stub.patches()
        with transport_patch, client_patch:
            await session.initialize()
            assert session.is_connected
            assert session.get_tools() == [
                {
                    "name": "search_markets",
                    "description": "",
                    "input_schema": {"type": "object", "properties": {"query": {"type": "string"}}},
                }
            ]
            assert "api_key=secret" in stub.opened[0]

            await session.disconnect()
        assert stub.closed == 1
        assert not session.is_connected

    @pytest.mark.asyncio
    async def test_failed_listing_releases_transport(self):
        stub = StreamableHttpStub(list_error=OSError("reset by peer"))
        session = UserToolSession("alice", "https://tools.example/mcp")
        transport_patch, client_patch = stub.patches()
        with transport_patch, client_patch:
            with pytest.raises(OSError):
                await session.initialize()
        assert stub.closed == 1
        assert not session.is_connected
