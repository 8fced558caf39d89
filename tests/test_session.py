import asyncio
from contextlib import asynccontextmanager
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from mcp import types as mcp_types

from tool_bridge.session import ConnectionFailed, Session, SessionClosed

URL = "http://localhost:3000/mcp"


class FakeTransport:
    """Stands in for the streamable HTTP transport and records its lifecycle."""

    def __init__(self, fail_on_enter=None):
        self.entered = False
        self.exited = False
        self.fail_on_enter = fail_on_enter

    @asynccontextmanager
    async def __call__(self, url):
        if self.fail_on_enter is not None:
            raise self.fail_on_enter
        self.entered = True
        try:
            yield MagicMock(name="read"), MagicMock(name="write"), lambda: "session-id"
        finally:
            self.exited = True


def _client(tools=(), initialize=None):
    client = MagicMock()
    client.initialize = initialize or AsyncMock()
    client.list_tools = AsyncMock(return_value=mcp_types.ListToolsResult(tools=list(tools)))
    client.call_tool = AsyncMock(return_value=mcp_types.CallToolResult(content=[]))
    return client


def _client_class(client):
    instance = MagicMock()
    instance.__aenter__ = AsyncMock(return_value=client)
    instance.__aexit__ = AsyncMock(return_value=False)
    return MagicMock(return_value=instance)


def _tool(name, schema=None):
    return mcp_types.Tool(name=name, description=f"{name} tool", inputSchema=schema or {"type": "object"})


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------

def test_open_initializes_and_close_tears_down():
    transport, client = FakeTransport(), _client()

    async def scenario():
        with patch("tool_bridge.session.streamablehttp_client", transport), patch(
            "tool_bridge.session.ClientSession", _client_class(client)
        ):
            session = await Session.connect(URL)
            assert session.connected
            await session.close()
            await session.close()
            return session

    session = asyncio.run(scenario())

    client.initialize.assert_awaited_once()
    assert transport.entered and transport.exited
    assert not session.connected


def test_context_manager_tears_down_on_error():
    transport = FakeTransport()

    async def scenario():
        with patch("tool_bridge.session.streamablehttp_client", transport), patch(
            "tool_bridge.session.ClientSession", _client_class(_client())
        ):
            async with Session(URL):
                raise RuntimeError("boom")

    with pytest.raises(RuntimeError, match="boom"):
        asyncio.run(scenario())
    assert transport.exited


def test_unreachable_provider_raises_connection_failed():
    transport = FakeTransport(fail_on_enter=OSError("connection refused"))

    async def scenario():
        with patch("tool_bridge.session.streamablehttp_client", transport):
            await Session.connect(URL)

    with pytest.raises(ConnectionFailed, match="connection refused"):
        asyncio.run(scenario())


def test_failed_handshake_raises_and_releases_transport():
    transport = FakeTransport()
    client = _client(initialize=AsyncMock(side_effect=RuntimeError("bad handshake")))

    async def scenario():
        with patch("tool_bridge.session.streamablehttp_client", transport), patch(
            "tool_bridge.session.ClientSession", _client_class(client)
        ):
            await Session.connect(URL)

    with pytest.raises(ConnectionFailed, match="bad handshake"):
        asyncio.run(scenario())
    assert transport.exited


def test_handshake_timeout_raises_connection_failed():
    async def slow_initialize():
        await asyncio.sleep(10)

    transport = FakeTransport()
    client = _client(initialize=AsyncMock(side_effect=slow_initialize))

    async def scenario():
        with patch("tool_bridge.session.streamablehttp_client", transport), patch(
            "tool_bridge.session.ClientSession", _client_class(client)
        ):
            await Session.connect(URL, init_timeout=0.01)

    with pytest.raises(ConnectionFailed):
        asyncio.run(scenario())
    assert transport.exited


def test_use_before_open_raises_session_closed():
    with pytest.raises(SessionClosed):
        asyncio.run(Session(URL).list_tools())
    with pytest.raises(SessionClosed):
        asyncio.run(Session(URL).call_tool("search", {}))


# ---------------------------------------------------------------------------
# Discovery and dispatch
# ---------------------------------------------------------------------------

def test_list_tools_builds_proxies_and_flags_capture_tools():
    client = _client(
        tools=[
            _tool("browser_navigate", {"type": "object", "properties": {"url": {"type": "string"}}}),
            _tool("browser_take_screenshot"),
        ]
    )

    async def scenario():
        with patch("tool_bridge.session.streamablehttp_client", FakeTransport()), patch(
            "tool_bridge.session.ClientSession", _client_class(client)
        ):
            async with Session(URL, capture_tools={"browser_take_screenshot"}) as session:
                return await session.list_tools()

    proxies = asyncio.run(scenario())

    assert [p.name for p in proxies] == ["browser_navigate", "browser_take_screenshot"]
    assert [p.summarizes_images for p in proxies] == [False, True]
    assert proxies[0].signature.optional == {"url"}


def test_list_tools_is_not_cached_and_skips_duplicates():
    client = _client(tools=[_tool("search"), _tool("search")])

    async def scenario():
        with patch("tool_bridge.session.streamablehttp_client", FakeTransport()), patch(
            "tool_bridge.session.ClientSession", _client_class(client)
        ):
            async with Session(URL) as session:
                first = await session.list_tools()
                second = await session.list_tools()
                return first, second

    first, second = asyncio.run(scenario())

    assert [p.name for p in first] == ["search"]
    assert len(second) == 1
    assert client.list_tools.await_count == 2


def test_proxy_call_goes_through_session():
    client = _client(tools=[_tool("search", {"type": "object", "properties": {"q": {"type": "string"}}})])
    client.call_tool = AsyncMock(
        return_value=mcp_types.CallToolResult(content=[mcp_types.TextContent(type="text", text="hit")])
    )

    async def scenario():
        with patch("tool_bridge.session.streamablehttp_client", FakeTransport()), patch(
            "tool_bridge.session.ClientSession", _client_class(client)
        ):
            async with Session(URL) as session:
                (proxy,) = await session.list_tools()
                return await proxy.call({"q": "x"})

    result = asyncio.run(scenario())

    client.call_tool.assert_awaited_once_with("search", {"q": "x"})
    assert result.content[0].text == "hit"
