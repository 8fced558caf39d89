# session.py
# Owns the single connection to the remote MCP tool provider.
#
# The connection lives inside an AsyncExitStack; close() unwinds it exactly
# once. Use `async with Session(url) as session:` so teardown runs on every
# exit path, including cancellation.

import asyncio
import logging
from contextlib import AsyncExitStack
from typing import Any

from mcp import ClientSession
from mcp.client.streamable_http import streamablehttp_client

from tool_bridge.models import ToolDescriptor
from tool_bridge.normalizer import ContentNormalizer
from tool_bridge.proxy import ToolProxy

logger = logging.getLogger(__name__)

DEFAULT_INIT_TIMEOUT = 30.0


class ConnectionFailed(Exception):
    """Raised when the provider cannot be reached or the handshake fails. Always fatal."""


class SessionClosed(Exception):
    """Raised when the session is used before connect() or after close()."""


class Session:
    """
    A live connection to one tool provider plus the proxies derived from it.

    Example:
        async with Session("http://localhost:3000/mcp") as session:
            tools = await session.list_tools()
    """

    def __init__(
        self,
        url: str,
        normalizer: ContentNormalizer | None = None,
        capture_tools: frozenset[str] | set[str] = frozenset(),
        init_timeout: float = DEFAULT_INIT_TIMEOUT,
    ) -> None:
        self.url = url
        self._init_timeout = init_timeout
        self._normalizer = normalizer
        self._capture_tools = frozenset(capture_tools)
        self._stack: AsyncExitStack | None = None
        self._client: ClientSession | None = None

    @classmethod
    async def connect(cls, url: str, **kwargs: Any) -> "Session":
        session = cls(url, **kwargs)
        await session.open()
        return session

    @property
    def connected(self) -> bool:
        return self._client is not None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def open(self) -> None:
        if self._client is not None:
            return

        logger.info("Connecting to %s", self.url)
        stack = AsyncExitStack()
        try:
            read_stream, write_stream, _ = await stack.enter_async_context(
                streamablehttp_client(self.url)
            )
            client = await stack.enter_async_context(ClientSession(read_stream, write_stream))
            await asyncio.wait_for(client.initialize(), timeout=self._init_timeout)
        except asyncio.CancelledError:
            await stack.aclose()
            raise
        except Exception as exc:
            await stack.aclose()
            raise ConnectionFailed(f"Failed to connect to MCP server at {self.url}: {exc}") from exc

        self._stack = stack
        self._client = client

    async def close(self) -> None:
        """Tear down the connection. A no-op when never opened or already closed."""
        stack, self._stack, self._client = self._stack, None, None
        if stack is None:
            return
        try:
            await stack.aclose()
        except Exception as exc:
            logger.warning("Error while closing session to %s: %s", self.url, exc)
        logger.info("Closed session to %s", self.url)

    async def __aenter__(self) -> "Session":
        await self.open()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Discovery and dispatch
    # ------------------------------------------------------------------

    def _require(self) -> ClientSession:
        if self._client is None:
            raise SessionClosed(f"Session to {self.url} is not connected.")
        return self._client

    async def list_tools(self) -> list[ToolProxy]:
        """Run discovery against the provider. Never cached."""
        listing = await self._require().list_tools()

        proxies: list[ToolProxy] = []
        seen: set[str] = set()
        for tool in listing.tools:
            if tool.name in seen:
                logger.warning("Duplicate tool %r reported by %s; keeping the first", tool.name, self.url)
                continue
            seen.add(tool.name)
            descriptor = ToolDescriptor(
                name=tool.name,
                description=tool.description or "",
                input_schema=tool.inputSchema,
            )
            proxies.append(
                ToolProxy(
                    descriptor,
                    self,
                    normalizer=self._normalizer,
                    summarize_images=tool.name in self._capture_tools,
                )
            )

        logger.info("Discovered %d tools from %s", len(proxies), self.url)
        return proxies

    async def call_tool(self, name: str, arguments: Any) -> Any:
        return await self._require().call_tool(name, arguments)
