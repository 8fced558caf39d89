# proxy.py
# Invocable wrappers around tools.
#
# Tool is the surface the execution loop sees: a name, a description, a
# JSON schema for the model, and an async call returning a ToolResult.
# ToolProxy is the remote flavour: validate -> dispatch -> post-process.
# Per-call failures are converted into error results here and never raised.

import abc
import logging
import re
from typing import Any, Protocol

from pydantic import ValidationError

from tool_bridge.models import (
    ContentItem,
    ImageContent,
    OtherContent,
    TextContent,
    ToolDescriptor,
    ToolResult,
)
from tool_bridge.normalizer import PLACEHOLDER_TEXT, ContentNormalizer, NormalizationError
from tool_bridge.schema import Signature, translate

logger = logging.getLogger(__name__)

EMPTY_PARAMETERS: dict[str, Any] = {"type": "object", "properties": {}}


class ToolDispatcher(Protocol):
    """Anything that can invoke a remote tool by name (normally a Session)."""

    async def call_tool(self, name: str, arguments: Any) -> Any: ...


# ---------------------------------------------------------------------------
# Content conversion
# ---------------------------------------------------------------------------


def content_from_mcp(item: Any) -> ContentItem:
    """Convert one MCP content block (model or dict) into a local ContentItem."""
    if hasattr(item, "model_dump"):
        data = item.model_dump(mode="json", by_alias=True, exclude_none=True)
    elif isinstance(item, dict):
        data = dict(item)
    else:
        return TextContent(text=str(item))

    kind = data.get("type")
    if kind == "text":
        return TextContent(text=data.get("text", ""))
    if kind == "image":
        return ImageContent(
            data=data.get("data", ""),
            mime_type=data.get("mimeType") or data.get("mime_type") or "image/png",
        )
    payload = {k: v for k, v in data.items() if k != "type"}
    return OtherContent(type=str(kind or "unknown"), payload=payload)


def _error_flag(raw: Any) -> bool:
    """Provider-side failure flag; `isError` in the MCP wire model, `is_error` elsewhere."""
    for attr in ("isError", "is_error"):
        value = getattr(raw, attr, None)
        if value is not None:
            return bool(value)
    return False


def _signature_name(tool_name: str) -> str:
    parts = [p for p in re.split(r"[\W_]+", tool_name) if p]
    return "".join(p[:1].upper() + p[1:] for p in parts) + "Arguments"


# ---------------------------------------------------------------------------
# Tool surface
# ---------------------------------------------------------------------------


class Tool(abc.ABC):
    """Base for anything the execution loop can offer to the model."""

    name: str = ""
    description: str = ""

    @property
    def parameters(self) -> dict[str, Any]:
        return EMPTY_PARAMETERS

    def to_openai(self) -> dict[str, Any]:
        """Function-calling declaration for the chat completions API."""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }

    @abc.abstractmethod
    async def call(self, arguments: Any) -> ToolResult:
        """Run the tool. Failures come back as error results, never as exceptions."""


class ToolProxy(Tool):
    """
    One remote tool, made safely invocable.

    The signature is translated once here and reused for every call.
    When `summarize_images` is set (screen-capture tools), every image item
    in the result is replaced in place by a text summary.
    """

    def __init__(
        self,
        descriptor: ToolDescriptor,
        dispatcher: ToolDispatcher,
        normalizer: ContentNormalizer | None = None,
        summarize_images: bool = False,
    ) -> None:
        self.descriptor = descriptor
        self.name = descriptor.name
        self.description = descriptor.description
        self.signature: Signature = translate(descriptor.input_schema, _signature_name(descriptor.name))
        self._dispatcher = dispatcher
        self._normalizer = normalizer
        self._summarize_images = summarize_images

    @property
    def parameters(self) -> dict[str, Any]:
        schema = self.descriptor.input_schema
        if not isinstance(schema, dict):
            return EMPTY_PARAMETERS
        if "type" not in schema:
            # The chat API insists on an object at the top level.
            return {**schema, "type": "object", "properties": schema.get("properties", {})}
        return schema

    @property
    def summarizes_images(self) -> bool:
        return self._summarize_images

    async def call(self, arguments: Any) -> ToolResult:
        try:
            validated = self.signature.validate(arguments)
        except ValidationError as exc:
            logger.info("Rejected arguments for %s: %s", self.name, exc)
            return ToolResult.error(f"Invalid arguments for tool '{self.name}': {exc}")

        try:
            raw = await self._dispatcher.call_tool(self.name, validated)
        except Exception as exc:
            logger.warning("Tool %s failed: %s", self.name, exc)
            return ToolResult.error(f"Tool '{self.name}' failed: {exc}")

        content = [content_from_mcp(item) for item in getattr(raw, "content", None) or []]
        if self._summarize_images:
            content = await self._summarize(content)
        return ToolResult(content=content, is_error=_error_flag(raw))

    async def _summarize(self, content: list[ContentItem]) -> list[ContentItem]:
        rewritten: list[ContentItem] = []
        for item in content:
            if not isinstance(item, ImageContent):
                rewritten.append(item)
                continue
            if self._normalizer is None:
                rewritten.append(TextContent(text=PLACEHOLDER_TEXT))
                continue
            try:
                rewritten.append(await self._normalizer.normalize(item))
            except NormalizationError as exc:
                logger.warning("Could not summarize capture from %s: %s", self.name, exc)
                rewritten.append(TextContent(text=PLACEHOLDER_TEXT))
        return rewritten
