import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
from mcp import types as mcp_types
from openai import OpenAIError

from tool_bridge.models import ImageContent, OtherContent, TextContent, ToolDescriptor
from tool_bridge.normalizer import (
    PLACEHOLDER_TEXT,
    SUMMARY_MARKER,
    ContentNormalizer,
    NormalizationError,
    decode_image,
)
from tool_bridge.proxy import EMPTY_PARAMETERS, Tool, ToolProxy, content_from_mcp

PNG_B64 = "iVBORw0KGgo="

QUERY_SCHEMA = {"type": "object", "properties": {"q": {"type": "string"}}, "required": ["q"]}


def _dispatcher(*content, is_error=False):
    dispatcher = MagicMock()
    dispatcher.call_tool = AsyncMock(
        return_value=mcp_types.CallToolResult(content=list(content), isError=is_error)
    )
    return dispatcher


def _proxy(dispatcher, schema=QUERY_SCHEMA, name="search", **kwargs):
    descriptor = ToolDescriptor(name=name, description="Search things.", input_schema=schema)
    return ToolProxy(descriptor, dispatcher, **kwargs)


def _vision_client(text="A login page with a username field."):
    client = MagicMock()
    client.chat.completions.create = AsyncMock(
        return_value=MagicMock(choices=[MagicMock(message=MagicMock(content=text))])
    )
    return client


# ---------------------------------------------------------------------------
# Validation and dispatch
# ---------------------------------------------------------------------------


def test_valid_arguments_are_dispatched():
    dispatcher = _dispatcher(mcp_types.TextContent(type="text", text="found 3"))
    proxy = _proxy(dispatcher)

    result = asyncio.run(proxy.call({"q": "x"}))

    dispatcher.call_tool.assert_awaited_once_with("search", {"q": "x"})
    assert not result.is_error
    assert result.content == [TextContent(text="found 3")]


def test_invalid_arguments_never_reach_the_provider():
    dispatcher = _dispatcher()
    proxy = _proxy(dispatcher)

    result = asyncio.run(proxy.call({}))

    dispatcher.call_tool.assert_not_awaited()
    assert result.is_error
    assert "Invalid arguments for tool 'search'" in result.content[0].text


def test_extra_keys_are_stripped_before_dispatch():
    dispatcher = _dispatcher()
    proxy = _proxy(dispatcher)

    asyncio.run(proxy.call({"q": "x", "page": 2}))

    dispatcher.call_tool.assert_awaited_once_with("search", {"q": "x"})


def test_dispatch_failure_becomes_error_result():
    dispatcher = MagicMock()
    dispatcher.call_tool = AsyncMock(side_effect=RuntimeError("connection reset"))
    proxy = _proxy(dispatcher)

    result = asyncio.run(proxy.call({"q": "x"}))

    assert result.is_error
    assert "connection reset" in result.content[0].text


def test_provider_error_flag_is_carried():
    dispatcher = _dispatcher(mcp_types.TextContent(type="text", text="no such page"), is_error=True)
    result = asyncio.run(_proxy(dispatcher).call({"q": "x"}))

    assert result.is_error
    assert result.content[0].text == "no such page"


def test_snake_case_error_flag_is_carried():
    dispatcher = MagicMock()
    dispatcher.call_tool = AsyncMock(
        return_value=SimpleNamespace(content=[mcp_types.TextContent(type="text", text="denied")], is_error=True)
    )

    result = asyncio.run(_proxy(dispatcher).call({"q": "x"}))

    assert result.is_error


def test_tool_base_cannot_be_instantiated():
    with pytest.raises(TypeError):
        Tool()


def test_images_pass_through_for_ordinary_tools():
    dispatcher = _dispatcher(mcp_types.ImageContent(type="image", data=PNG_B64, mimeType="image/png"))
    normalizer = MagicMock()
    normalizer.normalize = AsyncMock()

    result = asyncio.run(_proxy(dispatcher, normalizer=normalizer).call({"q": "x"}))

    normalizer.normalize.assert_not_awaited()
    assert result.content == [ImageContent(data=PNG_B64, mime_type="image/png")]


def test_parameters_for_missing_or_untyped_schema():
    assert _proxy(_dispatcher(), schema=None).parameters == EMPTY_PARAMETERS

    untyped = _proxy(_dispatcher(), schema={"properties": {"q": {"type": "string"}}})
    assert untyped.parameters["type"] == "object"
    assert untyped.parameters["properties"] == {"q": {"type": "string"}}


def test_to_openai_declares_a_function():
    declaration = _proxy(_dispatcher()).to_openai()

    assert declaration["type"] == "function"
    assert declaration["function"]["name"] == "search"
    assert declaration["function"]["parameters"] == QUERY_SCHEMA


# ---------------------------------------------------------------------------
# Screen-capture summarization
# ---------------------------------------------------------------------------


def test_capture_image_replaced_in_place_and_text_untouched():
    dispatcher = _dispatcher(
        mcp_types.ImageContent(type="image", data=PNG_B64, mimeType="image/png"),
        mcp_types.TextContent(type="text", text="Took the screenshot"),
    )
    client = _vision_client()
    proxy = _proxy(
        dispatcher,
        schema={"type": "object"},
        name="browser_take_screenshot",
        normalizer=ContentNormalizer(client, "gpt-4o-mini"),
        summarize_images=True,
    )

    result = asyncio.run(proxy.call({}))

    assert [item.type for item in result.content] == ["text", "text"]
    assert result.content[0].text.startswith(SUMMARY_MARKER)
    assert "login page" in result.content[0].text
    assert result.content[1] == TextContent(text="Took the screenshot")
    client.chat.completions.create.assert_awaited_once()


def test_every_capture_image_is_summarized_in_order():
    dispatcher = _dispatcher(
        mcp_types.TextContent(type="text", text="before"),
        mcp_types.ImageContent(type="image", data=PNG_B64, mimeType="image/png"),
        mcp_types.ImageContent(type="image", data=PNG_B64, mimeType="image/png"),
        mcp_types.TextContent(type="text", text="after"),
    )
    normalizer = MagicMock()
    normalizer.normalize = AsyncMock(
        side_effect=[TextContent(text=f"{SUMMARY_MARKER} one"), TextContent(text=f"{SUMMARY_MARKER} two")]
    )

    result = asyncio.run(
        _proxy(dispatcher, schema={}, normalizer=normalizer, summarize_images=True).call({})
    )

    assert [item.text for item in result.content] == [
        "before",
        f"{SUMMARY_MARKER} one",
        f"{SUMMARY_MARKER} two",
        "after",
    ]


def test_failed_summary_becomes_placeholder():
    dispatcher = _dispatcher(mcp_types.ImageContent(type="image", data=PNG_B64, mimeType="image/png"))
    normalizer = MagicMock()
    normalizer.normalize = AsyncMock(side_effect=NormalizationError("vision down"))

    result = asyncio.run(
        _proxy(dispatcher, schema={}, normalizer=normalizer, summarize_images=True).call({})
    )

    assert not result.is_error
    assert result.content == [TextContent(text=PLACEHOLDER_TEXT)]


@pytest.mark.parametrize(
    "vision_reply",
    [
        {"return_value": MagicMock(choices=[MagicMock(message=None)])},
        {"return_value": MagicMock(choices=[])},
        {"side_effect": RuntimeError("socket closed")},
    ],
)
def test_unusable_vision_reply_degrades_only_the_image(vision_reply):
    dispatcher = _dispatcher(
        mcp_types.ImageContent(type="image", data=PNG_B64, mimeType="image/png"),
        mcp_types.TextContent(type="text", text="Took the screenshot"),
    )
    client = MagicMock()
    client.chat.completions.create = AsyncMock(**vision_reply)
    proxy = _proxy(
        dispatcher,
        schema={},
        name="browser_take_screenshot",
        normalizer=ContentNormalizer(client, "gpt-4o-mini"),
        summarize_images=True,
    )

    result = asyncio.run(proxy.call({}))

    assert not result.is_error
    assert result.content == [TextContent(text=PLACEHOLDER_TEXT), TextContent(text="Took the screenshot")]


def test_capture_without_normalizer_becomes_placeholder():
    dispatcher = _dispatcher(mcp_types.ImageContent(type="image", data=PNG_B64, mimeType="image/png"))

    result = asyncio.run(_proxy(dispatcher, schema={}, summarize_images=True).call({}))

    assert result.content == [TextContent(text=PLACEHOLDER_TEXT)]


# ---------------------------------------------------------------------------
# Content conversion
# ---------------------------------------------------------------------------


def test_content_from_mcp_models():
    assert content_from_mcp(mcp_types.TextContent(type="text", text="hi")) == TextContent(text="hi")
    assert content_from_mcp(
        mcp_types.ImageContent(type="image", data=PNG_B64, mimeType="image/jpeg")
    ) == ImageContent(data=PNG_B64, mime_type="image/jpeg")


def test_content_from_mcp_unknown_kind_is_carried_through():
    item = content_from_mcp({"type": "resource", "resource": {"uri": "file:///a.txt", "text": "a"}})

    assert isinstance(item, OtherContent)
    assert item.type == "resource"
    assert item.payload["resource"]["uri"] == "file:///a.txt"


# ---------------------------------------------------------------------------
# ContentNormalizer
# ---------------------------------------------------------------------------


def test_decode_image_strips_data_uri():
    raw, mime = decode_image(f"data:image/jpeg;base64,{PNG_B64}")

    assert raw.startswith(b"\x89PNG")
    assert mime == "image/jpeg"


@pytest.mark.parametrize("payload", ["", "data:image/png;base64,", "not base64!!"])
def test_decode_image_rejects_bad_payloads(payload):
    with pytest.raises(NormalizationError):
        decode_image(payload)


def test_normalize_sends_one_vision_request():
    client = _vision_client("  A search results page.  ")
    normalizer = ContentNormalizer(client, "gpt-4o-mini")

    text = asyncio.run(normalizer.normalize(ImageContent(data=PNG_B64)))

    assert text == TextContent(text=f"{SUMMARY_MARKER} A search results page.")
    kwargs = client.chat.completions.create.await_args.kwargs
    assert kwargs["model"] == "gpt-4o-mini"
    parts = kwargs["messages"][0]["content"]
    assert parts[1]["image_url"]["url"] == f"data:image/png;base64,{PNG_B64}"


def test_normalize_wraps_provider_errors():
    client = MagicMock()
    client.chat.completions.create = AsyncMock(side_effect=OpenAIError("boom"))

    with pytest.raises(NormalizationError, match="boom"):
        asyncio.run(ContentNormalizer(client, "gpt-4o-mini").normalize(ImageContent(data=PNG_B64)))


def test_normalize_rejects_empty_description():
    with pytest.raises(NormalizationError):
        asyncio.run(ContentNormalizer(_vision_client(""), "m").normalize(ImageContent(data=PNG_B64)))
