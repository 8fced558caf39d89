import json
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest


def _chat_response(content=None, tool_calls=(), finish_reason=None, usage=(10, 5)):
    tool_calls = list(tool_calls)
    if finish_reason is None:
        finish_reason = "tool_calls" if tool_calls else "stop"
    message = SimpleNamespace(content=content, tool_calls=tool_calls or None)
    return SimpleNamespace(
        choices=[SimpleNamespace(message=message, finish_reason=finish_reason)],
        usage=SimpleNamespace(
            prompt_tokens=usage[0],
            completion_tokens=usage[1],
            total_tokens=usage[0] + usage[1],
        ),
    )


def _tool_call(name, arguments=None, call_id="call_1"):
    if not isinstance(arguments, str):
        arguments = json.dumps(arguments or {})
    return SimpleNamespace(
        id=call_id,
        type="function",
        function=SimpleNamespace(name=name, arguments=arguments),
    )


def _openai_client(*responses, side_effect=None):
    client = MagicMock()
    client.chat.completions.create = AsyncMock(side_effect=side_effect or list(responses))
    client.close = AsyncMock()
    return client


@pytest.fixture
def chat_response():
    return _chat_response


@pytest.fixture
def tool_call():
    return _tool_call


@pytest.fixture
def openai_client():
    return _openai_client
