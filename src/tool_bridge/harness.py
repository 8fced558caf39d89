# harness.py
# Step-bounded agent execution loop.
#
# The executor is the kernel. The model only proposes tool calls; this
# class owns dispatch, message history, the step budget and cancellation.
#
# Control flow, per round:
#   cancellation check → model call (tools + system + history)
#   → dispatch each requested tool in order → append tool messages
#   → yield StepRecord → stop on completion or budget exhaustion
#
# All terminal output is delegated to display.py. No formatting here.

import enum
import json
import logging
from collections.abc import AsyncIterator, Callable
from typing import Any

from openai import AsyncOpenAI, OpenAIError

from tool_bridge.models import (
    ExecutionResult,
    ImageContent,
    StepRecord,
    TextContent,
    ToolCallRecord,
    ToolResult,
    ToolResultRecord,
    Usage,
)
from tool_bridge.proxy import Tool

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class ExecutorError(Exception):
    """Raised when an executor is misconfigured or reused."""


class ModelInvocationError(Exception):
    """Raised when the model call itself fails. Fatal to the current run only."""


class ExecutionCancelled(Exception):
    """Raised at a suspension point once the cancellation token is set."""


# ---------------------------------------------------------------------------
# State
# ---------------------------------------------------------------------------

FINISH_MAX_STEPS = "max_steps"


class ExecutorState(str, enum.Enum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    EXHAUSTED = "exhausted"
    FAILED = "failed"
    CANCELLED = "cancelled"


class CancellationToken:
    """Set once by a signal handler; checked before every model call and tool dispatch."""

    def __init__(self) -> None:
        self._reason: str | None = None

    @property
    def cancelled(self) -> bool:
        return self._reason is not None

    @property
    def reason(self) -> str | None:
        return self._reason

    def cancel(self, reason: str = "cancelled") -> None:
        if self._reason is None:
            self._reason = reason

    def raise_if_cancelled(self) -> None:
        if self._reason is not None:
            raise ExecutionCancelled(self._reason)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def render_for_model(result: ToolResult) -> str:
    """Flatten tool content into the text of a `tool` message."""
    parts: list[str] = []
    for item in result.content:
        if isinstance(item, TextContent):
            parts.append(item.text)
        elif isinstance(item, ImageContent):
            # Chat tool messages carry text only.
            parts.append(f"[image: {item.mime_type}, ~{len(item.data) * 3 // 4} bytes]")
        else:
            parts.append(json.dumps({"type": item.type, **item.payload}))

    text = "\n".join(parts) or "(no output)"
    return f"ERROR: {text}" if result.is_error else text


def _parse_arguments(raw: str | None) -> tuple[Any, str | None]:
    """Return (arguments, error). Empty argument strings mean no arguments."""
    if not raw or not raw.strip():
        return {}, None
    try:
        return json.loads(raw), None
    except json.JSONDecodeError as exc:
        return None, f"Arguments are not valid JSON: {exc}"


def _usage(response: Any) -> Usage:
    usage = getattr(response, "usage", None)
    if usage is None:
        return Usage()
    return Usage(
        prompt_tokens=getattr(usage, "prompt_tokens", 0) or 0,
        completion_tokens=getattr(usage, "completion_tokens", 0) or 0,
        total_tokens=getattr(usage, "total_tokens", 0) or 0,
    )


def _assistant_message(content: str | None, tool_calls: list[Any]) -> dict[str, Any]:
    message: dict[str, Any] = {"role": "assistant", "content": content}
    if tool_calls:
        message["tool_calls"] = [
            {
                "id": call.id,
                "type": "function",
                "function": {"name": call.function.name, "arguments": call.function.arguments},
            }
            for call in tool_calls
        ]
    return message


# ---------------------------------------------------------------------------
# StepExecutor
# ---------------------------------------------------------------------------


class StepExecutor:
    """
    Drives one prompt through a bounded model/tool-call loop.

    One instance per prompt; `steps()` may be consumed exactly once.

    Example:
        executor = StepExecutor(AsyncOpenAI(), "gpt-5", tools, max_steps=10)
        result = await executor.run("Find the latest release notes.", on_step=display.step)
    """

    def __init__(
        self,
        client: AsyncOpenAI,
        model: str,
        tools: list[Tool],
        max_steps: int = 20,
        system_prompt: str = "",
        cancel_token: CancellationToken | None = None,
    ) -> None:
        if max_steps < 1:
            raise ExecutorError(f"max_steps must be at least 1, got {max_steps}.")

        self._client = client
        self._model = model
        self._tools: dict[str, Tool] = {tool.name: tool for tool in tools}
        self._max_steps = max_steps
        self._system_prompt = system_prompt
        self._cancel = cancel_token or CancellationToken()

        self._state = ExecutorState.IDLE
        self._messages: list[dict[str, Any]] = []
        self._records: list[StepRecord] = []
        self._finish_reason: str | None = None
        self._usage = Usage()

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def state(self) -> ExecutorState:
        return self._state

    @property
    def records(self) -> list[StepRecord]:
        """Rounds produced so far, in order. Still populated after a failure."""
        return list(self._records)

    @property
    def result(self) -> ExecutionResult | None:
        if self._state not in (ExecutorState.COMPLETED, ExecutorState.EXHAUSTED):
            return None
        # Final round only; earlier rounds are interim narration.
        text = self._records[-1].text if self._records else None
        return ExecutionResult(
            text=text or "",
            steps=list(self._records),
            finish_reason=self._finish_reason or "",
            usage=self._usage,
        )

    # ------------------------------------------------------------------
    # Rounds
    # ------------------------------------------------------------------

    async def _dispatch(self, name: str, arguments: Any, parse_error: str | None) -> ToolResult:
        if parse_error is not None:
            return ToolResult.error(parse_error)

        tool = self._tools.get(name)
        if tool is None:
            available = ", ".join(sorted(self._tools)) or "none"
            return ToolResult.error(f"Unknown tool '{name}'. Available tools: {available}.")

        try:
            return await tool.call(arguments)
        except Exception as exc:
            logger.exception("Tool %s raised", name)
            return ToolResult.error(f"Tool '{name}' failed: {exc}")

    async def _round(self, index: int, openai_tools: list[dict[str, Any]]) -> StepRecord:
        self._cancel.raise_if_cancelled()

        request: dict[str, Any] = {"model": self._model, "messages": self._messages}
        if openai_tools:
            request["tools"] = openai_tools

        logger.debug("Round %d: calling %s with %d messages", index, self._model, len(self._messages))
        try:
            response = await self._client.chat.completions.create(**request)
        except OpenAIError as exc:
            raise ModelInvocationError(f"Model call failed: {exc}") from exc
        if not response.choices:
            raise ModelInvocationError("Model returned no choices.")

        choice = response.choices[0]
        message = choice.message
        usage = _usage(response)
        self._usage = self._usage + usage

        tool_calls = list(message.tool_calls or [])
        self._messages.append(_assistant_message(message.content, tool_calls))

        calls: list[ToolCallRecord] = []
        results: list[ToolResultRecord] = []
        for call in tool_calls:
            self._cancel.raise_if_cancelled()

            name = call.function.name
            arguments, parse_error = _parse_arguments(call.function.arguments)
            calls.append(ToolCallRecord(tool_name=name, arguments=arguments))

            result = await self._dispatch(name, arguments, parse_error)
            results.append(
                ToolResultRecord(tool_name=name, content=result.content, is_error=result.is_error)
            )
            self._messages.append(
                {"role": "tool", "tool_call_id": call.id, "content": render_for_model(result)}
            )

        return StepRecord(
            index=index,
            tool_calls=calls,
            tool_results=results,
            text=message.content or None,
            finish_reason=choice.finish_reason,
            usage=usage,
        )

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def steps(self, prompt: str) -> AsyncIterator[StepRecord]:
        """
        Ordered stream of rounds for `prompt`.

        Finite (at most max_steps records), lazy, and not restartable.
        Raises ModelInvocationError or ExecutionCancelled mid-stream; records
        already yielded stay valid.
        """
        if self._state is not ExecutorState.IDLE:
            raise ExecutorError("A StepExecutor runs exactly one prompt.")

        self._state = ExecutorState.RUNNING
        if self._system_prompt:
            self._messages.append({"role": "system", "content": self._system_prompt})
        self._messages.append({"role": "user", "content": prompt})
        openai_tools = [tool.to_openai() for tool in self._tools.values()]

        for index in range(1, self._max_steps + 1):
            try:
                record = await self._round(index, openai_tools)
            except ExecutionCancelled:
                self._state = ExecutorState.CANCELLED
                raise
            except ModelInvocationError:
                self._state = ExecutorState.FAILED
                raise

            self._records.append(record)
            if not record.tool_calls:
                self._state = ExecutorState.COMPLETED
                self._finish_reason = record.finish_reason or "stop"
            elif index == self._max_steps:
                self._state = ExecutorState.EXHAUSTED
                self._finish_reason = FINISH_MAX_STEPS

            yield record
            if self._state is not ExecutorState.RUNNING:
                return

    async def run(
        self,
        prompt: str,
        on_step: Callable[[StepRecord], None] | None = None,
    ) -> ExecutionResult:
        """Consume the step stream, calling `on_step` once per round before the next starts."""
        async for record in self.steps(prompt):
            if on_step is not None:
                on_step(record)

        result = self.result
        if result is None:
            raise ExecutorError(f"Execution ended in state {self._state.value}.")
        return result
