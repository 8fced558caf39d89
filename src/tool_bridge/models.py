# models.py
# Data contracts for the tool bridge: content items, tool descriptors,
# per-round step records and the loop result.
# No business logic lives here: pure schema and validation.

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


# ---------------------------------------------------------------------------
# Tool result content
# ---------------------------------------------------------------------------


class TextContent(BaseModel):
    """A unit of plain text returned by a tool."""

    model_config = ConfigDict(frozen=True)

    type: Literal["text"] = "text"
    text: str


class ImageContent(BaseModel):
    """An embedded image. `data` is base64, optionally wrapped in a data URI."""

    model_config = ConfigDict(frozen=True)

    type: Literal["image"] = "image"
    data: str
    mime_type: str = Field(default="image/png")


class OtherContent(BaseModel):
    """Any provider-defined content kind, carried through untouched."""

    model_config = ConfigDict(frozen=True)

    type: str
    payload: dict[str, Any] = Field(default_factory=dict)


ContentItem = TextContent | ImageContent | OtherContent


class ToolResult(BaseModel):
    """Ordered content returned by one tool call."""

    content: list[ContentItem] = Field(default_factory=list)
    is_error: bool = False

    @classmethod
    def error(cls, message: str) -> "ToolResult":
        return cls(content=[TextContent(text=message)], is_error=True)


# ---------------------------------------------------------------------------
# Discovery
# ---------------------------------------------------------------------------


class ToolDescriptor(BaseModel):
    """A tool as reported by the remote provider. Never mutated."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., description="Unique within a session.")
    description: str = ""
    input_schema: dict[str, Any] | None = None


# ---------------------------------------------------------------------------
# Execution loop
# ---------------------------------------------------------------------------


class ToolCallRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    tool_name: str
    arguments: Any = None


class ToolResultRecord(BaseModel):
    model_config = ConfigDict(frozen=True)

    tool_name: str
    content: list[ContentItem] = Field(default_factory=list)
    is_error: bool = False


class Usage(BaseModel):
    """Token counters, summed across rounds."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    def __add__(self, other: "Usage") -> "Usage":
        return Usage(
            prompt_tokens=self.prompt_tokens + other.prompt_tokens,
            completion_tokens=self.completion_tokens + other.completion_tokens,
            total_tokens=self.total_tokens + other.total_tokens,
        )


class StepRecord(BaseModel):
    """Immutable log entry produced after each round of the loop."""

    model_config = ConfigDict(frozen=True)

    index: int = Field(..., description="1-based round number.")
    tool_calls: list[ToolCallRecord] = Field(default_factory=list)
    tool_results: list[ToolResultRecord] = Field(default_factory=list)
    text: str | None = None
    finish_reason: str | None = Field(default=None, description="Model finish reason for this round.")
    usage: Usage = Field(default_factory=Usage)


class ExecutionResult(BaseModel):
    """Final text, the ordered rounds, terminal finish reason and usage."""

    text: str = ""
    steps: list[StepRecord] = Field(default_factory=list)
    finish_reason: str
    usage: Usage = Field(default_factory=Usage)
