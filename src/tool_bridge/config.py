# config.py
# Runtime configuration: .env file, then environment, then CLI overrides.

import os
from typing import Any

from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError, field_validator

DEFAULT_SERVER_URL = "http://localhost:3000/mcp"
DEFAULT_MODEL = "gpt-5"
DEFAULT_MAX_STEPS = 20
DEFAULT_CAPTURE_TOOLS = frozenset({"browser_take_screenshot"})

MISSING_KEY_MESSAGE = (
    "OpenAI API key required. Set OPENAI_API_KEY environment variable or use --api-key option."
)

_ENV_VARS: dict[str, str] = {
    "api_key": "OPENAI_API_KEY",
    "base_url": "OPENAI_BASE_URL",
    "server_url": "MCP_SERVER_URL",
    "model": "AGENT_MODEL",
    "vision_model": "AGENT_VISION_MODEL",
    "max_steps": "AGENT_MAX_STEPS",
    "system_prompt": "AGENT_SYSTEM_PROMPT",
    "capture_tools": "AGENT_CAPTURE_TOOLS",
    "database_url": "DATABASE_URL",
    "log_level": "AGENT_LOG_LEVEL",
}


class ConfigError(Exception):
    """Raised when configuration is missing or invalid. Always fatal."""


class AgentConfig(BaseModel):
    api_key: str = Field(..., min_length=1)
    base_url: str | None = None
    server_url: str = DEFAULT_SERVER_URL
    model: str = DEFAULT_MODEL
    vision_model: str | None = Field(default=None, description="Model for screenshot summaries.")
    max_steps: int = Field(default=DEFAULT_MAX_STEPS, ge=1)
    system_prompt: str = ""
    capture_tools: frozenset[str] = DEFAULT_CAPTURE_TOOLS
    database_url: str | None = None
    log_level: str = "WARNING"

    @field_validator("capture_tools", mode="before")
    @classmethod
    def _split_names(cls, value: Any) -> Any:
        if isinstance(value, str):
            return frozenset(name.strip() for name in value.split(",") if name.strip())
        return value

    @field_validator("log_level")
    @classmethod
    def _known_level(cls, value: str) -> str:
        level = value.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"unknown log level {value!r}")
        return level

    @property
    def summary_model(self) -> str:
        return self.vision_model or self.model


def load_config(**overrides: Any) -> AgentConfig:
    """
    Build the config. Overrides set to None are ignored, so CLI options
    that were not given fall through to the environment.
    """
    load_dotenv()

    values: dict[str, Any] = {}
    for field, var in _ENV_VARS.items():
        raw = os.getenv(var)
        if raw:
            values[field] = raw
    values.update({k: v for k, v in overrides.items() if v is not None})

    if not values.get("api_key"):
        raise ConfigError(MISSING_KEY_MESSAGE)
    try:
        return AgentConfig.model_validate(values)
    except ValidationError as exc:
        raise ConfigError(f"Invalid configuration: {exc}") from exc
