# tools.py
# In-process tools backed by the output store.
#
# These sit next to the remote proxies in the tool set the executor sees.
# Each implementation takes validated params and returns a JSON-able dict;
# a duplicate save is an ordinary result, not an error.

import asyncio
import json
import logging
from collections.abc import Callable
from typing import Any

from pydantic import BaseModel, Field, ValidationError

from tool_bridge.models import TextContent, ToolResult
from tool_bridge.proxy import Tool
from tool_bridge.storage import DuplicateItemError, OutputItem, OutputStore

logger = logging.getLogger(__name__)


class LocalTool(Tool):
    """A tool implemented in this process, with a pydantic model for its parameters."""

    def __init__(
        self,
        name: str,
        description: str,
        params: type[BaseModel],
        handler: Callable[[BaseModel], dict[str, Any]],
    ) -> None:
        self.name = name
        self.description = description
        self._params = params
        self._handler = handler

    @property
    def parameters(self) -> dict[str, Any]:
        return self._params.model_json_schema()

    async def call(self, arguments: Any) -> ToolResult:
        try:
            params = self._params.model_validate(arguments or {})
        except ValidationError as exc:
            return ToolResult.error(f"Invalid arguments for tool '{self.name}': {exc}")

        try:
            # Blocking store I/O runs on a worker thread, off the event loop.
            payload = await asyncio.to_thread(self._handler, params)
        except Exception as exc:
            logger.warning("Local tool %s failed: %s", self.name, exc)
            return ToolResult.error(f"Tool '{self.name}' failed: {exc}")
        return ToolResult(content=[TextContent(text=json.dumps(payload, default=str))])


# ---------------------------------------------------------------------------
# Parameters
# ---------------------------------------------------------------------------


class SaveItemsParams(BaseModel):
    items: list[OutputItem] = Field(..., description="Array of items to save")


class RecentItemsParams(BaseModel):
    limit: int = Field(default=100, description="Maximum number of items to return (default: 100)")
    days: int = Field(default=7, description="Number of days to look back (default: 7)")


class CheckItemParams(BaseModel):
    url: str = Field(..., description="URL to check for existence")


# ---------------------------------------------------------------------------
# Implementations
# ---------------------------------------------------------------------------


def _tool_save_item(store: OutputStore, params: OutputItem) -> dict[str, Any]:
    try:
        saved = store.save(params)
    except DuplicateItemError as exc:
        return {
            "success": False,
            "message": "Item already exists in database (duplicate)",
            "error": str(exc),
            "item": exc.item.model_dump(mode="json"),
        }
    return {
        "success": True,
        "message": "Item saved successfully",
        "item": saved.model_dump(mode="json"),
    }


def _tool_save_items(store: OutputStore, params: SaveItemsParams) -> dict[str, Any]:
    summary = store.save_batch(params.items)
    return {
        "success": True,
        "message": (
            f"Batch save completed: {summary.saved} saved, "
            f"{summary.updated} updated, {summary.failed} failed"
        ),
        "summary": summary.model_dump(mode="json"),
    }


def _tool_recent_items(store: OutputStore, params: RecentItemsParams) -> dict[str, Any]:
    items = store.recent(limit=params.limit, days=params.days)
    return {
        "success": True,
        "count": len(items),
        "items": [item.model_dump(mode="json") for item in items],
    }


def _tool_check_item(store: OutputStore, params: CheckItemParams) -> dict[str, Any]:
    exists = store.exists(params.url)
    return {
        "success": True,
        "exists": exists,
        "message": "Item exists in database" if exists else "Item not found in database",
    }


def build_database_tools(store: OutputStore) -> list[LocalTool]:
    """The four output-store tools, bound to `store`."""
    return [
        LocalTool(
            "saveItemToDatabase",
            "Save a single item to the database. Automatically prevents duplicates based on "
            "title and URL. Returns the saved item with ID and timestamps.",
            OutputItem,
            lambda params: _tool_save_item(store, params),
        ),
        LocalTool(
            "saveItemsToDatabase",
            "Save multiple items to the database in a single batch operation. More efficient "
            "than saving items one by one. Automatically prevents duplicates and provides a "
            "summary of results.",
            SaveItemsParams,
            lambda params: _tool_save_items(store, params),
        ),
        LocalTool(
            "getRecentItems",
            "Get recently saved items from the database. Useful for checking what has already "
            "been saved to avoid duplicates.",
            RecentItemsParams,
            lambda params: _tool_recent_items(store, params),
        ),
        LocalTool(
            "checkItemExists",
            "Check if an item with a specific URL already exists in the database. Returns true "
            "if exists, false otherwise.",
            CheckItemParams,
            lambda params: _tool_check_item(store, params),
        ),
    ]
