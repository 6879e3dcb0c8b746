"""
Function implementations ("tools") and their registry.

A tool is looked up by ``function_key`` and executed with the request
context; adding a capability means registering another ``Tool``, not
editing a dispatch switch.  ``chat`` and ``image_generation`` are
registered only to say that another subsystem owns them.

Tools raise ``CosmoError`` for domain failures; the executor turns any
exception into a failed ``FunctionExecutionResult``.
"""
from __future__ import annotations

import logging
import re
import time
from typing import TYPE_CHECKING, Any, Optional

import httpx

from cosmo.config import settings
from cosmo.core.errors import CosmoError, CosmoErrorCode

if TYPE_CHECKING:
    from cosmo.services.store import CosmoStore

logger = logging.getLogger(__name__)

GOOGLE_PLACES_TEXT_SEARCH_URL = "https://maps.googleapis.com/maps/api/place/textsearch/json"
MAPS_RESULT_LIMIT = 5
_LOCATION_QUERY_RE = re.compile(r"(?:find|search|where is|locate|directions to|near)\s+(.+)", re.IGNORECASE)


class Tool:
    """Base class: one executable capability behind a function key."""

    key: str = ""

    async def execute(self, context: dict[str, Any], store: "CosmoStore") -> Any:
        raise NotImplementedError


class HandledElsewhereTool(Tool):
    """Marker for functions another subsystem fulfils."""

    def __init__(self, key: str, handler: str):
        self.key = key
        self.handler = handler

    async def execute(self, context: dict[str, Any], store: "CosmoStore") -> Any:
        return {"handled": self.handler}


class NotImplementedTool(Tool):
    """Registered capability whose integration does not exist yet."""

    def __init__(self, key: str, message: str, echo_query: bool = False):
        self.key = key
        self.message = message
        self.echo_query = echo_query

    async def execute(self, context: dict[str, Any], store: "CosmoStore") -> Any:
        if self.echo_query:
            return {
                "query": context.get("content"),
                "results": [],
                "status": "not_implemented",
                "message": self.message,
            }
        return {"status": "not_implemented", "message": self.message}


class MapsTool(Tool):
    """Google Places text search over the prompt's location phrase."""

    key = "maps"

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None):
        self._transport = transport

    @staticmethod
    def location_query(content: str) -> str:
        match = _LOCATION_QUERY_RE.search(content)
        return match.group(1) if match else content

    async def execute(self, context: dict[str, Any], store: "CosmoStore") -> Any:
        api_key = settings.google_maps_api_key
        if not api_key:
            raise CosmoError(CosmoErrorCode.CONFIG_MISSING, "Google Maps API key not configured")

        query = self.location_query(str(context.get("content") or ""))
        async with httpx.AsyncClient(
            timeout=settings.function_timeout_seconds,
            transport=self._transport,
        ) as client:
            response = await client.get(
                GOOGLE_PLACES_TEXT_SEARCH_URL,
                params={"query": query, "key": api_key},
            )

        if not response.is_success:
            raise CosmoError(
                CosmoErrorCode.FUNCTION_FAILED,
                f"Google Maps API error: {response.status_code}",
            )

        data = response.json()
        return {
            "results": (data.get("results") or [])[:MAPS_RESULT_LIMIT],
            "query": query,
            "status": data.get("status"),
        }


class KnowledgeBaseTool(Tool):
    """Term search over the workspace's knowledge-base documents."""

    key = "knowledge_base"

    async def execute(self, context: dict[str, Any], store: "CosmoStore") -> Any:
        workspace_id = context.get("workspaceId")
        query = str(context.get("content") or "")
        if not workspace_id:
            raise CosmoError(
                CosmoErrorCode.INVALID_PAYLOAD,
                "Workspace ID required for knowledge base search",
            )

        result = await store.search_knowledge_base(str(workspace_id), query)
        if result.error is not None:
            return {"results": [], "query": query, "error": result.error.message}
        return {"results": result.value, "query": query, "count": len(result.value)}


class ToolRegistry:
    """function_key -> Tool, with aliases (``google_maps`` -> ``maps``)."""

    def __init__(self) -> None:
        self._tools: dict[str, Tool] = {}
        self._aliases: dict[str, str] = {}

    def register(self, tool: Tool, aliases: tuple[str, ...] = ()) -> None:
        self._tools[tool.key] = tool
        for alias in aliases:
            self._aliases[alias] = tool.key

    def get(self, function_key: str) -> Optional[Tool]:
        return self._tools.get(self._aliases.get(function_key, function_key))

    def keys(self) -> list[str]:
        return list(self._tools) + list(self._aliases)

    async def execute(
        self,
        function_key: str,
        context: dict[str, Any],
        store: "CosmoStore",
    ) -> Any:
        """Run the tool, or pass the context through for keys with no tool."""
        tool = self.get(function_key)
        if tool is None:
            logger.debug(f"No implementation for function {function_key}, passing through")
            return {
                "function_key": function_key,
                "passthrough": True,
                "context": context,
                "timestamp": int(time.time() * 1000),
            }
        return await tool.execute(context, store)


def build_default_registry(
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> ToolRegistry:
    registry = ToolRegistry()
    registry.register(HandledElsewhereTool("chat", "by_cosmo_orchestrator"))
    registry.register(HandledElsewhereTool("image_generation", "by_image_generation"))
    registry.register(MapsTool(transport=transport), aliases=("google_maps",))
    registry.register(KnowledgeBaseTool())
    registry.register(NotImplementedTool(
        "web_search", "Web search function requires API integration", echo_query=True,
    ))
    registry.register(NotImplementedTool("gmail", "Gmail function requires OAuth integration"))
    registry.register(NotImplementedTool("calendar", "Calendar function requires OAuth integration"))
    return registry


_registry: Optional[ToolRegistry] = None


def get_tool_registry() -> ToolRegistry:
    global _registry
    if _registry is None:
        _registry = build_default_registry()
    return _registry


def reset_tool_registry() -> None:
    global _registry
    _registry = None
