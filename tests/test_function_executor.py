"""Tests for function execution, batches and the tool registry."""
from __future__ import annotations

import asyncio
from typing import Any

import httpx
import pytest

from cosmo.core.errors import CosmoError, CosmoErrorCode
from cosmo.core.functions.executor import execute_function, execute_functions
from cosmo.core.functions.models import (
    BatchExecutionRequest,
    FunctionCandidate,
    FunctionExecutionRequest,
)
from cosmo.core.functions.tools import (
    GOOGLE_PLACES_TEXT_SEARCH_URL,
    KnowledgeBaseTool,
    MapsTool,
    Tool,
    ToolRegistry,
    build_default_registry,
)
from cosmo.services.load_result import LoadResult


class RegisteredStore:
    """Every function key is registered and enabled except ``disabled``."""

    def __init__(self, disabled: tuple[str, ...] = ()):
        self.disabled = disabled

    async def get_function(self, key: str) -> LoadResult:
        if key in self.disabled:
            return LoadResult.success(None)
        return LoadResult.success(FunctionCandidate(function_key=key))


class FailingTool(Tool):
    def __init__(self, key: str):
        self.key = key
        self.seen: list[dict[str, Any]] = []

    async def execute(self, context, store):
        self.seen.append(context)
        raise CosmoError(CosmoErrorCode.FUNCTION_FAILED, f"{self.key} exploded")


class RecordingTool(Tool):
    def __init__(self, key: str, data: Any = None):
        self.key = key
        self.data = data if data is not None else {"from": key}
        self.seen: list[dict[str, Any]] = []

    async def execute(self, context, store):
        self.seen.append(context)
        return self.data


class SlowTool(Tool):
    key = "slow"

    async def execute(self, context, store):
        await asyncio.sleep(5)
        return {"late": True}


def registry(*tools: Tool) -> ToolRegistry:
    reg = ToolRegistry()
    for tool in tools:
        reg.register(tool)
    return reg


# ---------------------------------------------------------------------------
# Single function
# ---------------------------------------------------------------------------


class TestExecuteFunction:

    async def test_success(self) -> None:
        tool = RecordingTool("b")
        result = await execute_function(
            FunctionExecutionRequest("b", {"content": "hi"}, "req-1"), RegisteredStore(), registry(tool),
        )
        assert result.success
        assert result.data == {"from": "b"}
        assert result.events_emitted == ["b:complete"]
        assert tool.seen == [{"content": "hi"}]

    async def test_disabled_function_fails(self) -> None:
        result = await execute_function(
            FunctionExecutionRequest("gmail"), RegisteredStore(disabled=("gmail",)), registry(),
        )
        assert not result.success
        assert "not found or disabled" in result.error
        assert result.events_emitted == ["gmail:error"]

    async def test_tool_error_is_captured(self) -> None:
        result = await execute_function(FunctionExecutionRequest("a"), RegisteredStore(), registry(FailingTool("a")))
        assert not result.success
        assert result.error == "a exploded"
        assert result.to_dict()["error"] == "a exploded"
        assert "data" not in result.to_dict()

    async def test_unknown_key_passes_context_through(self) -> None:
        result = await execute_function(
            FunctionExecutionRequest("custom", {"content": "x"}), RegisteredStore(), registry(),
        )
        assert result.success
        assert result.data["passthrough"] is True
        assert result.data["context"] == {"content": "x"}

    async def test_against_database(self, store, seed_functions) -> None:
        result = await execute_function(FunctionExecutionRequest("web_search", {"content": "news"}), store)
        assert result.success
        assert result.data["status"] == "not_implemented"
        assert result.data["query"] == "news"

        missing = await execute_function(FunctionExecutionRequest("gmail"), store)
        assert not missing.success


# ---------------------------------------------------------------------------
# Batches
# ---------------------------------------------------------------------------


class TestBatchExecution:

    async def test_sequential_failure_not_merged_into_context(self) -> None:
        a = FailingTool("A")
        b = RecordingTool("B")
        batch = await execute_functions(
            BatchExecutionRequest(
                functions=[
                    FunctionExecutionRequest("A", {"content": "go"}),
                    FunctionExecutionRequest("B", {"content": "go"}),
                ],
                sequential=True,
            ),
            RegisteredStore(),
            registry(a, b),
        )
        assert len(batch.results) == 2
        first, second = batch.results
        assert first.success is False and first.error
        assert second.success is True
        assert "A" not in b.seen[0]
        assert batch.success is False
        assert batch.errors == ["A exploded"]

    async def test_sequential_threads_successful_results(self) -> None:
        first = RecordingTool("maps", {"places": ["cafe"]})
        second = RecordingTool("chat")
        await execute_functions(
            BatchExecutionRequest([
                FunctionExecutionRequest("maps", {"content": "q"}),
                FunctionExecutionRequest("chat", {"content": "q"}),
            ]),
            RegisteredStore(),
            registry(first, second),
        )
        assert second.seen[0]["maps"] == {"places": ["cafe"]}
        assert second.seen[0]["content"] == "q"

    async def test_parallel_success_flag(self) -> None:
        batch = await execute_functions(
            BatchExecutionRequest(
                [FunctionExecutionRequest("x"), FunctionExecutionRequest("y")],
                sequential=False,
            ),
            RegisteredStore(),
            registry(RecordingTool("x"), RecordingTool("y")),
        )
        assert batch.success is True
        assert [r.function_key for r in batch.results] == ["x", "y"]
        assert batch.successful_data() == {"x": {"from": "x"}, "y": {"from": "y"}}

    async def test_parallel_one_failure(self) -> None:
        y = RecordingTool("y")
        batch = await execute_functions(
            BatchExecutionRequest(
                [FunctionExecutionRequest("x", {"n": 1}), FunctionExecutionRequest("y", {"n": 1})],
                sequential=False,
            ),
            RegisteredStore(),
            registry(FailingTool("x"), y),
        )
        assert batch.success is False
        assert batch.results[1].success is True
        assert y.seen == [{"n": 1}]

    async def test_parallel_timeout(self) -> None:
        batch = await execute_functions(
            BatchExecutionRequest([FunctionExecutionRequest("slow")], sequential=False),
            RegisteredStore(),
            registry(SlowTool()),
            timeout=0.05,
        )
        assert batch.success is False
        assert batch.results[0].error.startswith("TIMEOUT")

    async def test_empty_batch(self) -> None:
        batch = await execute_functions(BatchExecutionRequest([]), RegisteredStore(), registry())
        assert batch.success is True
        assert batch.results == []


# ---------------------------------------------------------------------------
# Tools
# ---------------------------------------------------------------------------


class TestTools:

    def test_default_registry(self) -> None:
        reg = build_default_registry()
        assert reg.get("google_maps") is reg.get("maps")
        assert {"chat", "image_generation", "maps", "knowledge_base", "web_search"} <= set(reg.keys())

    async def test_chat_is_handled_elsewhere(self) -> None:
        data = await build_default_registry().execute("chat", {}, RegisteredStore())
        assert data == {"handled": "by_cosmo_orchestrator"}

    def test_location_query(self) -> None:
        assert MapsTool.location_query("please find coffee in Austin") == "coffee in Austin"
        assert MapsTool.location_query("Austin") == "Austin"

    async def test_maps_search(self, api_keys) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={
                "status": "OK",
                "results": [{"name": f"Place {i}"} for i in range(8)],
            })

        tool = MapsTool(transport=httpx.MockTransport(handler))
        data = await tool.execute({"content": "restaurants near Union Square"}, RegisteredStore())
        assert len(data["results"]) == 5
        assert data["query"] == "Union Square"
        assert str(seen[0].url).startswith(GOOGLE_PLACES_TEXT_SEARCH_URL)
        assert seen[0].url.params["key"] == "test-maps-key"

    async def test_maps_http_error(self, api_keys) -> None:
        tool = MapsTool(transport=httpx.MockTransport(lambda request: httpx.Response(403)))
        with pytest.raises(CosmoError) as exc_info:
            await tool.execute({"content": "x"}, RegisteredStore())
        assert exc_info.value.code is CosmoErrorCode.FUNCTION_FAILED

    async def test_maps_without_key(self, monkeypatch) -> None:
        from cosmo.config import settings
        monkeypatch.setattr(settings, "google_maps_api_key", None)
        with pytest.raises(CosmoError) as exc_info:
            await MapsTool().execute({"content": "x"}, RegisteredStore())
        assert exc_info.value.code is CosmoErrorCode.CONFIG_MISSING

    async def test_knowledge_base_requires_workspace(self, store) -> None:
        with pytest.raises(CosmoError) as exc_info:
            await KnowledgeBaseTool().execute({"content": "travel policy"}, store)
        assert exc_info.value.code is CosmoErrorCode.INVALID_PAYLOAD

    async def test_knowledge_base_search(self, store, seed_knowledge) -> None:
        data = await KnowledgeBaseTool().execute(
            {"content": "what is the travel policy", "workspaceId": "ws-1"}, store,
        )
        assert data["count"] == 1
        assert data["results"][0]["title"] == "Travel Policy"

    async def test_knowledge_base_load_failure(self, store, monkeypatch) -> None:
        async def broken(*args, **kwargs):
            raise RuntimeError("db down")

        monkeypatch.setattr(store.session, "execute", broken)
        data = await KnowledgeBaseTool().execute({"content": "travel policy", "workspaceId": "ws-1"}, store)
        assert data["results"] == []
        assert data["query"] == "travel policy"
        assert "db down" in data["error"]
