"""Tests for request and result contracts."""
from __future__ import annotations

import pytest
from pydantic import TypeAdapter, ValidationError

from cosmo.contracts.requests import (
    AgentActionRequest,
    ChatRequest,
    CosmoRequest,
    NormalizedRequest,
    RequestSource,
    RequestType,
    SystemTaskRequest,
    WebhookRequest,
)
from cosmo.contracts.results import DebugInfo, ExecutionError, ExecutionResult
from cosmo.contracts.specialized import (
    EnhancePromptRequest,
    ImageGenerationRequest,
    KnowledgeQueryRequest,
)
from cosmo.core.errors import CosmoError, CosmoErrorCode


class TestRequestValidation:

    def test_camel_case_input(self) -> None:
        req = ChatRequest.model_validate({
            "content": "hi",
            "workspaceId": "ws-1",
            "spaceContext": {"aiInstructions": "Be brief."},
        })
        assert req.workspace_id == "ws-1"
        assert req.space_context is not None
        assert req.space_context.ai_instructions == "Be brief."

    def test_chat_needs_prompt(self) -> None:
        with pytest.raises(ValidationError):
            ChatRequest.model_validate({})
        with pytest.raises(ValidationError):
            ChatRequest.model_validate({"messages": [{"role": "assistant", "content": "hello"}]})

    def test_prompt_from_last_user_message(self) -> None:
        req = ChatRequest.model_validate({"messages": [
            {"role": "user", "content": "first"},
            {"role": "assistant", "content": "reply"},
            {"role": "user", "content": "second"},
        ]})
        assert req.prompt_text() == "second"

    def test_null_bytes_rejected(self) -> None:
        with pytest.raises(ValidationError):
            ChatRequest.model_validate({"content": "bad\x00text"})

    def test_webhook_needs_event(self) -> None:
        with pytest.raises(ValidationError):
            WebhookRequest.model_validate({"webhookPayload": {"a": 1}})

    def test_task_needs_name(self) -> None:
        with pytest.raises(ValidationError):
            SystemTaskRequest.model_validate({"taskName": ""})

    def test_agent_needs_goal_or_content(self) -> None:
        with pytest.raises(ValidationError):
            AgentActionRequest.model_validate({"agentId": "a1"})
        assert AgentActionRequest.model_validate({"content": "do it"}).agent_goal is None

    def test_agent_max_iterations_from_context(self) -> None:
        req = AgentActionRequest.model_validate({"agentGoal": "g", "agentContext": {"maxIterations": 4}})
        assert req.max_iterations == 4
        req = AgentActionRequest.model_validate({"agentGoal": "g", "agentContext": {"max_iterations": "6"}})
        assert req.max_iterations == 6
        req = AgentActionRequest.model_validate({"agentGoal": "g", "maxIterations": 2, "agentContext": {"maxIterations": 9}})
        assert req.max_iterations == 2
        assert AgentActionRequest.model_validate({"agentGoal": "g"}).max_iterations is None

    @pytest.mark.parametrize("value", ["lots", 0, -3, 2.5, True])
    def test_agent_max_iterations_rejected(self, value: object) -> None:
        with pytest.raises(ValidationError, match="maxIterations"):
            AgentActionRequest.model_validate({"agentGoal": "g", "agentContext": {"maxIterations": value}})

    def test_agent_max_iterations_field_must_be_positive(self) -> None:
        with pytest.raises(ValidationError):
            AgentActionRequest.model_validate({"agentGoal": "g", "maxIterations": 0})

    def test_discriminated_union(self) -> None:
        adapter = TypeAdapter(CosmoRequest)
        req = adapter.validate_python({"requestType": "system_task", "taskName": "nightly"})
        assert isinstance(req, SystemTaskRequest)
        with pytest.raises(ValidationError):
            adapter.validate_python({"requestType": "fax", "content": "x"})


class TestSinglePurposeRequests:

    def test_enhance_prompt_camel_case(self) -> None:
        req = EnhancePromptRequest.model_validate({
            "prompt": "p", "personaId": "persona-1", "history": [{"role": "user", "content": "hi"}],
        })
        assert req.persona_id == "persona-1"
        assert req.history[0].content == "hi"

    @pytest.mark.parametrize("prompt", ["", "   ", "bad\x00byte"])
    def test_prompt_rejected(self, prompt: str) -> None:
        with pytest.raises(ValidationError):
            EnhancePromptRequest(prompt=prompt)
        with pytest.raises(ValidationError):
            ImageGenerationRequest(prompt=prompt)

    def test_knowledge_query_needs_workspace(self) -> None:
        with pytest.raises(ValidationError):
            KnowledgeQueryRequest.model_validate({"question": "q"})
        with pytest.raises(ValidationError):
            KnowledgeQueryRequest.model_validate({"question": "q", "workspaceId": ""})
        req = KnowledgeQueryRequest.model_validate({"question": "q", "workspaceId": "ws-1", "documentIds": ["d1"]})
        assert req.document_ids == ["d1"]

    def test_image_model_defaults_to_auto(self) -> None:
        assert ImageGenerationRequest(prompt="p").selected_model is None
        assert ImageGenerationRequest.model_validate({"prompt": "p", "selectedModel": "img/x"}).selected_model == "img/x"


class TestNormalizedRequest:

    def test_frozen(self) -> None:
        req = NormalizedRequest(
            request_id="r", trace_id="t", request_type=RequestType.CHAT, source=RequestSource(),
        )
        with pytest.raises(ValidationError):
            req.content = "changed"  # type: ignore[misc]

    def test_function_context(self) -> None:
        req = NormalizedRequest(
            request_id="r", trace_id="t", request_type=RequestType.CHAT, source=RequestSource(),
            content="hi", workspace_id="ws-1",
        )
        assert req.is_workspace_request
        assert req.function_context()["workspaceId"] == "ws-1"


class TestExecutionResult:

    def test_success_wire(self) -> None:
        result = ExecutionResult(
            success=True,
            data={"content": "ok", "nested_key": 1},
            debug=DebugInfo(model_used="mid/coder", timings_ms={"inference": 5}),
        )
        wire = result.to_wire()
        assert result.http_status == 200
        assert wire["data"] == {"content": "ok", "nested_key": 1}
        assert wire["debug"]["modelUsed"] == "mid/coder"
        assert wire["debug"]["timingsMs"] == {"inference": 5}
        assert "error" not in wire
        assert "costTier" not in wire["debug"]

    def test_error_wire(self) -> None:
        error = ExecutionError.from_cosmo_error(CosmoError(CosmoErrorCode.RATE_LIMITED))
        result = ExecutionResult(success=False, error=error)
        assert result.http_status == 429
        assert result.to_wire()["error"] == {
            "code": "RATE_LIMITED",
            "message": error.message,
            "httpStatus": 429,
            "retryable": True,
        }
