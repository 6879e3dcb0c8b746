"""
Inbound request contracts.

Each trigger surface has its own variant, tagged by ``requestType``:

    chat | api_call | webhook | system_task | agent_action

``CosmoRequest`` is the discriminated union accepted by the generic
orchestration endpoint.  Every variant is validated at the boundary and
then normalized into one ``NormalizedRequest`` before entering the
pipeline.
"""
from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import ConfigDict, Field, field_validator, model_validator

from cosmo.contracts.base import CamelModel

# Keeps oversized text out of the classifier and inference calls.
MAX_CONTENT_CHARS = 32_768


class RequestType(str, Enum):
    CHAT = "chat"
    WEBHOOK = "webhook"
    SYSTEM_TASK = "system_task"
    AGENT_ACTION = "agent_action"
    API_CALL = "api_call"


class ResponseMode(str, Enum):
    STREAM = "stream"
    SYNC = "sync"
    SILENT = "silent"


Priority = Literal["low", "normal", "high", "critical"]
SourceType = Literal["user", "webhook", "system", "agent", "api"]


class ChatMessage(CamelModel):
    role: Literal["system", "user", "assistant"]
    content: str = Field(..., max_length=MAX_CONTENT_CHARS)


class SpaceContext(CamelModel):
    """Workspace-level instructions injected into the system prompt."""
    ai_instructions: Optional[str] = None
    compliance_rule: Optional[str] = None


class RequestSource(CamelModel):
    """Who or what triggered the request."""
    type: SourceType = "user"
    id: Optional[str] = None
    name: Optional[str] = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class _RequestBase(CamelModel):
    """Fields shared by every request variant."""

    content: Optional[str] = Field(default=None, max_length=MAX_CONTENT_CHARS)
    messages: list[ChatMessage] = Field(default_factory=list)
    history: list[ChatMessage] = Field(default_factory=list)
    workspace_id: Optional[str] = None
    user_id: Optional[str] = None
    chat_id: Optional[str] = None
    persona_id: Optional[str] = None
    requested_model: Optional[str] = Field(
        default=None,
        description="Explicit model id; 'auto' or omitted lets COSMO route.",
    )
    space_context: Optional[SpaceContext] = None
    source: Optional[RequestSource] = None
    priority: Priority = "normal"
    response_mode: Optional[ResponseMode] = None
    parallel: bool = Field(
        default=False,
        description="Run selected functions concurrently instead of threading results.",
    )
    trace_id: Optional[str] = None

    @field_validator("content")
    @classmethod
    def no_null_bytes(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and "\x00" in v:
            raise ValueError("Content must not contain null bytes")
        return v

    def prompt_text(self) -> str:
        """``content``, else the last user message."""
        if self.content:
            return self.content
        for message in reversed(self.messages):
            if message.role == "user":
                return message.content
        return ""


class ChatRequest(_RequestBase):
    request_type: Literal["chat"] = "chat"

    @model_validator(mode="after")
    def require_prompt(self) -> "ChatRequest":
        if not self.prompt_text().strip():
            raise ValueError("Chat requests need content or a user message")
        return self


class ApiCallRequest(_RequestBase):
    request_type: Literal["api_call"] = "api_call"

    @model_validator(mode="after")
    def require_prompt(self) -> "ApiCallRequest":
        if not self.prompt_text().strip():
            raise ValueError("API requests need content or a user message")
        return self


class WebhookRequest(_RequestBase):
    request_type: Literal["webhook"] = "webhook"
    webhook_event: str = Field(..., min_length=1)
    webhook_payload: dict[str, Any] = Field(default_factory=dict)


class SystemTaskRequest(_RequestBase):
    request_type: Literal["system_task"] = "system_task"
    task_name: str = Field(..., min_length=1)
    task_config: dict[str, Any] = Field(default_factory=dict)


class AgentActionRequest(_RequestBase):
    request_type: Literal["agent_action"] = "agent_action"
    agent_id: Optional[str] = None
    agent_goal: Optional[str] = Field(default=None, max_length=MAX_CONTENT_CHARS)
    agent_context: dict[str, Any] = Field(default_factory=dict)
    max_iterations: Optional[int] = Field(
        default=None,
        ge=1,
        description="Loop limit for this run; also read from agentContext.maxIterations.",
    )

    @model_validator(mode="after")
    def require_goal(self) -> "AgentActionRequest":
        if not (self.agent_goal or self.content):
            raise ValueError("Agent actions need agentGoal or content")
        return self

    @model_validator(mode="after")
    def context_max_iterations(self) -> "AgentActionRequest":
        raw = self.agent_context.get("maxIterations", self.agent_context.get("max_iterations"))
        if self.max_iterations is not None or raw is None:
            return self
        if isinstance(raw, str) and raw.strip().isdigit():
            raw = int(raw)
        if isinstance(raw, bool) or not isinstance(raw, int) or raw < 1:
            raise ValueError("agentContext.maxIterations must be a positive integer")
        self.max_iterations = raw
        return self


CosmoRequest = Annotated[
    Union[ChatRequest, ApiCallRequest, WebhookRequest, SystemTaskRequest, AgentActionRequest],
    Field(discriminator="request_type"),
]

AnyRequest = Union[ChatRequest, ApiCallRequest, WebhookRequest, SystemTaskRequest, AgentActionRequest]


class NormalizedRequest(CamelModel):
    """The one internal shape every trigger converges on. Immutable."""

    model_config = ConfigDict(frozen=True)

    request_id: str
    trace_id: str
    request_type: RequestType
    source: RequestSource
    content: str = ""
    messages: list[ChatMessage] = Field(default_factory=list)
    history: list[ChatMessage] = Field(default_factory=list)
    workspace_id: Optional[str] = None
    user_id: Optional[str] = None
    chat_id: Optional[str] = None
    persona_id: Optional[str] = None
    requested_model: Optional[str] = None
    space_context: Optional[SpaceContext] = None
    priority: Priority = "normal"
    response_mode: ResponseMode = ResponseMode.STREAM
    parallel: bool = False
    webhook_event: Optional[str] = None
    webhook_payload: Optional[dict[str, Any]] = None
    task_name: Optional[str] = None
    task_config: dict[str, Any] = Field(default_factory=dict)
    agent_id: Optional[str] = None
    agent_goal: Optional[str] = None
    agent_context: dict[str, Any] = Field(default_factory=dict)
    max_iterations: Optional[int] = Field(default=None, ge=1)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_workspace_request(self) -> bool:
        return bool(self.workspace_id)

    def function_context(self) -> dict[str, Any]:
        """Context handed to function implementations."""
        return {
            "content": self.content,
            "workspaceId": self.workspace_id,
            "chatId": self.chat_id,
            "userId": self.user_id,
            "personaId": self.persona_id,
        }
