"""
Request contracts for the single-purpose COSMO endpoints.

These calls skip intent analysis and function selection: each names its
own model setting and goes straight to inference (with the usual single
fallback attempt).

    enhance-prompt   rewrite a user prompt before it is sent
    knowledge query  answer a question from selected workspace documents
    image            generate an image, optionally letting COSMO pick the model
"""
from __future__ import annotations

from typing import Optional

from pydantic import Field, field_validator

from cosmo.contracts.base import CamelModel
from cosmo.contracts.requests import MAX_CONTENT_CHARS, ChatMessage


def _reject_null_bytes(value: str) -> str:
    if "\x00" in value:
        raise ValueError("Text must not contain null bytes")
    return value


class EnhancePromptRequest(CamelModel):
    prompt: str = Field(..., min_length=1, max_length=MAX_CONTENT_CHARS)
    persona_id: Optional[str] = None
    chat_id: Optional[str] = None
    user_id: Optional[str] = None
    history: list[ChatMessage] = Field(
        default_factory=list,
        description="Recent conversation, oldest first; used when pre-message context is on.",
    )
    trace_id: Optional[str] = None

    @field_validator("prompt")
    @classmethod
    def check_prompt(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Prompt must not be blank")
        return _reject_null_bytes(v)


class KnowledgeQueryRequest(CamelModel):
    question: str = Field(..., min_length=1, max_length=MAX_CONTENT_CHARS)
    workspace_id: str = Field(..., min_length=1)
    user_id: Optional[str] = None
    document_ids: list[str] = Field(default_factory=list)
    trace_id: Optional[str] = None

    @field_validator("question")
    @classmethod
    def check_question(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Question must not be blank")
        return _reject_null_bytes(v)


class ImageGenerationRequest(CamelModel):
    prompt: str = Field(..., min_length=1, max_length=MAX_CONTENT_CHARS)
    user_id: Optional[str] = None
    workspace_id: Optional[str] = None
    selected_model: Optional[str] = Field(
        default=None,
        description="Explicit image model id; 'auto' or omitted lets COSMO choose.",
    )
    trace_id: Optional[str] = None

    @field_validator("prompt")
    @classmethod
    def check_prompt(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Prompt must not be blank")
        return _reject_null_bytes(v)
