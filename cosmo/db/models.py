"""
SQLAlchemy ORM models for COSMO.

Tables:
- cosmo_intents: Intent registry (keywords, required functions, context needs)
- cosmo_action_mappings: Intent key -> executable action expansion
- chat_functions: Function (tool) capability catalogue
- ai_models: Inference model catalogue with pricing and category tags
- fallback_models: Last-resort models used when primary inference fails
- system_settings: Admin settings (routing config, default/fallback model, ...)
- personas: Persona system prompts
- user_settings: Per-user personal context
- knowledge_base: Workspace documents searched by the knowledge_base function
- cosmo_debug_logs: Audit projection of each orchestrated chat request
- usage_logs: Token and cost accounting per request
"""
from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import (
    Boolean,
    DateTime,
    Float,
    Integer,
    String,
    Text,
)
from sqlalchemy.types import JSON
from sqlalchemy.orm import Mapped, mapped_column

from cosmo.db.database import Base


def generate_uuid() -> str:
    """Generate a new UUID string."""
    return str(uuid.uuid4())


def utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(timezone.utc)


class CosmoIntent(Base):
    """A classified request category the analyzer can detect by keyword."""
    __tablename__ = "cosmo_intents"

    intent_key: Mapped[str] = mapped_column(String(100), primary_key=True)
    display_name: Mapped[str] = mapped_column(String(200), nullable=False, default="")
    category: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    keywords: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    required_functions: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    context_needs: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=50)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def __repr__(self) -> str:
        return f"<CosmoIntent {self.intent_key} category={self.category}>"


class CosmoActionMapping(Base):
    """Expands an intent key ('*' = every intent) into one executable action."""
    __tablename__ = "cosmo_action_mappings"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    intent_key: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    action_key: Mapped[str] = mapped_column(String(100), nullable=False)
    # function | chain | model_call | external_api | system
    action_type: Mapped[str] = mapped_column(String(50), nullable=False, default="function")
    action_config: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    parameter_patterns: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    required_context: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=50)
    conditions: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class ChatFunction(Base):
    """A registered function (tool) COSMO can select and execute."""
    __tablename__ = "chat_functions"

    function_key: Mapped[str] = mapped_column(String(100), primary_key=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False, default="")
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    tags: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    input_schema: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    output_schema: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    is_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    # Registry order is insertion order; ties in selection keep it.
    display_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class AIModel(Base):
    """Inference model catalogue entry. Pricing is dollars per 1M tokens."""
    __tablename__ = "ai_models"

    model_id: Mapped[str] = mapped_column(String(200), primary_key=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False, default="")
    provider: Mapped[str] = mapped_column(String(100), nullable=False, default="OpenRouter")
    best_for: Mapped[Optional[str]] = mapped_column(String(100), nullable=True, index=True)
    best_for_description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    pricing_prompt: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    pricing_completion: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    is_free: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    context_length: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    default_max_tokens: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    default_temperature: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    skip_temperature: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    display_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class FallbackModel(Base):
    """Model tried once when the routed model's inference call fails."""
    __tablename__ = "fallback_models"

    model_id: Mapped[str] = mapped_column(String(200), primary_key=True)
    provider: Mapped[str] = mapped_column(String(100), nullable=False, default="Lovable AI")
    is_default: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)


class SystemSetting(Base):
    """Admin setting: key -> JSON value."""
    __tablename__ = "system_settings"

    setting_key: Mapped[str] = mapped_column(String(100), primary_key=True)
    setting_value: Mapped[Any] = mapped_column(JSON, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utc_now,
        onupdate=utc_now,
        nullable=False,
    )


class Persona(Base):
    __tablename__ = "personas"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    name: Mapped[str] = mapped_column(String(200), nullable=False, default="")
    system_prompt: Mapped[Optional[str]] = mapped_column(Text, nullable=True)


class UserSetting(Base):
    __tablename__ = "user_settings"

    user_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    personal_context: Mapped[Optional[str]] = mapped_column(Text, nullable=True)


class KnowledgeBaseDocument(Base):
    """A workspace document searchable by the knowledge_base function."""
    __tablename__ = "knowledge_base"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    workspace_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    user_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    title: Mapped[str] = mapped_column(String(500), nullable=False, default="")
    file_name: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    content: Mapped[str] = mapped_column(Text, nullable=False, default="")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utc_now,
        nullable=False,
    )


class CosmoDebugLog(Base):
    """Audit projection of one orchestrated request."""
    __tablename__ = "cosmo_debug_logs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    operation_type: Mapped[str] = mapped_column(String(50), nullable=False, default="chat")
    trace_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    user_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    chat_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    workspace_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    original_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    detected_intent: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    intent_patterns: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    requested_model: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    auto_select_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    context_sources: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    system_prompt_preview: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    full_system_prompt: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    selected_model: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    model_provider: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    tiers_attempted: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)
    fallback_used: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    functions_invoked: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    response_time_ms: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    prompt_tokens: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    completion_tokens: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    total_tokens: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    cost: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    success: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utc_now,
        nullable=False,
    )


class UsageLog(Base):
    """Token and cost accounting for one request."""
    __tablename__ = "usage_logs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    user_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    workspace_id: Mapped[Optional[str]] = mapped_column(String(36), nullable=True)
    action: Mapped[str] = mapped_column(String(50), nullable=False, default="chat_message")
    model: Mapped[str] = mapped_column(String(200), nullable=False)
    prompt_tokens: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    completion_tokens: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_tokens: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    cost: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    usage_metadata: Mapped[dict[str, Any]] = mapped_column("metadata", JSON, nullable=False, default=dict)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utc_now,
        nullable=False,
    )
