"""
COSMO orchestration endpoints.

One endpoint per trigger surface, each validating its own request variant,
plus a generic ``/cosmo/orchestrate`` that accepts any variant (the type is
read from ``requestType`` or inferred from the payload).  The prompt
enhancement, knowledge query and image endpoints skip intent analysis
and go straight to their configured model.  Every endpoint
answers with the result envelope and the HTTP status mapped from the
error code.
"""
from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Body, Depends, Request
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.util import get_remote_address
from sqlalchemy.ext.asyncio import AsyncSession

from cosmo.config import settings
from cosmo.contracts.requests import (
    AgentActionRequest,
    ChatRequest,
    SystemTaskRequest,
    WebhookRequest,
)
from cosmo.contracts.results import ExecutionResult
from cosmo.contracts.specialized import (
    EnhancePromptRequest,
    ImageGenerationRequest,
    KnowledgeQueryRequest,
)
from cosmo.core.intent.analyzer import refresh_intent_cache
from cosmo.core.orchestrator import Incoming, orchestrate
from cosmo.core.specialized import enhance_user_prompt, generate_image, query_knowledge
from cosmo.db import get_db
from cosmo.services.store import CosmoStore

router = APIRouter()
logger = logging.getLogger(__name__)

limiter = Limiter(key_func=get_remote_address)


def get_store(db: AsyncSession = Depends(get_db)) -> CosmoStore:
    return CosmoStore(db)


def _respond(result: ExecutionResult) -> JSONResponse:
    return JSONResponse(status_code=result.http_status, content=result.to_wire())


async def _run(payload: Incoming, store: CosmoStore) -> JSONResponse:
    result = await orchestrate(payload, store)
    return _respond(result)


# =============================================================================
# Trigger surfaces
# =============================================================================

@router.post("/cosmo/chat")
@limiter.limit(settings.rate_limit)
async def cosmo_chat(
    request: Request,
    chat_request: ChatRequest,
    store: CosmoStore = Depends(get_store),
) -> JSONResponse:
    """Chat message: full pipeline with model routing and inference."""
    return await _run(chat_request, store)


@router.post("/cosmo/webhook")
@limiter.limit(settings.rate_limit)
async def cosmo_webhook(
    request: Request,
    webhook_request: WebhookRequest,
    store: CosmoStore = Depends(get_store),
) -> JSONResponse:
    """Inbound webhook: classify the event and run its function actions."""
    return await _run(webhook_request, store)


@router.post("/cosmo/tasks")
@limiter.limit(settings.rate_limit)
async def cosmo_system_task(
    request: Request,
    task_request: SystemTaskRequest,
    store: CosmoStore = Depends(get_store),
) -> JSONResponse:
    """Scheduled system task."""
    return await _run(task_request, store)


@router.post("/cosmo/agent")
@limiter.limit(settings.rate_limit)
async def cosmo_agent(
    request: Request,
    agent_request: AgentActionRequest,
    store: CosmoStore = Depends(get_store),
) -> JSONResponse:
    """Agent action, bounded by the agent iteration limit."""
    return await _run(agent_request, store)


@router.post("/cosmo/orchestrate")
@limiter.limit(settings.rate_limit)
async def cosmo_orchestrate(
    request: Request,
    payload: dict[str, Any] = Body(...),
    store: CosmoStore = Depends(get_store),
) -> JSONResponse:
    """
    Generic entry point.

    ``requestType`` selects the variant; without it the type is inferred
    (webhook payload, task name, agent goal, api source, else chat).
    """
    return await _run(payload, store)


# =============================================================================
# Single-purpose endpoints
# =============================================================================

@router.post("/cosmo/enhance-prompt")
@limiter.limit(settings.rate_limit)
async def cosmo_enhance_prompt(
    request: Request,
    enhance_request: EnhancePromptRequest,
    store: CosmoStore = Depends(get_store),
) -> JSONResponse:
    """Rewrite a prompt with the configured enhancer model."""
    return _respond(await enhance_user_prompt(enhance_request, store))


@router.post("/cosmo/knowledge/query")
@limiter.limit(settings.rate_limit)
async def cosmo_knowledge_query(
    request: Request,
    query_request: KnowledgeQueryRequest,
    store: CosmoStore = Depends(get_store),
) -> JSONResponse:
    """Answer a question from workspace documents, citing them."""
    return _respond(await query_knowledge(query_request, store))


@router.post("/cosmo/images")
@limiter.limit(settings.rate_limit)
async def cosmo_generate_image(
    request: Request,
    image_request: ImageGenerationRequest,
    store: CosmoStore = Depends(get_store),
) -> JSONResponse:
    """Generate an image; ``selectedModel`` of ``auto`` lets COSMO pick."""
    return _respond(await generate_image(image_request, store))


# =============================================================================
# Admin
# =============================================================================

@router.post("/cosmo/intents/refresh")
async def refresh_intents() -> dict[str, Any]:
    """Drop cached intents and action mappings so the next request reloads them."""
    refresh_intent_cache()
    logger.info("Intent and action-mapping caches invalidated")
    return {"success": True, "data": {"refreshed": ["intents", "action_mappings"]}}
