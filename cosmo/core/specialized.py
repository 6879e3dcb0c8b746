"""
Single-purpose COSMO flows.

    enhance_user_prompt   rewrite a prompt with the configured enhancer model
    query_knowledge       answer a question from workspace documents
    generate_image        pick an image model (or take the caller's) and generate

None of these runs intent analysis or function selection.  Each takes its
model from an admin setting and calls it with the same one-fallback policy
as the chat path.  ``run_specialized`` wraps a flow in the result envelope,
so failures come back coded exactly as they do from ``orchestrate``.
"""
from __future__ import annotations

import logging
import re
import string
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Optional, Union

from cosmo.config import DEFAULT_PROVIDER
from cosmo.contracts.results import ExecutionError, ExecutionResult, TierAttempt
from cosmo.contracts.specialized import (
    EnhancePromptRequest,
    ImageGenerationRequest,
    KnowledgeQueryRequest,
)
from cosmo.core.errors import CosmoError, CosmoErrorCode
from cosmo.core.llm_client import LLMClient, LLMResponse
from cosmo.core.orchestrator import (
    InferenceOutcome,
    RequestEnvironment,
    RunTelemetry,
    coded_failure,
    debug_info,
    final_inference_error,
    load_environment,
    run_inference,
    status_of,
)
from cosmo.core.pipeline import PipelineStage, PipelineState
from cosmo.core.prompt_enhancer import ContextSources, EnhancedPrompt
from cosmo.core.response import calculate_cost, estimate_tokens
from cosmo.core.routing.models import CosmoRoutingResult
from cosmo.core.routing.router import AUTO_MODEL, get_cost_tier, select_image_model
from cosmo.core.tracing import (
    clear_trace_context,
    create_trace_context,
    generate_request_id,
    generate_trace_id,
    get_trace_context,
    trace_span,
)

if TYPE_CHECKING:
    from cosmo.services.store import CosmoStore

logger = logging.getLogger(__name__)

SpecializedRequest = Union[EnhancePromptRequest, KnowledgeQueryRequest, ImageGenerationRequest]
Flow = Callable[..., Awaitable[dict[str, Any]]]

ENHANCER_SYSTEM_PROMPT = """You are Cosmo, an expert prompt engineer. Your task is to enhance and improve the user's prompt to make it clearer, more specific, and more likely to get a high-quality AI response.

Guidelines:
- Make the prompt more detailed and specific
- Add relevant context or constraints if helpful
- Improve clarity and structure
- Keep the original intent intact
- Return ONLY the enhanced prompt, nothing else - no explanations, no preamble, no quotes, just the improved prompt text."""
ENHANCER_HISTORY_MESSAGES = 5
HISTORY_EXCERPT_CHARS = 200

KNOWLEDGE_SYSTEM_PROMPT = (
    "You are a helpful AI assistant that answers questions based on provided document context.\n"
    "Always cite the source documents in your answer using [Document Title] format.\n"
    "If the answer is not in the provided context, say so clearly."
)
NO_DOCUMENTS_ANSWER = "No documents found. Please upload documents first."
MAX_RELEVANT_CHUNKS = 5
MIN_QUERY_WORD_CHARS = 4

LOVABLE_PROVIDER = "Lovable AI"
DEFAULT_IMAGE_COST_USD = 0.04


def _setting(system_settings: dict[str, Any], key: str) -> dict[str, Any]:
    value = system_settings.get(key)
    return value if isinstance(value, dict) else {}


async def _configured_route(
    model_id: str,
    category: str,
    env: RequestEnvironment,
    store: "CosmoStore",
    provider: Optional[str] = None,
) -> CosmoRoutingResult:
    """Routing result for a model named by an admin setting."""
    if not provider:
        known = await store.get_model(model_id)
        provider = known.provider if known else DEFAULT_PROVIDER
    return CosmoRoutingResult(
        selected_model_id=model_id,
        selected_category=category,
        provider=provider,
        cost_tier=get_cost_tier(env.routing_config.cost_performance_weight),
        models_considered=1,
        reasoning=f"Configured {category} model",
    )


def _account(prompt: EnhancedPrompt, outcome: InferenceOutcome, telemetry: RunTelemetry) -> None:
    tokens = estimate_tokens(prompt.system_prompt + "".join(m["content"] for m in prompt.messages))
    telemetry.model_used = outcome.model_id
    telemetry.tokens_used = tokens.total
    telemetry.cost = calculate_cost(
        tokens,
        outcome.model.pricing_prompt if outcome.model else 0.0,
        outcome.model.pricing_completion if outcome.model else 0.0,
    )


# =============================================================================
# Prompt enhancement
# =============================================================================


def _excerpt(text: str) -> str:
    if len(text) <= HISTORY_EXCERPT_CHARS:
        return text
    return text[:HISTORY_EXCERPT_CHARS] + "..."


async def enhancer_context(
    request: EnhancePromptRequest,
    system_settings: dict[str, Any],
    store: "CosmoStore",
) -> tuple[str, ContextSources]:
    """Persona and recent-conversation text appended to the enhancer prompt."""
    pre_message = _setting(system_settings, "pre_message_config")
    parts: list[str] = []

    persona = None
    if pre_message.get("include_persona") and request.persona_id:
        persona = await store.get_persona_prompt(request.persona_id)
        if persona:
            parts.append(
                "Active Persona: Consider this persona's style and approach "
                f"when enhancing the prompt: {persona}"
            )

    history = []
    if pre_message.get("include_history") and request.history:
        limit = int(pre_message.get("max_history_messages") or ENHANCER_HISTORY_MESSAGES)
        history = request.history[-limit:]
        lines = "\n".join(f"{m.role}: {_excerpt(m.content)}" for m in history)
        parts.append(f"Recent Conversation Context:\n{lines}")

    sources = ContextSources(persona=bool(persona), history=bool(history), history_count=len(history))
    return "".join(f"\n\n{p}" for p in parts), sources


async def run_enhance_prompt_flow(
    request: EnhancePromptRequest,
    store: "CosmoStore",
    env: RequestEnvironment,
    state: PipelineState,
    telemetry: RunTelemetry,
) -> dict[str, Any]:
    ctx = get_trace_context()
    enhancer = _setting(env.system_settings, "cosmo_config")
    model_id = str(enhancer.get("model_id") or env.routing_config.model_id or "")
    if not model_id:
        raise CosmoError(
            CosmoErrorCode.CONFIG_MISSING,
            "No model configured for prompt enhancement. Configure cosmo_routing_config in system settings.",
        )

    system_prompt = str(enhancer.get("system_prompt") or ENHANCER_SYSTEM_PROMPT)
    sources = ContextSources()
    if enhancer.get("use_pre_message_context"):
        extra, sources = await enhancer_context(request, env.system_settings, store)
        system_prompt += extra

    routing = await _configured_route(model_id, "prompt_enhancement", env, store)
    telemetry.cost_tier = routing.cost_tier.value
    state.advance(PipelineStage.MODEL_ROUTED)

    prompt = EnhancedPrompt(
        system_prompt=system_prompt,
        messages=[{"role": "user", "content": f"Please enhance this prompt:\n\n{request.prompt}"}],
        context_sources=sources,
    )
    with trace_span(ctx, "inference", {"model": model_id}):
        outcome = await run_inference(
            routing, prompt, store, env.llm, env.system_settings, telemetry.tiers_attempted,
        )
    _account(prompt, outcome, telemetry)

    enhanced = (outcome.response.content or "").strip()
    if not enhanced:
        raise CosmoError(CosmoErrorCode.INTERNAL_ERROR, "No enhanced prompt returned")
    state.advance(PipelineStage.RESPONSE_BUILT)
    return {"enhancedPrompt": enhanced, "model": outcome.model_id}


# =============================================================================
# Knowledge query
# =============================================================================


@dataclass(frozen=True)
class DocumentChunk:
    document_id: str
    title: str
    file_name: Optional[str]
    content: str
    relevance: int


def split_chunks(content: str) -> list[str]:
    """Paragraphs (blank-line separated) of a document."""
    return [p.strip() for p in re.split(r"\n\s*\n", content) if p.strip()]


def query_words(question: str) -> list[str]:
    words = (w.strip(string.punctuation) for w in question.lower().split())
    return [w for w in words if len(w) >= MIN_QUERY_WORD_CHARS]


def find_relevant_chunks(
    question: str,
    documents: list[dict[str, Any]],
    limit: int = MAX_RELEVANT_CHUNKS,
) -> list[DocumentChunk]:
    """
    Paragraphs ranked by how many question words they contain.

    Ties keep document order.  Paragraphs matching no word are dropped.
    """
    words = query_words(question)
    chunks: list[DocumentChunk] = []
    for doc in documents:
        for text in split_chunks(doc.get("content") or ""):
            lowered = text.lower()
            relevance = sum(1 for w in words if w in lowered)
            if relevance:
                chunks.append(DocumentChunk(
                    document_id=doc["id"],
                    title=doc.get("title") or "",
                    file_name=doc.get("file_name"),
                    content=text,
                    relevance=relevance,
                ))
    chunks.sort(key=lambda c: c.relevance, reverse=True)
    return chunks[:limit]


def chunk_sources(chunks: list[DocumentChunk]) -> list[dict[str, Any]]:
    seen: set[str] = set()
    sources = []
    for chunk in chunks:
        if chunk.document_id in seen:
            continue
        seen.add(chunk.document_id)
        sources.append({"id": chunk.document_id, "title": chunk.title, "fileName": chunk.file_name})
    return sources


async def run_knowledge_query_flow(
    request: KnowledgeQueryRequest,
    store: "CosmoStore",
    env: RequestEnvironment,
    state: PipelineState,
    telemetry: RunTelemetry,
) -> dict[str, Any]:
    ctx = get_trace_context()
    with trace_span(ctx, "document_retrieval"):
        loaded = await store.load_knowledge_documents(
            request.workspace_id,
            user_id=request.user_id,
            document_ids=request.document_ids or None,
        )
    if loaded.error is not None:
        logger.error(f"[{ctx.trace_id}] Document load failed: {loaded.error.message}")
        raise CosmoError(CosmoErrorCode.INTERNAL_ERROR, "Failed to fetch documents")
    documents = loaded.value
    if not documents:
        state.advance(PipelineStage.RESPONSE_BUILT)
        return {"answer": NO_DOCUMENTS_ANSWER, "sources": [], "model": "none"}

    chunks = find_relevant_chunks(request.question, documents)
    logger.info(f"[{ctx.trace_id}] {len(chunks)} relevant chunks from {len(documents)} documents")
    state.advance(PipelineStage.FUNCTIONS_EXECUTED)

    kb_model = _setting(env.system_settings, "knowledge_base_model")
    model_id = str(kb_model.get("model_id") or "")
    if not model_id:
        raise CosmoError(
            CosmoErrorCode.CONFIG_MISSING,
            "No knowledge base model configured. Configure knowledge_base_model in system settings.",
        )
    routing = await _configured_route(model_id, "research", env, store, provider=kb_model.get("provider"))
    telemetry.cost_tier = routing.cost_tier.value
    state.advance(PipelineStage.MODEL_ROUTED)

    context = "\n\n---\n\n".join(f"[{c.title}]\n{c.content}" for c in chunks)
    prompt = EnhancedPrompt(
        system_prompt=KNOWLEDGE_SYSTEM_PROMPT,
        messages=[{
            "role": "user",
            "content": (
                f"Context from uploaded documents:\n\n{context}\n\nQuestion: {request.question}"
                "\n\nPlease answer based on the provided context and cite your sources."
            ),
        }],
        context_sources=ContextSources(knowledge_base=bool(chunks)),
    )
    with trace_span(ctx, "inference", {"model": model_id}):
        outcome = await run_inference(
            routing, prompt, store, env.llm, env.system_settings, telemetry.tiers_attempted,
        )
    _account(prompt, outcome, telemetry)

    answer = outcome.response.content
    if not answer:
        raise CosmoError(CosmoErrorCode.INTERNAL_ERROR, "No answer returned")
    state.advance(PipelineStage.RESPONSE_BUILT)
    return {"answer": answer, "sources": chunk_sources(chunks), "model": outcome.model_id}


# =============================================================================
# Image generation
# =============================================================================


def image_fallback(system_settings: dict[str, Any], primary_model: str) -> Optional[tuple[str, str]]:
    """Admin ``image_model``, else ``image_fallback_model``; never the primary again."""
    for key, default_provider in (("image_model", DEFAULT_PROVIDER), ("image_fallback_model", LOVABLE_PROVIDER)):
        setting = _setting(system_settings, key)
        model_id = setting.get("model_id")
        if model_id and model_id != primary_model:
            return str(model_id), str(setting.get("provider") or default_provider)
    return None


async def _generate_with_fallback(
    prompt: str,
    model_id: str,
    provider: str,
    env: RequestEnvironment,
    attempts: list[TierAttempt],
) -> tuple[LLMResponse, str]:
    """Generate with the chosen model; on failure try exactly one admin fallback."""
    try:
        response = await env.llm.generate_image(prompt, model=model_id, provider=provider)
        attempts.append(TierAttempt(
            tier=1, tier_name="primary", model=model_id, provider=provider, success=True,
        ))
        return response, model_id
    except Exception as e:
        logger.warning(f"Image model {model_id} failed: {e}")
        attempts.append(TierAttempt(
            tier=1, tier_name="primary", model=model_id, provider=provider,
            success=False, error=str(e) or type(e).__name__, status_code=status_of(e),
        ))
        primary_error: BaseException = e

    # No fallback on quota errors.
    fallback = None if status_of(primary_error) in (429, 402) else image_fallback(env.system_settings, model_id)
    if fallback is None:
        raise final_inference_error(primary_error)

    alt_id, alt_provider = fallback
    logger.info(f"Retrying image generation with fallback model {alt_id}")
    try:
        response = await env.llm.generate_image(prompt, model=alt_id, provider=alt_provider)
    except Exception as e:
        logger.error(f"Fallback image model {alt_id} failed: {e}")
        attempts.append(TierAttempt(
            tier=2, tier_name="fallback", model=alt_id, provider=alt_provider,
            success=False, error=str(e) or type(e).__name__, status_code=status_of(e),
        ))
        raise final_inference_error(e)

    attempts.append(TierAttempt(
        tier=2, tier_name="fallback", model=alt_id, provider=alt_provider, success=True,
    ))
    return response, alt_id


def image_cost(system_settings: dict[str, Any]) -> float:
    cost = _setting(system_settings, "image_generation_cost").get("cost_usd")
    return float(cost) if isinstance(cost, (int, float)) else DEFAULT_IMAGE_COST_USD


async def run_image_generation_flow(
    request: ImageGenerationRequest,
    store: "CosmoStore",
    env: RequestEnvironment,
    state: PipelineState,
    telemetry: RunTelemetry,
) -> dict[str, Any]:
    ctx = get_trace_context()
    catalogue = (await store.load_image_models()).value
    auto_selected = request.selected_model in (None, "", AUTO_MODEL)

    with trace_span(ctx, "model_routing"):
        if not auto_selected:
            model_id = str(request.selected_model)
        elif not catalogue:
            raise CosmoError(CosmoErrorCode.CONFIG_MISSING, "No image generation models available in database")
        elif not env.routing_config.model_id:
            raise CosmoError(CosmoErrorCode.CONFIG_MISSING, "No routing model configured in cosmo_routing_config")
        else:
            chosen = await select_image_model(
                request.prompt,
                env.routing_config,
                catalogue,
                api_key=env.classifier_api_key,
                llm=env.llm,
            )
            model_id = chosen or catalogue[0].model_id
    provider = next((m.provider for m in catalogue if m.model_id == model_id), DEFAULT_PROVIDER)
    telemetry.cost_tier = get_cost_tier(env.routing_config.cost_performance_weight).value
    logger.info(f"[{ctx.trace_id}] Image model {model_id} ({provider}), auto={auto_selected}")
    state.advance(PipelineStage.MODEL_ROUTED)

    with trace_span(ctx, "image_generation", {"model": model_id}):
        response, used = await _generate_with_fallback(
            request.prompt, model_id, provider, env, telemetry.tiers_attempted,
        )
    telemetry.model_used = used
    if not response.images:
        raise CosmoError(CosmoErrorCode.INTERNAL_ERROR, "No image generated")

    cost = image_cost(env.system_settings)
    telemetry.cost = cost
    if request.user_id:
        await store.log_usage(
            user_id=request.user_id,
            workspace_id=request.workspace_id,
            model=used,
            prompt_tokens=0,
            completion_tokens=0,
            cost=cost,
            action="image_generation",
            metadata={"trace_id": ctx.trace_id, "cosmo_selected": auto_selected},
        )
    state.advance(PipelineStage.RESPONSE_BUILT)
    return {"imageUrl": response.images[0], "model": used, "cosmoSelected": auto_selected}


# =============================================================================
# Entry points
# =============================================================================


async def run_specialized(
    flow: Flow,
    request: SpecializedRequest,
    store: "CosmoStore",
    llm: Optional[LLMClient] = None,
) -> ExecutionResult:
    """Run one flow in its own trace; never raises."""
    telemetry = RunTelemetry()
    ctx = create_trace_context(request.trace_id or generate_trace_id(), generate_request_id(), request.user_id)
    state = PipelineState(trace_id=ctx.trace_id)
    logger.info(f"[{ctx.trace_id}] {type(request).__name__} {ctx.request_id}")

    try:
        env = await load_environment(store, llm)
        data = await flow(request, store, env, state, telemetry)
        state.advance(PipelineStage.COMPLETE)
        return ExecutionResult(
            success=True,
            data=data,
            debug=debug_info(state, telemetry, ctx.trace_id, ctx.request_id),
        )
    except Exception as e:
        error = coded_failure(e, ctx.trace_id)
        if not state.is_terminal:
            state.fail(error)
        return ExecutionResult(
            success=False,
            error=ExecutionError.from_cosmo_error(error),
            debug=debug_info(state, telemetry, ctx.trace_id, ctx.request_id),
        )
    finally:
        clear_trace_context()


async def enhance_user_prompt(
    request: EnhancePromptRequest,
    store: "CosmoStore",
    llm: Optional[LLMClient] = None,
) -> ExecutionResult:
    return await run_specialized(run_enhance_prompt_flow, request, store, llm)


async def query_knowledge(
    request: KnowledgeQueryRequest,
    store: "CosmoStore",
    llm: Optional[LLMClient] = None,
) -> ExecutionResult:
    return await run_specialized(run_knowledge_query_flow, request, store, llm)


async def generate_image(
    request: ImageGenerationRequest,
    store: "CosmoStore",
    llm: Optional[LLMClient] = None,
) -> ExecutionResult:
    return await run_specialized(run_image_generation_flow, request, store, llm)
