"""
COSMO Orchestrator.

Single entry point for every trigger surface.  Each request is parsed into
its variant, normalized into a ``NormalizedRequest`` and then driven
through the pipeline:

    1) Intent analysis (enhanced: entities + action plan)
    2) Function selection
    3) Function execution (sequential unless ``parallel`` is requested)
    4) Model routing + inference, with one fallback attempt (chat / api_call)
    5) Response processing, usage and debug logging

Webhooks, system tasks and agent actions skip model routing: they run the
``function`` actions resolved for them and report per-action outcomes.

``orchestrate`` never raises.  Failures become the coded error envelope
and the pipeline state moves to ERROR, so no later stage runs.
"""
from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Optional, Union

import httpx
from pydantic import TypeAdapter, ValidationError

from cosmo.config import settings
from cosmo.contracts.requests import (
    AnyRequest,
    CosmoRequest,
    NormalizedRequest,
    RequestSource,
    RequestType,
    ResponseMode,
)
from cosmo.contracts.results import DebugInfo, ExecutionError, ExecutionResult, TierAttempt
from cosmo.core.actions.models import ActionType, CosmoAction
from cosmo.core.actions.resolver import resolve_actions
from cosmo.core.errors import CosmoError, CosmoErrorCode, error_from_exception
from cosmo.core.functions.executor import execute_function, execute_functions
from cosmo.core.functions.models import (
    BatchExecutionRequest,
    BatchExecutionResult,
    FunctionExecutionRequest,
    FunctionExecutionResult,
)
from cosmo.core.functions.selector import CHAT_FUNCTION, select_functions
from cosmo.core.intent.analyzer import analyze_intent_enhanced
from cosmo.core.llm_client import LLMClient, LLMResponse, get_llm_client
from cosmo.core.pipeline import PipelineStage, PipelineState
from cosmo.core.prompt_enhancer import EnhancedPrompt, enhance_prompt
from cosmo.core.providers import get_provider_api_key, has_provider_api_key
from cosmo.core.response import (
    CosmoMetadata,
    calculate_cost,
    create_metadata_event,
    estimate_tokens,
    process_response,
    save_debug_log,
)
from cosmo.core.routing.models import CosmoRoutingConfig, CosmoRoutingResult, ModelCandidate
from cosmo.core.routing.router import AUTO_MODEL, route_model, select_image_model
from cosmo.core.tracing import (
    clear_trace_context,
    create_trace_context,
    generate_request_id,
    generate_trace_id,
    get_trace_context,
    log_intent,
    log_llm_call,
    trace_span,
)

if TYPE_CHECKING:
    from cosmo.services.store import CosmoStore

logger = logging.getLogger(__name__)

IMAGE_GENERATION_FUNCTION = "image_generation"
SYSTEM_PROMPT_PREVIEW_CHARS = 500

_REQUEST_ADAPTER: TypeAdapter[AnyRequest] = TypeAdapter(CosmoRequest)

Incoming = Union[AnyRequest, NormalizedRequest, dict[str, Any]]


# =============================================================================
# Normalization
# =============================================================================


def _field(payload: dict[str, Any], snake: str) -> Any:
    """Read a payload field by its snake_case or camelCase name."""
    if snake in payload:
        return payload[snake]
    parts = snake.split("_")
    return payload.get(parts[0] + "".join(p.capitalize() for p in parts[1:]))


def detect_request_type(payload: dict[str, Any]) -> RequestType:
    """
    Infer the request type from a raw payload.

    Explicit ``requestType`` wins, then webhook payload, task name, agent
    id/goal, an ``api`` source, and finally plain chat.
    """
    explicit = _field(payload, "request_type")
    if explicit:
        try:
            return RequestType(explicit)
        except ValueError:
            raise CosmoError(
                CosmoErrorCode.INVALID_PAYLOAD,
                f"Unknown request type: {explicit}",
            )
    if _field(payload, "webhook_payload") is not None or _field(payload, "webhook_event"):
        return RequestType.WEBHOOK
    if _field(payload, "task_name"):
        return RequestType.SYSTEM_TASK
    if _field(payload, "agent_id") or _field(payload, "agent_goal"):
        return RequestType.AGENT_ACTION
    source = payload.get("source")
    if isinstance(source, dict) and source.get("type") == "api":
        return RequestType.API_CALL
    return RequestType.CHAT


def normalize_source(request: AnyRequest) -> RequestSource:
    """Explicit source, else one derived from the request type."""
    if request.source is not None:
        return request.source
    request_type = RequestType(request.request_type)
    if request_type == RequestType.WEBHOOK:
        return RequestSource(type="webhook", metadata={"event": getattr(request, "webhook_event", None)})
    if request_type == RequestType.SYSTEM_TASK:
        return RequestSource(type="system", name=getattr(request, "task_name", None))
    if request_type == RequestType.AGENT_ACTION:
        return RequestSource(type="agent", id=getattr(request, "agent_id", None))
    if request_type == RequestType.API_CALL:
        return RequestSource(type="api", id=request.user_id)
    return RequestSource(type="user", id=request.user_id)


def _validation_details(exc: ValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(p) for p in err['loc']) or 'body'}: {err['msg']}"
        for err in exc.errors()
    )


def parse_request(payload: dict[str, Any]) -> AnyRequest:
    """Validate a raw payload into its request variant (INVALID_PAYLOAD on failure)."""
    if not isinstance(payload, dict):
        raise CosmoError(CosmoErrorCode.INVALID_PAYLOAD, "Request body must be a JSON object")
    request_type = detect_request_type(payload)
    body = {k: v for k, v in payload.items() if k not in ("request_type", "requestType")}
    body["requestType"] = request_type.value
    try:
        return _REQUEST_ADAPTER.validate_python(body)
    except ValidationError as e:
        details = _validation_details(e)
        logger.warning(f"Rejected {request_type.value} payload: {details}")
        raise CosmoError(CosmoErrorCode.INVALID_PAYLOAD, details=details) from e


def normalize_request(request: Union[AnyRequest, dict[str, Any]]) -> NormalizedRequest:
    """Converge any request variant on the single internal shape."""
    if isinstance(request, dict):
        request = parse_request(request)

    request_type = RequestType(request.request_type)
    content = request.prompt_text()
    if request_type == RequestType.AGENT_ACTION and not content:
        content = getattr(request, "agent_goal", None) or ""

    response_mode = request.response_mode
    if response_mode is None:
        response_mode = ResponseMode.SILENT if request_type == RequestType.SYSTEM_TASK else ResponseMode.STREAM

    return NormalizedRequest(
        request_id=generate_request_id(),
        trace_id=request.trace_id or generate_trace_id(),
        request_type=request_type,
        source=normalize_source(request),
        content=content,
        messages=list(request.messages),
        history=list(request.history),
        workspace_id=request.workspace_id,
        user_id=request.user_id,
        chat_id=request.chat_id,
        persona_id=request.persona_id,
        requested_model=request.requested_model,
        space_context=request.space_context,
        priority=request.priority,
        response_mode=response_mode,
        parallel=request.parallel,
        webhook_event=getattr(request, "webhook_event", None),
        webhook_payload=getattr(request, "webhook_payload", None),
        task_name=getattr(request, "task_name", None),
        task_config=dict(getattr(request, "task_config", None) or {}),
        agent_id=getattr(request, "agent_id", None),
        agent_goal=getattr(request, "agent_goal", None),
        agent_context=dict(getattr(request, "agent_context", None) or {}),
        max_iterations=getattr(request, "max_iterations", None),
    )


# =============================================================================
# Per-request bookkeeping
# =============================================================================


@dataclass
class RunTelemetry:
    """Mutable accumulator feeding ``DebugInfo``."""
    tokens_used: int = 0
    cost: float = 0.0
    model_used: Optional[str] = None
    cost_tier: Optional[str] = None
    tiers_attempted: list[TierAttempt] = field(default_factory=list)
    functions_invoked: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class RequestEnvironment:
    """Admin settings and classifier credentials read once per request."""
    system_settings: dict[str, Any]
    routing_config: CosmoRoutingConfig
    classifier_api_key: Optional[str]
    llm: LLMClient


async def load_environment(store: "CosmoStore", llm: Optional[LLMClient] = None) -> RequestEnvironment:
    loaded = await store.load_settings()
    if not loaded.ok:
        logger.warning(f"System settings unavailable, using defaults: {loaded.error.message if loaded.error else ''}")
    system_settings = loaded.value
    routing_config = CosmoRoutingConfig.from_setting(system_settings.get("cosmo_routing_config"))
    api_key = (
        get_provider_api_key(routing_config.provider)
        if routing_config.enabled and has_provider_api_key(routing_config.provider)
        else None
    )
    return RequestEnvironment(
        system_settings=system_settings,
        routing_config=routing_config,
        classifier_api_key=api_key,
        llm=llm or get_llm_client(),
    )


def debug_logging_enabled(system_settings: dict[str, Any]) -> bool:
    """Env switch AND the ``cosmo_debug_enabled`` admin setting (absent means on)."""
    if not settings.debug_log_enabled:
        return False
    toggle = system_settings.get("cosmo_debug_enabled")
    if isinstance(toggle, dict):
        return bool(toggle.get("enabled", True))
    return True


# =============================================================================
# Inference with one fallback
# =============================================================================


@dataclass(frozen=True)
class InferenceOutcome:
    response: LLMResponse
    model_id: str
    provider: str
    model: Optional[ModelCandidate]
    fallback_used: bool = False


def status_of(exc: BaseException) -> Optional[int]:
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code
    return None


async def _call_model(
    model_id: str,
    provider: str,
    prompt: EnhancedPrompt,
    store: "CosmoStore",
    llm: LLMClient,
) -> tuple[LLMResponse, Optional[ModelCandidate]]:
    config = await store.get_model(model_id)
    if config is not None and config.skip_temperature:
        temperature = None
    elif config is not None and config.default_temperature is not None:
        temperature = config.default_temperature
    else:
        temperature = settings.default_temperature
    max_tokens = (config.default_max_tokens if config else None) or settings.default_max_tokens

    messages = [{"role": "system", "content": prompt.system_prompt}, *prompt.messages]
    start = time.perf_counter()
    response = await llm.chat_completion(
        messages=messages,
        model=model_id,
        provider=provider,
        temperature=temperature,
        max_tokens=max_tokens,
    )
    usage = response.usage or {}
    log_llm_call(
        get_trace_context().trace_id,
        model_id,
        int(usage.get("prompt_tokens") or 0),
        int(usage.get("completion_tokens") or 0),
        (time.perf_counter() - start) * 1000,
    )
    return response, config


def final_inference_error(exc: BaseException) -> CosmoError:
    status = status_of(exc)
    if status == 429:
        return CosmoError(CosmoErrorCode.RATE_LIMITED, details=str(exc))
    if status == 402:
        return CosmoError(CosmoErrorCode.PAYMENT_REQUIRED, details=str(exc))
    if status is None and isinstance(exc, CosmoError):
        return exc
    if status is None and isinstance(exc, httpx.TimeoutException):
        return CosmoError(CosmoErrorCode.TIMEOUT, details=str(exc))
    return CosmoError(
        CosmoErrorCode.ALL_MODELS_FAILED,
        f"All models failed with status {status if status is not None else 'unknown'}",
        details=str(exc),
    )


async def run_inference(
    routing: CosmoRoutingResult,
    prompt: EnhancedPrompt,
    store: "CosmoStore",
    llm: LLMClient,
    system_settings: dict[str, Any],
    attempts: list[TierAttempt],
) -> InferenceOutcome:
    """
    Call the routed model; on failure try exactly one alternative.

    The alternative is a similar model (same category and provider), else
    the configured fallback model.  Every attempt is recorded in
    ``attempts``.
    """
    model_id, provider = routing.selected_model_id, routing.provider
    try:
        response, config = await _call_model(model_id, provider, prompt, store, llm)
        attempts.append(TierAttempt(
            tier=1, tier_name="primary", model=model_id, provider=provider, success=True,
        ))
        return InferenceOutcome(response=response, model_id=model_id, provider=provider, model=config)
    except Exception as e:
        logger.warning(f"Primary model {model_id} failed: {e}")
        attempts.append(TierAttempt(
            tier=1, tier_name="primary", model=model_id, provider=provider,
            success=False, error=str(e) or type(e).__name__, status_code=status_of(e),
        ))
        primary_error: BaseException = e

    similar = await store.get_similar_model(model_id, routing.selected_category, provider)
    if similar is not None:
        alt_id, alt_provider = similar.model_id, similar.provider
    else:
        fallback = await store.get_fallback_model(system_settings.get("fallback_model"))
        if fallback is None or fallback.model_id == model_id:
            raise final_inference_error(primary_error)
        alt_id, alt_provider = fallback.model_id, fallback.provider

    logger.info(f"Retrying inference with fallback model {alt_id}")
    try:
        response, config = await _call_model(alt_id, alt_provider, prompt, store, llm)
    except Exception as e:
        logger.error(f"Fallback model {alt_id} failed: {e}")
        attempts.append(TierAttempt(
            tier=2, tier_name="fallback", model=alt_id, provider=alt_provider,
            success=False, error=str(e) or type(e).__name__, status_code=status_of(e),
        ))
        raise final_inference_error(e)

    attempts.append(TierAttempt(
        tier=2, tier_name="fallback", model=alt_id, provider=alt_provider, success=True,
    ))
    return InferenceOutcome(
        response=response, model_id=alt_id, provider=alt_provider, model=config, fallback_used=True,
    )


# =============================================================================
# Flows
# =============================================================================


def _action_entry(action: CosmoAction, result: FunctionExecutionResult) -> dict[str, Any]:
    entry: dict[str, Any] = {"actionKey": action.action_key, "actionType": action.action_type}
    entry.update(result.to_dict())
    return entry


def _function_actions(actions: list[CosmoAction]) -> list[tuple[CosmoAction, str]]:
    """``function`` actions paired with their function key."""
    return [(a, a.function_key) for a in actions if a.function_key]


async def run_chat_flow(
    request: NormalizedRequest,
    store: "CosmoStore",
    env: RequestEnvironment,
    state: PipelineState,
    telemetry: RunTelemetry,
) -> dict[str, Any]:
    """Full pipeline for chat and api_call requests."""
    ctx = get_trace_context()
    started = time.perf_counter()

    with trace_span(ctx, "intent_analysis"):
        intent = await analyze_intent_enhanced(
            request.content,
            store,
            routing_config=env.routing_config,
            api_key=env.classifier_api_key,
            context=request.function_context(),
            llm=env.llm,
        )
    log_intent(ctx.trace_id, request.content, intent.category, intent.confidence, intent.intent_key)
    state.advance(PipelineStage.INTENT_ANALYZED)

    with trace_span(ctx, "function_selection"):
        selection = await select_functions(intent, store)
    state.advance(PipelineStage.FUNCTIONS_SELECTED)

    batch: Optional[BatchExecutionResult] = None
    to_run = [k for k in selection.execution_order if k != CHAT_FUNCTION]
    if to_run:
        function_context = {**request.function_context(), **intent.parameter_extractions}
        with trace_span(ctx, "function_execution", {"count": len(to_run)}):
            batch = await execute_functions(
                BatchExecutionRequest(
                    functions=[
                        FunctionExecutionRequest(key, function_context, request.request_id)
                        for key in to_run
                    ],
                    sequential=not request.parallel,
                ),
                store,
            )
        telemetry.functions_invoked = [r.function_key for r in batch.results]
    state.advance(PipelineStage.FUNCTIONS_EXECUTED)

    with trace_span(ctx, "model_routing"):
        routing = await route_model(
            intent,
            env.routing_config,
            store,
            requested_model=request.requested_model,
            system_settings=env.system_settings,
        )
        image_model = None
        if IMAGE_GENERATION_FUNCTION in selection.selected_functions:
            image_model = await select_image_model(
                request.content,
                env.routing_config,
                (await store.load_image_models()).value,
                api_key=env.classifier_api_key,
                llm=env.llm,
            )
    telemetry.cost_tier = routing.cost_tier.value
    state.advance(PipelineStage.MODEL_ROUTED)

    with trace_span(ctx, "prompt_enhancement"):
        prompt = await enhance_prompt(
            request,
            intent,
            env.system_settings,
            store,
            batch.successful_data() if batch else None,
        )

    try:
        with trace_span(ctx, "inference", {"model": routing.selected_model_id}):
            outcome = await run_inference(
                routing, prompt, store, env.llm, env.system_settings, telemetry.tiers_attempted,
            )
    except CosmoError as e:
        await _save_chat_debug(
            store, request, env, intent.category, intent.suggested_enhancements, prompt, routing,
            telemetry, success=False, error_message=e.message, started=started,
        )
        raise
    telemetry.model_used = outcome.model_id

    content = outcome.response.content or ""
    with trace_span(ctx, "response_processing"):
        processed = process_response(content)
        tokens = estimate_tokens(
            prompt.system_prompt + "".join(m["content"] for m in prompt.messages)
        )
        cost = calculate_cost(
            tokens,
            outcome.model.pricing_prompt if outcome.model else 0.0,
            outcome.model.pricing_completion if outcome.model else 0.0,
        )
    telemetry.tokens_used = tokens.total
    telemetry.cost = cost

    metadata_event = create_metadata_event(CosmoMetadata(
        actual_model_used=outcome.model_id,
        cosmo_selected=env.routing_config.enabled and request.requested_model in (None, AUTO_MODEL),
        detected_category=intent.category,
        cost_tier=routing.cost_tier.value,
        functions_invoked=telemetry.functions_invoked,
    ))
    state.advance(PipelineStage.RESPONSE_BUILT)

    if request.user_id and request.workspace_id:
        await store.log_usage(
            user_id=request.user_id,
            workspace_id=request.workspace_id,
            model=outcome.model_id,
            prompt_tokens=tokens.prompt,
            completion_tokens=tokens.completion,
            cost=cost,
            metadata={
                "trace_id": request.trace_id,
                "request_type": request.request_type.value,
                "category": intent.category,
                "fallback_used": outcome.fallback_used,
            },
        )
    await _save_chat_debug(
        store, request, env, intent.category, intent.suggested_enhancements, prompt, routing,
        telemetry, success=True, started=started, outcome=outcome,
        prompt_tokens=tokens.prompt, completion_tokens=tokens.completion,
    )

    data: dict[str, Any] = {
        "content": content,
        "processed": processed.to_dict(),
        "metadataEvent": metadata_event,
        "routing": routing.to_dict(),
        "intent": intent.to_dict(),
        "functionSelection": selection.to_dict(),
    }
    if batch is not None:
        data["functionResults"] = batch.to_dict()
    if image_model is not None:
        data["imageModel"] = image_model
    return data


async def _save_chat_debug(
    store: "CosmoStore",
    request: NormalizedRequest,
    env: RequestEnvironment,
    category: str,
    patterns: list[str],
    prompt: EnhancedPrompt,
    routing: CosmoRoutingResult,
    telemetry: RunTelemetry,
    *,
    success: bool,
    started: float,
    error_message: Optional[str] = None,
    outcome: Optional[InferenceOutcome] = None,
    prompt_tokens: Optional[int] = None,
    completion_tokens: Optional[int] = None,
) -> None:
    if not debug_logging_enabled(env.system_settings):
        return
    debug = {
        "original_message": request.content,
        "detected_intent": category,
        "intent_patterns": patterns,
        "requested_model": request.requested_model,
        "auto_select_enabled": env.routing_config.enabled,
        "context_sources": prompt.context_sources.to_dict(),
        "system_prompt_preview": prompt.system_prompt[:SYSTEM_PROMPT_PREVIEW_CHARS],
        "full_system_prompt": prompt.system_prompt,
        "selected_model": outcome.model_id if outcome else routing.selected_model_id,
        "model_provider": outcome.provider if outcome else routing.provider,
        "tiers_attempted": [t.model_dump(by_alias=True) for t in telemetry.tiers_attempted],
        "fallback_used": bool(outcome and outcome.fallback_used),
        "functions_invoked": telemetry.functions_invoked,
        "response_time_ms": int((time.perf_counter() - started) * 1000),
        "prompt_tokens": prompt_tokens,
        "completion_tokens": completion_tokens,
        "total_tokens": (
            prompt_tokens + completion_tokens
            if prompt_tokens is not None and completion_tokens is not None
            else None
        ),
        "cost": telemetry.cost if success else None,
        "success": success,
        "error_message": error_message,
    }
    await save_debug_log(
        store,
        debug,
        trace_id=request.trace_id,
        workspace_id=request.workspace_id,
        chat_id=request.chat_id,
        user_id=request.user_id,
    )


async def run_webhook_flow(
    request: NormalizedRequest,
    store: "CosmoStore",
    env: RequestEnvironment,
    state: PipelineState,
    telemetry: RunTelemetry,
) -> dict[str, Any]:
    """Classify the event and run each resolved ``function`` action."""
    ctx = get_trace_context()
    event = request.webhook_event or ""
    payload = request.webhook_payload or {}
    prompt = f"Webhook event: {event}. Data: {json.dumps(payload, default=str)}"

    with trace_span(ctx, "intent_analysis"):
        intent = await analyze_intent_enhanced(
            prompt,
            store,
            routing_config=env.routing_config,
            api_key=env.classifier_api_key,
            context={"webhookEvent": event, "webhookData": payload},
            llm=env.llm,
        )
    log_intent(ctx.trace_id, prompt, intent.category, intent.confidence, intent.intent_key)
    state.advance(PipelineStage.INTENT_ANALYZED)

    actions = _function_actions(intent.actions)
    state.advance(PipelineStage.FUNCTIONS_SELECTED)

    executed: list[dict[str, Any]] = []
    with trace_span(ctx, "function_execution", {"count": len(actions)}):
        for action, function_key in actions:
            result = await execute_function(
                FunctionExecutionRequest(
                    function_key=function_key,
                    context={"webhookEvent": event, "webhookData": payload, **action.extracted_params},
                    request_id=request.request_id,
                ),
                store,
            )
            telemetry.functions_invoked.append(function_key)
            executed.append(_action_entry(action, result))
    state.advance(PipelineStage.FUNCTIONS_EXECUTED)

    logger.info(f"Webhook {event}: {len(executed)} actions executed")
    state.advance(PipelineStage.RESPONSE_BUILT)
    return {
        "message": f"Processed webhook event: {event}",
        "actions_executed": executed,
    }


async def run_system_task_flow(
    request: NormalizedRequest,
    store: "CosmoStore",
    env: RequestEnvironment,
    state: PipelineState,
    telemetry: RunTelemetry,
) -> dict[str, Any]:
    """Resolve actions for the task name itself and run the ``function`` ones."""
    ctx = get_trace_context()
    task_name = request.task_name or "system_task"
    started_at = datetime.now(timezone.utc)

    with trace_span(ctx, "action_resolution"):
        plan = await resolve_actions(
            task_name,
            f"Execute system task: {task_name}",
            dict(request.task_config),
            store,
        )
    state.advance(PipelineStage.INTENT_ANALYZED)
    actions = _function_actions(plan.actions)
    state.advance(PipelineStage.FUNCTIONS_SELECTED)

    results: list[dict[str, Any]] = []
    with trace_span(ctx, "function_execution", {"count": len(actions)}):
        for action, function_key in actions:
            result = await execute_function(
                FunctionExecutionRequest(
                    function_key=function_key,
                    context={"taskName": task_name, **request.task_config, **action.extracted_params},
                    request_id=request.request_id,
                ),
                store,
            )
            telemetry.functions_invoked.append(function_key)
            results.append(_action_entry(action, result))
    state.advance(PipelineStage.FUNCTIONS_EXECUTED)

    success = all(r["success"] for r in results)
    logger.info(f"System task {task_name}: {len(results)} actions, success={success}")
    state.advance(PipelineStage.RESPONSE_BUILT)
    return {
        "task_name": task_name,
        "success": success,
        "started_at": started_at.isoformat(),
        "completed_at": datetime.now(timezone.utc).isoformat(),
        "results": results,
    }


def _loop_limit_message(max_iterations: int) -> str:
    return (
        f"Agent execution stopped: exceeded maximum iterations limit ({max_iterations}). "
        "This is a safety measure to prevent runaway processes."
    )


async def run_agent_flow(
    request: NormalizedRequest,
    store: "CosmoStore",
    env: RequestEnvironment,
    state: PipelineState,
    telemetry: RunTelemetry,
) -> dict[str, Any]:
    """
    Plan actions for the agent goal and run them under an iteration limit.

    Every planned action costs one iteration.  Passing the limit records a
    ``loop_limit_exceeded`` entry and stops; the request itself still
    succeeds with ``goal_achieved`` False.
    """
    ctx = get_trace_context()
    goal = request.agent_goal or request.content
    max_iterations = request.max_iterations or settings.agent_max_iterations

    with trace_span(ctx, "intent_analysis"):
        intent = await analyze_intent_enhanced(
            goal,
            store,
            routing_config=env.routing_config,
            api_key=env.classifier_api_key,
            context={"agentId": request.agent_id, **request.agent_context},
            llm=env.llm,
        )
    log_intent(ctx.trace_id, goal, intent.category, intent.confidence, intent.intent_key)
    state.advance(PipelineStage.INTENT_ANALYZED)
    state.advance(PipelineStage.FUNCTIONS_SELECTED)

    actions_taken: list[dict[str, Any]] = []
    iteration_count = 0
    limit_exceeded = False

    with trace_span(ctx, "function_execution", {"count": len(intent.actions)}):
        for action in intent.actions:
            iteration_count += 1
            if iteration_count > max_iterations:
                logger.warning(
                    f"[{request.trace_id}] Agent {request.agent_id} hit the iteration limit ({max_iterations})"
                )
                limit_exceeded = True
                actions_taken.append({
                    "actionKey": "loop_limit_exceeded",
                    "success": False,
                    "code": CosmoErrorCode.LOOP_LIMIT_EXCEEDED.value,
                    "error": _loop_limit_message(max_iterations),
                })
                break

            if action.function_key:
                result = await execute_function(
                    FunctionExecutionRequest(
                        function_key=action.function_key,
                        context={
                            "agentId": request.agent_id,
                            "agentGoal": goal,
                            "iterationCount": iteration_count,
                            "maxIterations": max_iterations,
                            **request.agent_context,
                            **action.extracted_params,
                        },
                        request_id=request.request_id,
                    ),
                    store,
                )
                telemetry.functions_invoked.append(action.function_key)
                actions_taken.append(_action_entry(action, result))
            elif action.action_type == ActionType.MODEL_CALL.value:
                # Model calls are answered by the chat path, not inline here.
                actions_taken.append({
                    "actionKey": action.action_key,
                    "actionType": action.action_type,
                    "success": True,
                    "data": {"deferred": True, "config": dict(action.config)},
                })
            else:
                logger.debug(f"Agent skipping {action.action_type} action {action.action_key}")
    state.advance(PipelineStage.FUNCTIONS_EXECUTED)

    goal_achieved = (
        not limit_exceeded
        and bool(actions_taken)
        and all(a["success"] for a in actions_taken)
    )
    if limit_exceeded:
        next_steps = [
            "Agent loop limit exceeded - review agent configuration",
            "Consider breaking goal into smaller sub-tasks",
        ]
        reasoning = f"Agent execution stopped after {iteration_count} iterations (limit: {max_iterations})"
    else:
        next_steps = [] if goal_achieved else ["Retry failed actions", "Request human assistance"]
        reasoning = f"Executed {len(actions_taken)} actions based on intent analysis"

    state.advance(PipelineStage.RESPONSE_BUILT)
    return {
        "actions_taken": actions_taken,
        "goal_achieved": goal_achieved,
        "next_steps": next_steps,
        "reasoning": reasoning,
        "iterations": iteration_count,
        "max_iterations": max_iterations,
    }


FLOWS = {
    RequestType.CHAT: run_chat_flow,
    RequestType.API_CALL: run_chat_flow,
    RequestType.WEBHOOK: run_webhook_flow,
    RequestType.SYSTEM_TASK: run_system_task_flow,
    RequestType.AGENT_ACTION: run_agent_flow,
}


# =============================================================================
# Entry point
# =============================================================================


def debug_info(
    state: Optional[PipelineState],
    telemetry: RunTelemetry,
    trace_id: Optional[str] = None,
    request_id: Optional[str] = None,
) -> DebugInfo:
    ctx = get_trace_context()
    return DebugInfo(
        tokens_used=telemetry.tokens_used,
        cost=telemetry.cost,
        model_used=telemetry.model_used,
        cost_tier=telemetry.cost_tier,
        timings_ms=ctx.timings_ms(),
        trace_id=trace_id or ctx.trace_id,
        request_id=request_id,
        stage=state.stage.value if state else PipelineStage.ERROR.value,
        tiers_attempted=list(telemetry.tiers_attempted),
        functions_invoked=list(telemetry.functions_invoked),
    )


def coded_failure(exc: Exception, trace_id: Optional[str]) -> CosmoError:
    """
    Map a failure onto its caller-facing ``CosmoError`` and log it.

    Unexpected exceptions become INTERNAL_ERROR with the default message;
    their text stays in the log.
    """
    error = error_from_exception(exc, trace_id=trace_id)
    if error.code != CosmoErrorCode.INTERNAL_ERROR:
        logger.error(f"[{trace_id}] Request failed: {error.code.value}: {error.message}")
        return error
    logger.exception(f"[{trace_id}] Request failed: {exc}")
    if isinstance(exc, CosmoError):
        return error
    return CosmoError(CosmoErrorCode.INTERNAL_ERROR, details=type(exc).__name__, trace_id=trace_id)


async def orchestrate(
    request: Incoming,
    store: "CosmoStore",
    llm: Optional[LLMClient] = None,
) -> ExecutionResult:
    """
    Run one request end to end.

    Accepts a raw payload, a validated variant, or an already normalized
    request.  Never raises: every failure is returned as an
    ``ExecutionResult`` carrying a coded error.
    """
    telemetry = RunTelemetry()
    normalized: Optional[NormalizedRequest] = None
    state: Optional[PipelineState] = None

    try:
        normalized = request if isinstance(request, NormalizedRequest) else normalize_request(request)
        create_trace_context(normalized.trace_id, normalized.request_id, normalized.user_id)
        state = PipelineState(trace_id=normalized.trace_id)
        logger.info(
            f"[{normalized.trace_id}] {normalized.request_type.value} request {normalized.request_id} "
            f"from {normalized.source.type}"
        )

        env = await load_environment(store, llm)
        data = await FLOWS[normalized.request_type](normalized, store, env, state, telemetry)
        state.advance(PipelineStage.COMPLETE)

        logger.info(f"[{normalized.trace_id}] ✅ Request complete")
        return ExecutionResult(
            success=True,
            data=data,
            debug=debug_info(state, telemetry, normalized.trace_id, normalized.request_id),
        )
    except Exception as e:
        error = coded_failure(e, normalized.trace_id if normalized else None)
        if state is not None and not state.is_terminal:
            state.fail(error)
        return ExecutionResult(
            success=False,
            error=ExecutionError.from_cosmo_error(error),
            debug=debug_info(
                state,
                telemetry,
                normalized.trace_id if normalized else None,
                normalized.request_id if normalized else None,
            ),
        )
    finally:
        clear_trace_context()
