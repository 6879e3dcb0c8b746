"""
Intent Analyzer - COSMO's first pipeline stage.

Classifies a raw prompt against the intent registry:

1. Local keyword detection (always; no network).
2. AI escalation when local confidence is below the escalation threshold,
   routing is enabled and an API key is present.  The AI verdict is kept
   only when it is more confident than the local one AND names a known
   registry category.  Classifier failures are absorbed, never raised.
3. The final category's registry row supplies required functions and
   context needs.

The enhanced variant also extracts entities and resolves an action plan
for the detected intent key.
"""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Optional

from cosmo.config import settings
from cosmo.core.actions.entities import extract_entities
from cosmo.core.actions.resolver import get_action_resolver, resolve_actions
from cosmo.core.intent.detection import detect_intent_locally, suggest_enhancements
from cosmo.core.intent.models import (
    GENERAL_CATEGORY,
    AIClassification,
    EnhancedIntentAnalysis,
    IntentAnalysis,
    IntentDefinition,
)
from cosmo.core.intent.registry import IntentRegistry, get_intent_registry
from cosmo.core.llm_client import LLMClient, get_llm_client
from cosmo.core.routing.models import CosmoRoutingConfig

if TYPE_CHECKING:
    from cosmo.services.store import CosmoStore

logger = logging.getLogger(__name__)

AI_EXACT_CONFIDENCE = 0.95
AI_SUBSTRING_CONFIDENCE = 0.85
AI_UNMATCHED_CONFIDENCE = 0.5
AI_ERROR_CONFIDENCE = 0.3


def build_classifier_messages(
    prompt: str,
    system_prompt: str,
    categories: list[str],
) -> list[dict[str, str]]:
    """Messages for the category classifier call."""
    return [
        {
            "role": "system",
            "content": f"{system_prompt}\n\nAvailable categories: {', '.join(categories)}",
        },
        {
            "role": "user",
            "content": f'Analyze this prompt and respond with ONLY the category name:\n\n"{prompt}"',
        },
    ]


def match_category(raw: Optional[str], categories: list[str]) -> tuple[Optional[str], float]:
    """
    Map a classifier answer onto a known category.

    Case-insensitive exact match first, then the first category contained
    in the answer.  Returns ``(None, 0.0)`` when nothing matches.
    """
    answer = (raw or "").strip().lower()
    if not answer:
        return None, 0.0
    for category in categories:
        if category.lower() == answer:
            return category, AI_EXACT_CONFIDENCE
    for category in categories:
        if category.lower() in answer:
            return category, AI_SUBSTRING_CONFIDENCE
    return None, 0.0


def _intent_key_for(category: str, intents: tuple[IntentDefinition, ...]) -> str:
    wanted = category.lower()
    for intent in intents:
        if intent.category.lower() == wanted:
            return intent.intent_key
    return category


async def classify_with_ai(
    prompt: str,
    routing_config: CosmoRoutingConfig,
    api_key: str,
    intents: tuple[IntentDefinition, ...],
    llm: Optional[LLMClient] = None,
) -> AIClassification:
    """Ask the configured classifier model for a category. Never raises."""
    fallback = routing_config.fallback_category or GENERAL_CATEGORY
    categories = list(dict.fromkeys(i.category for i in intents))
    llm = llm or get_llm_client()

    try:
        response = await llm.chat_completion(
            messages=build_classifier_messages(prompt, routing_config.system_prompt, categories),
            model=routing_config.model_id,
            provider=routing_config.provider,
            temperature=settings.classifier_temperature,
            max_tokens=settings.classifier_max_tokens,
            api_key=api_key,
            timeout=settings.classifier_timeout,
        )
    except Exception as e:
        # httpx.HTTPStatusError (non-2xx) is a soft miss, anything else an error.
        status = getattr(getattr(e, "response", None), "status_code", None)
        if status is not None:
            logger.warning(f"AI intent analysis failed with HTTP {status}")
            return AIClassification(fallback, AI_UNMATCHED_CONFIDENCE, fallback)
        logger.error(f"AI intent analysis error: {e}")
        return AIClassification(fallback, AI_ERROR_CONFIDENCE, fallback)

    category, confidence = match_category(response.content, categories)
    if category is None:
        logger.info(f"AI intent answer {response.content!r} matched no category")
        return AIClassification(fallback, AI_UNMATCHED_CONFIDENCE, fallback)

    return AIClassification(
        category=category,
        confidence=confidence,
        intent_key=_intent_key_for(category, intents),
        matched=True,
    )


async def analyze_intent(
    prompt: str,
    store: "CosmoStore",
    routing_config: Optional[CosmoRoutingConfig] = None,
    api_key: Optional[str] = None,
    llm: Optional[LLMClient] = None,
    registry: Optional[IntentRegistry] = None,
) -> IntentAnalysis:
    """Classify ``prompt`` into an ``IntentAnalysis``."""
    analysis, _ = await _analyze(prompt, store, routing_config, api_key, llm, registry)
    return analysis


async def _analyze(
    prompt: str,
    store: "CosmoStore",
    routing_config: Optional[CosmoRoutingConfig],
    api_key: Optional[str],
    llm: Optional[LLMClient],
    registry: Optional[IntentRegistry],
) -> tuple[IntentAnalysis, str]:
    """Shared body of both analyses; also returns the local intent key."""
    registry = registry or get_intent_registry()
    intents = (await registry.get(store)).value

    local = detect_intent_locally(prompt, intents)
    logger.debug(f"Local detection: {local.category} ({local.confidence:.2f})")

    category, confidence = local.category, local.confidence
    if (
        local.confidence < settings.ai_escalation_threshold
        and routing_config is not None
        and routing_config.enabled
        and api_key
    ):
        ai = await classify_with_ai(prompt, routing_config, api_key, intents, llm)
        known = {i.category.lower() for i in intents}
        if ai.confidence > local.confidence and ai.category.lower() in known:
            category, confidence = ai.category, ai.confidence
            logger.info(f"AI detection overrides local: {category} ({confidence:.2f})")

    info = next((i for i in intents if i.category.lower() == category.lower()), None)
    if info is not None:
        required = list(info.required_functions)
        contexts = list(info.context_needs)
    else:
        required = list(local.functions)
        contexts = list(local.contexts)

    analysis = IntentAnalysis(
        category=category,
        confidence=max(0.0, min(1.0, confidence)),
        required_functions=required,
        suggested_enhancements=suggest_enhancements(prompt),
        context_needs=contexts,
    )
    logger.info(f"Intent analysis complete: {analysis.category} ({analysis.confidence:.2f})")
    return analysis, local.intent_key


async def analyze_intent_enhanced(
    prompt: str,
    store: "CosmoStore",
    routing_config: Optional[CosmoRoutingConfig] = None,
    api_key: Optional[str] = None,
    context: Optional[dict[str, Any]] = None,
    llm: Optional[LLMClient] = None,
    registry: Optional[IntentRegistry] = None,
) -> EnhancedIntentAnalysis:
    """``analyze_intent`` plus entities and the resolved action plan."""
    basic, intent_key = await _analyze(prompt, store, routing_config, api_key, llm, registry)

    entities = extract_entities(prompt)
    logger.debug(f"Extracted {len(entities)} entities from prompt")

    plan = await resolve_actions(
        intent_key,
        prompt,
        {**(context or {}), "confidence": basic.confidence},
        store,
    )

    parameters: dict[str, str] = {}
    for action in plan.actions:
        parameters.update(action.extracted_params)

    logger.info(f"Enhanced intent analysis complete: {len(plan.actions)} actions planned")
    return EnhancedIntentAnalysis(
        category=basic.category,
        confidence=basic.confidence,
        required_functions=basic.required_functions,
        suggested_enhancements=basic.suggested_enhancements,
        context_needs=basic.context_needs,
        intent_key=intent_key,
        action_plan=plan,
        parameter_extractions=parameters,
        entity_extractions=entities,
    )


def requires_function(intent: IntentAnalysis, function_key: str) -> bool:
    return function_key in intent.required_functions


def needs_context(intent: IntentAnalysis, need: str) -> bool:
    return str(getattr(need, "value", need)) in intent.context_needs


async def get_available_categories(store: "CosmoStore") -> list[str]:
    return await get_intent_registry().categories(store)


async def get_available_intent_keys(store: "CosmoStore") -> list[str]:
    return await get_intent_registry().intent_keys(store)


def refresh_intent_cache() -> None:
    """Drop cached intents and action mappings (admin edited them)."""
    get_intent_registry().invalidate()
    get_action_resolver().invalidate()
