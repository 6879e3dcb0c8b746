"""
Model Router - picks the inference model for a request.

The cost-performance weight (0-100) maps onto a tier of the candidates
sorted by total per-token price:

    0..33   low       cheapest third
    34..66  balanced  middle third
    67..100 premium   priciest third

Inside the tier the index is interpolated from the weight's position in
the tier's sub-range, so neighbouring weights never jump across models.
Category detection and image-model selection call the classifier model
and fall back instead of raising.
"""
from __future__ import annotations

import logging
import math
from typing import TYPE_CHECKING, Any, Optional, Sequence

from cosmo.config import DEFAULT_PROVIDER, settings
from cosmo.core.errors import CosmoError, CosmoErrorCode
from cosmo.core.intent.models import IntentAnalysis
from cosmo.core.llm_client import LLMClient, get_llm_client
from cosmo.core.routing.models import (
    CosmoRoutingConfig,
    CosmoRoutingResult,
    CostTier,
    ModelCandidate,
)

if TYPE_CHECKING:
    from cosmo.services.store import CosmoStore

logger = logging.getLogger(__name__)

AUTO_MODEL = "auto"

COST_TIER_LABELS: dict[CostTier, str] = {
    CostTier.LOW: "Lowest Cost",
    CostTier.BALANCED: "Balanced",
    CostTier.PREMIUM: "Best Quality",
}


def get_cost_tier(weight: float) -> CostTier:
    if weight <= 33:
        return CostTier.LOW
    if weight <= 66:
        return CostTier.BALANCED
    return CostTier.PREMIUM


def get_cost_tier_label(weight: float) -> str:
    return COST_TIER_LABELS[get_cost_tier(weight)]


def get_model_cost(model: ModelCandidate) -> float:
    """Total price per 1M tokens; free models cost 0."""
    return model.total_cost


def select_model_by_weight(
    models: Sequence[ModelCandidate],
    weight: float,
) -> Optional[ModelCandidate]:
    """Deterministic weight -> model mapping over the cost-sorted candidates."""
    if not models:
        return None
    if len(models) == 1:
        return models[0]

    by_cost = sorted(models, key=get_model_cost)
    total = len(by_cost)
    tier = get_cost_tier(weight)

    if tier == CostTier.LOW:
        size = max(1, math.ceil(total / 3))
        index = min(math.floor(weight / 33 * size), size - 1)
    elif tier == CostTier.BALANCED:
        start = total // 3
        size = max(1, (2 * total) // 3 - start)
        index = start + min(math.floor((weight - 33) / 33 * size), size - 1)
    else:
        start = (2 * total) // 3
        size = max(1, total - start)
        index = start + min(math.floor((weight - 66) / 34 * size), size - 1)

    index = max(0, min(index, total - 1))
    return by_cost[index]


def filter_by_category(
    models: Sequence[ModelCandidate],
    category: str,
) -> list[ModelCandidate]:
    """Models tagged ``category``; all of them when none is."""
    wanted = category.lower()
    matching = [m for m in models if (m.best_for or "").lower() == wanted]
    return matching or list(models)


async def analyze_prompt_category(
    prompt: str,
    routing_config: CosmoRoutingConfig,
    api_key: Optional[str] = None,
    llm: Optional[LLMClient] = None,
) -> str:
    """
    Ask the classifier model which of ``available_categories`` fits.

    Exact (case-insensitive) answer first, then the first category the
    answer contains.  Non-2xx, malformed bodies, no match or any other
    failure return ``fallback_category``.
    """
    llm = llm or get_llm_client()
    valid = [c.lower() for c in routing_config.available_categories]
    try:
        logger.info(f"Analyzing prompt category with {routing_config.model_id}")
        response = await llm.chat_completion(
            messages=[
                {"role": "system", "content": routing_config.system_prompt},
                {
                    "role": "user",
                    "content": f'Analyze this prompt and respond with ONLY the category name:\n\n"{prompt}"',
                },
            ],
            model=routing_config.model_id,
            provider=routing_config.provider,
            temperature=settings.classifier_temperature,
            max_tokens=settings.classifier_max_tokens,
            api_key=api_key,
            timeout=settings.classifier_timeout,
        )
        answer = (response.content or "").strip().lower()
    except Exception as e:
        logger.warning(f"Category analysis failed, using fallback {routing_config.fallback_category}: {e}")
        return routing_config.fallback_category

    if answer in valid:
        logger.info(f"Detected category: {answer}")
        return answer
    if answer:
        for category in valid:
            if category in answer:
                logger.info(f"Extracted category: {category}")
                return category

    logger.info(f"Could not determine category, using fallback: {routing_config.fallback_category}")
    return routing_config.fallback_category


async def cosmo_select_model(
    prompt: str,
    routing_config: CosmoRoutingConfig,
    candidates: Sequence[ModelCandidate],
    api_key: Optional[str] = None,
    llm: Optional[LLMClient] = None,
) -> CosmoRoutingResult:
    """Detect the category, filter candidates, pick by weight."""
    weight = routing_config.cost_performance_weight
    logger.info(f"Model routing: weight={weight} ({get_cost_tier_label(weight)})")

    category = await analyze_prompt_category(prompt, routing_config, api_key, llm)
    provider = routing_config.provider.lower()

    pool = [
        m for m in candidates
        if (m.best_for or "").lower() == category.lower() and m.provider.lower() == provider
    ]
    if not pool:
        logger.info(f"No models for category {category}, using all active {routing_config.provider} models")
        pool = [m for m in candidates if m.provider.lower() == provider]

    selected = select_model_by_weight(pool, weight)
    if selected is None:
        raise CosmoError(
            CosmoErrorCode.MODEL_UNAVAILABLE,
            "No suitable models available for routing",
        )

    tier = get_cost_tier(weight)
    logger.info(f"Selected {selected.model_id} ({tier.value} tier, {len(pool)} candidates)")
    return CosmoRoutingResult(
        selected_model_id=selected.model_id,
        selected_category=category,
        provider=selected.provider,
        cost_tier=tier,
        models_considered=len(pool),
        reasoning=f"Selected {selected.name or selected.model_id} for {category} task with {tier.value} cost tier",
    )


async def select_image_model(
    prompt: str,
    routing_config: CosmoRoutingConfig,
    image_models: Sequence[ModelCandidate],
    api_key: Optional[str] = None,
    llm: Optional[LLMClient] = None,
) -> Optional[str]:
    """Classifier-picked image model id; the first candidate otherwise."""
    if not image_models:
        return None
    default = image_models[0].model_id
    llm = llm or get_llm_client()

    descriptions = "\n".join(
        f"- {m.model_id}: {m.best_for_description or 'Image generation'}" for m in image_models
    )
    try:
        response = await llm.chat_completion(
            messages=[{
                "role": "user",
                "content": (
                    "Analyze this image generation prompt and respond with ONLY the best model ID."
                    f"\n\nAvailable models:\n{descriptions}\n\nPrompt: \"{prompt}\""
                    "\n\nRespond with ONLY the model ID:"
                ),
            }],
            model=routing_config.model_id,
            provider=routing_config.provider,
            max_tokens=settings.classifier_max_tokens,
            api_key=api_key,
            timeout=settings.classifier_timeout,
        )
    except Exception as e:
        logger.warning(f"Image model selection failed, using {default}: {e}")
        return default

    recommended = (response.content or "").strip()
    if recommended in {m.model_id for m in image_models}:
        logger.info(f"Selected image model: {recommended}")
        return recommended
    logger.info(f"Invalid image model recommendation {recommended!r}, using {default}")
    return default


async def route_model(
    intent: IntentAnalysis,
    routing_config: CosmoRoutingConfig,
    store: "CosmoStore",
    requested_model: Optional[str] = None,
    system_settings: Optional[dict[str, Any]] = None,
) -> CosmoRoutingResult:
    """
    Pick the chat model for an analyzed request.

    An explicit model (anything but ``auto``) wins.  With routing disabled
    the ``default_model`` admin setting is used.  Otherwise the catalogue
    is filtered by the intent category and chosen by weight, falling back
    to the configured fallback model when nothing is selectable.
    """
    system_settings = system_settings or {}
    category = intent.category
    logger.info(f"Model routing started: category={category} requested={requested_model}")

    if requested_model and requested_model != AUTO_MODEL:
        known = await store.get_model(requested_model)
        return CosmoRoutingResult(
            selected_model_id=requested_model,
            selected_category=category,
            provider=known.provider if known else DEFAULT_PROVIDER,
            cost_tier=CostTier.BALANCED,
            models_considered=1,
            reasoning="Model explicitly requested by user",
        )

    if not routing_config.enabled:
        default_setting = system_settings.get("default_model")
        default_model_id = default_setting.get("model_id") if isinstance(default_setting, dict) else None
        if not default_model_id:
            raise CosmoError(
                CosmoErrorCode.CONFIG_MISSING,
                "No default model configured in system settings",
            )
        known = await store.get_model(default_model_id)
        logger.info(f"Routing disabled, using default model {default_model_id}")
        return CosmoRoutingResult(
            selected_model_id=default_model_id,
            selected_category=category,
            provider=(
                default_setting.get("provider")
                or (known.provider if known else DEFAULT_PROVIDER)
            ),
            cost_tier=CostTier.BALANCED,
            models_considered=1,
            reasoning="Cosmo routing disabled, using system default",
        )

    weight = routing_config.cost_performance_weight
    available = (await store.load_models(routing_config.provider)).value
    pool = filter_by_category(available, category)
    logger.info(f"Models filtered by category {category}: {len(pool)} of {len(available)}")

    selected = select_model_by_weight(pool, weight)
    if selected is None:
        fallback = await store.get_fallback_model(system_settings.get("fallback_model"))
        if fallback is None:
            raise CosmoError(
                CosmoErrorCode.ALL_MODELS_FAILED,
                "No models available and no fallback configured",
            )
        logger.warning(f"No suitable model found, using fallback {fallback.model_id}")
        return CosmoRoutingResult(
            selected_model_id=fallback.model_id,
            selected_category=category,
            provider=fallback.provider,
            cost_tier=get_cost_tier(weight),
            models_considered=0,
            reasoning="No suitable model found, using fallback",
        )

    logger.info(f"Model selected: {selected.model_id} weight={weight}")
    return CosmoRoutingResult(
        selected_model_id=selected.model_id,
        selected_category=category,
        provider=selected.provider,
        cost_tier=get_cost_tier(weight),
        models_considered=len(pool),
        reasoning=(
            f"Selected {selected.name or selected.model_id} for {category} task "
            f"with {get_cost_tier_label(weight)} preference"
        ),
    )
