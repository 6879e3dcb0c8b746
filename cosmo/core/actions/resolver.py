"""
Action resolver.

Expands an intent key into an ordered ``ActionPlan`` using the
``cosmo_action_mappings`` table: mappings for the key (or ``*``) whose
conditions hold, with parameters pulled out of the prompt by regex.
"""
from __future__ import annotations

import logging
import re
from typing import TYPE_CHECKING, Any, Optional

from cosmo.config import settings
from cosmo.core.actions.models import (
    ActionMapping,
    ActionPlan,
    ActionType,
    Complexity,
    CosmoAction,
)
from cosmo.core.registry_cache import Clock, RegistryCache
from cosmo.services.load_result import LoadResult

if TYPE_CHECKING:
    from cosmo.services.store import CosmoStore

logger = logging.getLogger(__name__)

# Rough per-action latency estimates (ms).
ESTIMATED_TIME_MS: dict[str, int] = {
    ActionType.MODEL_CALL.value: 2000,
    ActionType.EXTERNAL_API.value: 500,
}
DEFAULT_ESTIMATED_TIME_MS = 100


def _match_group(pattern: str, prompt: str) -> Optional[str]:
    match = re.search(pattern, prompt, re.IGNORECASE)
    if match and match.groups() and match.group(1):
        return match.group(1)
    return None


def extract_parameters(prompt: str, patterns: dict[str, Any]) -> dict[str, str]:
    """
    Pull named parameters out of ``prompt``.

    Each pattern is either a regex string or ``{"pattern": ..., "default": ...}``;
    the first capture group is the value.  Invalid patterns are logged and
    skipped.
    """
    extracted: dict[str, str] = {}
    for name, rule in (patterns or {}).items():
        if isinstance(rule, str):
            pattern, default = rule, None
        elif isinstance(rule, dict) and rule.get("pattern"):
            pattern, default = str(rule["pattern"]), rule.get("default")
        else:
            continue
        try:
            value = _match_group(pattern, prompt)
        except re.error as e:
            logger.warning(f"Invalid parameter pattern for {name}: {e}")
            continue
        if value:
            extracted[name] = value
        elif default:
            extracted[name] = str(default)
    return extracted


def check_conditions(
    conditions: dict[str, Any],
    prompt: str,
    context: dict[str, Any],
) -> bool:
    """All of ``contains_keyword``, ``requires_context`` and ``min_confidence`` must hold."""
    lower_prompt = prompt.lower()
    for key, value in (conditions or {}).items():
        if key == "contains_keyword":
            keywords = value if isinstance(value, list) else [value]
            if not any(str(kw).lower() in lower_prompt for kw in keywords):
                return False
        elif key == "requires_context":
            required = value if isinstance(value, list) else [value]
            if any(not context.get(str(name)) for name in required):
                return False
        elif key == "min_confidence":
            confidence = context.get("confidence")
            if confidence and float(confidence) < float(value):
                return False
    return True


def estimate_complexity(actions: list[CosmoAction]) -> Complexity:
    if len(actions) <= 1:
        return Complexity.SIMPLE
    if len(actions) <= 3:
        return Complexity.MODERATE
    return Complexity.COMPLEX


def build_plan(
    mappings: list[ActionMapping] | tuple[ActionMapping, ...],
    intent_key: str,
    prompt: str,
    context: Optional[dict[str, Any]] = None,
) -> ActionPlan:
    """Pure plan construction from already-loaded mappings."""
    context = context or {}
    actions: list[CosmoAction] = []
    for mapping in mappings:
        if not mapping.applies_to(intent_key):
            continue
        if not check_conditions(mapping.conditions, prompt, context):
            logger.debug(f"Skipping action {mapping.action_key}: conditions not met")
            continue
        actions.append(CosmoAction(
            action_key=mapping.action_key,
            action_type=mapping.action_type,
            config=dict(mapping.action_config),
            extracted_params=extract_parameters(prompt, mapping.parameter_patterns),
            priority=mapping.priority,
            required_context=mapping.required_context,
            conditions=dict(mapping.conditions),
        ))

    # Stable: equal priorities keep mapping order.
    actions.sort(key=lambda a: a.priority, reverse=True)

    return ActionPlan(
        actions=actions,
        execution_order=[a.action_key for a in actions],
        estimated_complexity=estimate_complexity(actions),
        should_stream=any(a.action_type == ActionType.MODEL_CALL.value for a in actions),
        total_estimated_time_ms=sum(
            ESTIMATED_TIME_MS.get(a.action_type, DEFAULT_ESTIMATED_TIME_MS) for a in actions
        ),
    )


class ActionResolver:
    """Cached action mappings plus plan resolution."""

    def __init__(
        self,
        ttl_seconds: Optional[float] = None,
        clock: Optional[Clock] = None,
    ):
        self._cache: RegistryCache[ActionMapping] = RegistryCache(
            "action mapping",
            ttl_seconds if ttl_seconds is not None else settings.action_cache_ttl_seconds,
            clock=clock,
        )

    async def mappings(self, store: "CosmoStore") -> LoadResult[tuple[ActionMapping, ...]]:
        return await self._cache.get(store.load_action_mappings)

    async def resolve_actions(
        self,
        intent_key: str,
        prompt: str,
        context: Optional[dict[str, Any]],
        store: "CosmoStore",
    ) -> ActionPlan:
        """Resolve ``intent_key`` to a plan; a failed mapping load yields an empty plan."""
        result = await self.mappings(store)
        if not result.ok:
            logger.warning(f"Action mappings unavailable ({result.error}), resolving empty plan")
        plan = build_plan(result.value, intent_key, prompt, context)
        logger.info(
            f"Action plan for {intent_key}: {len(plan.actions)} actions, "
            f"{plan.estimated_complexity.value}"
        )
        return plan

    def invalidate(self) -> None:
        self._cache.invalidate()


_resolver: Optional[ActionResolver] = None


def get_action_resolver() -> ActionResolver:
    """Process-wide resolver instance."""
    global _resolver
    if _resolver is None:
        _resolver = ActionResolver()
    return _resolver


def reset_action_resolver() -> None:
    global _resolver
    _resolver = None


async def resolve_actions(
    intent_key: str,
    prompt: str,
    context: Optional[dict[str, Any]],
    store: "CosmoStore",
) -> ActionPlan:
    """Module-level shortcut over the process-wide resolver."""
    return await get_action_resolver().resolve_actions(intent_key, prompt, context, store)
