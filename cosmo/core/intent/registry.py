"""
Intent registry.

Loads ``cosmo_intents`` through a TTL cache shared by every request in the
process.  When the table cannot be read the built-in table below is served
instead, so analysis degrades rather than fails; the ``LoadResult`` still
carries the load error.
"""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Optional

from cosmo.config import settings
from cosmo.core.intent.models import GENERAL_CATEGORY, IntentDefinition
from cosmo.core.registry_cache import Clock, RegistryCache
from cosmo.services.load_result import LoadResult

if TYPE_CHECKING:
    from cosmo.services.store import CosmoStore

logger = logging.getLogger(__name__)


BUILTIN_INTENTS: tuple[IntentDefinition, ...] = (
    IntentDefinition(
        intent_key="coding",
        category="coding",
        display_name="Code Assistance",
        keywords=("code", "function", "debug", "error", "programming"),
        required_functions=("chat",),
        context_needs=("history",),
        priority=50,
    ),
    IntentDefinition(
        intent_key="creative",
        category="creative",
        display_name="Creative Writing",
        keywords=("write", "story", "poem", "creative", "imagine"),
        required_functions=("chat",),
        context_needs=("persona",),
        priority=50,
    ),
    IntentDefinition(
        intent_key="analysis",
        category="analysis",
        display_name="Data Analysis",
        keywords=("analyze", "explain", "compare", "evaluate", "review"),
        required_functions=("chat",),
        context_needs=("knowledge_base", "history"),
        priority=50,
    ),
    IntentDefinition(
        intent_key="conversation",
        category="conversation",
        display_name="General Conversation",
        keywords=("hello", "hi", "how are", "what is", "tell me"),
        required_functions=("chat",),
        context_needs=("persona", "history"),
        priority=40,
    ),
    IntentDefinition(
        intent_key="reasoning",
        category="reasoning",
        display_name="Complex Reasoning",
        keywords=("solve", "calculate", "prove", "logic", "math"),
        required_functions=("chat",),
        context_needs=("history",),
        priority=50,
    ),
    IntentDefinition(
        intent_key="research",
        category="research",
        display_name="Research Tasks",
        keywords=("research", "find out", "look up", "search for"),
        required_functions=("chat",),
        context_needs=("knowledge_base",),
        priority=50,
    ),
    IntentDefinition(
        intent_key=GENERAL_CATEGORY,
        category=GENERAL_CATEGORY,
        display_name="General",
        keywords=(),
        required_functions=("chat",),
        context_needs=("persona", "history"),
        priority=10,
    ),
)


class IntentRegistry:
    """Cached view of the intent registry with the built-in fallback."""

    def __init__(
        self,
        ttl_seconds: Optional[float] = None,
        clock: Optional[Clock] = None,
    ):
        self._cache: RegistryCache[IntentDefinition] = RegistryCache(
            "intent",
            ttl_seconds if ttl_seconds is not None else settings.intent_cache_ttl_seconds,
            clock=clock,
        )

    @property
    def cache(self) -> RegistryCache[IntentDefinition]:
        return self._cache

    async def get(self, store: "CosmoStore") -> LoadResult[tuple[IntentDefinition, ...]]:
        """Registry rows; the built-in table when the load failed."""
        result = await self._cache.get(store.load_intents)
        if not result.ok:
            logger.warning("Intent registry unavailable, using built-in intents")
            return LoadResult(value=BUILTIN_INTENTS, error=result.error)
        return result

    async def refresh(self, store: "CosmoStore") -> LoadResult[tuple[IntentDefinition, ...]]:
        """Force a reload (admin edited the intents)."""
        return await self._cache.refresh(store.load_intents)

    def invalidate(self) -> None:
        self._cache.invalidate()

    async def categories(self, store: "CosmoStore") -> list[str]:
        """Distinct categories in registry order."""
        intents = (await self.get(store)).value
        return list(dict.fromkeys(i.category for i in intents))

    async def intent_keys(self, store: "CosmoStore") -> list[str]:
        return [i.intent_key for i in (await self.get(store)).value]

    async def by_category(self, store: "CosmoStore", category: str) -> Optional[IntentDefinition]:
        wanted = category.lower()
        for intent in (await self.get(store)).value:
            if intent.category.lower() == wanted:
                return intent
        return None


_registry: Optional[IntentRegistry] = None


def get_intent_registry() -> IntentRegistry:
    """Process-wide registry instance."""
    global _registry
    if _registry is None:
        _registry = IntentRegistry()
    return _registry


def reset_intent_registry() -> None:
    """Drop the process-wide instance (tests)."""
    global _registry
    _registry = None
