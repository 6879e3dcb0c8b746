"""Dataclass models for model routing."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from cosmo.config import DEFAULT_PROVIDER


class CostTier(str, Enum):
    LOW = "low"
    BALANCED = "balanced"
    PREMIUM = "premium"


@dataclass(frozen=True)
class ModelCandidate:
    """Snapshot of one ``ai_models`` row. Pricing is dollars per 1M tokens."""
    model_id: str
    provider: str = DEFAULT_PROVIDER
    name: str = ""
    best_for: Optional[str] = None
    best_for_description: Optional[str] = None
    pricing_prompt: float = 0.0
    pricing_completion: float = 0.0
    is_free: bool = False
    context_length: Optional[int] = None
    default_max_tokens: Optional[int] = None
    default_temperature: Optional[float] = None
    skip_temperature: bool = False

    @property
    def total_cost(self) -> float:
        """Combined prompt + completion price; free models cost nothing."""
        if self.is_free:
            return 0.0
        return (self.pricing_prompt or 0.0) + (self.pricing_completion or 0.0)


@dataclass(frozen=True)
class FallbackModelRef:
    model_id: str
    provider: str


@dataclass(frozen=True)
class CosmoRoutingConfig:
    """Admin routing knobs, read once per request from ``system_settings``."""
    enabled: bool = False
    model_id: str = ""
    provider: str = DEFAULT_PROVIDER
    cost_performance_weight: int = 50
    system_prompt: str = ""
    available_categories: list[str] = field(default_factory=list)
    fallback_category: str = "general"

    @classmethod
    def from_setting(cls, value: Any) -> "CosmoRoutingConfig":
        """Build from the raw JSON setting; missing or malformed means disabled."""
        if not isinstance(value, dict):
            return cls()
        try:
            weight = int(value.get("cost_performance_weight", 50))
        except (TypeError, ValueError):
            weight = 50
        categories = value.get("available_categories") or []
        return cls(
            enabled=bool(value.get("enabled", False)),
            model_id=str(value.get("model_id") or ""),
            provider=str(value.get("provider") or DEFAULT_PROVIDER),
            cost_performance_weight=max(0, min(100, weight)),
            system_prompt=str(value.get("system_prompt") or ""),
            available_categories=[str(c) for c in categories if c],
            fallback_category=str(value.get("fallback_category") or "general"),
        )


@dataclass(frozen=True)
class CosmoRoutingResult:
    selected_model_id: str
    selected_category: str
    provider: str
    cost_tier: CostTier
    models_considered: int
    reasoning: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "selectedModelId": self.selected_model_id,
            "selectedCategory": self.selected_category,
            "provider": self.provider,
            "reasoning": self.reasoning,
            "costTier": self.cost_tier.value,
            "modelsConsidered": self.models_considered,
        }
