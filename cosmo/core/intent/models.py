"""Dataclass models for intent analysis."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from cosmo.core.actions.models import ActionPlan, CosmoAction, ExtractedEntity


class ContextNeed(str, Enum):
    """Context sources an intent may ask the prompt builder to inject."""
    PERSONA = "persona"
    HISTORY = "history"
    KNOWLEDGE_BASE = "knowledge_base"
    PERSONAL_CONTEXT = "personal_context"


GENERAL_CATEGORY = "general"


@dataclass(frozen=True)
class IntentDefinition:
    """Snapshot of one intent registry row."""
    intent_key: str
    category: str
    keywords: tuple[str, ...] = ()
    required_functions: tuple[str, ...] = ()
    context_needs: tuple[str, ...] = ()
    priority: int = 50
    display_name: str = ""


@dataclass(frozen=True)
class LocalDetection:
    """Outcome of keyword scoring against the registry."""
    category: str
    confidence: float
    functions: tuple[str, ...]
    contexts: tuple[str, ...]
    intent_key: str


@dataclass(frozen=True)
class AIClassification:
    """Outcome of the model-based classifier call."""
    category: str
    confidence: float
    intent_key: str
    matched: bool = False


@dataclass(frozen=True)
class IntentAnalysis:
    """Classified intent for one prompt.

    ``confidence`` is always within [0, 1] and ``category`` is either a
    registry category or the fallback ``general``.
    """
    category: str
    confidence: float
    required_functions: list[str] = field(default_factory=list)
    suggested_enhancements: list[str] = field(default_factory=list)
    context_needs: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "category": self.category,
            "confidence": self.confidence,
            "requiredFunctions": list(self.required_functions),
            "suggestedEnhancements": list(self.suggested_enhancements),
            "contextNeeds": list(self.context_needs),
        }


@dataclass(frozen=True)
class EnhancedIntentAnalysis(IntentAnalysis):
    """Intent plus the resolved action plan and extracted entities."""
    intent_key: str = GENERAL_CATEGORY
    action_plan: ActionPlan = field(default_factory=ActionPlan)
    parameter_extractions: dict[str, str] = field(default_factory=dict)
    entity_extractions: list[ExtractedEntity] = field(default_factory=list)

    @property
    def actions(self) -> list[CosmoAction]:
        return self.action_plan.actions

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data.update({
            "intentKey": self.intent_key,
            "actionPlan": self.action_plan.to_dict(),
            "parameterExtractions": dict(self.parameter_extractions),
            "entityExtractions": [e.to_dict() for e in self.entity_extractions],
        })
        return data
