"""Dataclass models for action resolution."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class ActionType(str, Enum):
    FUNCTION = "function"
    CHAIN = "chain"
    MODEL_CALL = "model_call"
    EXTERNAL_API = "external_api"
    SYSTEM = "system"


class Complexity(str, Enum):
    SIMPLE = "simple"
    MODERATE = "moderate"
    COMPLEX = "complex"


WILDCARD_INTENT = "*"


@dataclass(frozen=True)
class ActionMapping:
    """Snapshot of one ``cosmo_action_mappings`` row."""
    intent_key: str
    action_key: str
    action_type: str = ActionType.FUNCTION.value
    action_config: dict[str, Any] = field(default_factory=dict)
    parameter_patterns: dict[str, Any] = field(default_factory=dict)
    required_context: tuple[str, ...] = ()
    priority: int = 50
    conditions: dict[str, Any] = field(default_factory=dict)
    id: Optional[str] = None

    def applies_to(self, intent_key: str) -> bool:
        return self.intent_key == intent_key or self.intent_key == WILDCARD_INTENT


@dataclass(frozen=True)
class CosmoAction:
    """One executable step of an action plan."""
    action_key: str
    action_type: str
    config: dict[str, Any] = field(default_factory=dict)
    extracted_params: dict[str, str] = field(default_factory=dict)
    priority: int = 50
    required_context: tuple[str, ...] = ()
    conditions: dict[str, Any] = field(default_factory=dict)

    @property
    def function_key(self) -> Optional[str]:
        """Function this action runs, when it is a ``function`` action."""
        if self.action_type != ActionType.FUNCTION.value:
            return None
        key = self.config.get("function_key")
        return str(key) if key else None

    def to_dict(self) -> dict[str, Any]:
        return {
            "actionKey": self.action_key,
            "actionType": self.action_type,
            "config": dict(self.config),
            "extractedParams": dict(self.extracted_params),
            "priority": self.priority,
            "requiredContext": list(self.required_context),
        }


@dataclass(frozen=True)
class ActionPlan:
    """Ordered actions for one intent, highest priority first."""
    actions: list[CosmoAction] = field(default_factory=list)
    execution_order: list[str] = field(default_factory=list)
    estimated_complexity: Complexity = Complexity.SIMPLE
    should_stream: bool = False
    total_estimated_time_ms: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "actions": [a.to_dict() for a in self.actions],
            "executionOrder": list(self.execution_order),
            "estimatedComplexity": self.estimated_complexity.value,
            "shouldStream": self.should_stream,
            "totalEstimatedTimeMs": self.total_estimated_time_ms,
        }


@dataclass(frozen=True)
class ExtractedEntity:
    """A structured value found in free text, with its character span."""
    type: str
    value: str
    confidence: float
    start_index: Optional[int] = None
    end_index: Optional[int] = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "type": self.type,
            "value": self.value,
            "confidence": self.confidence,
        }
        if self.start_index is not None:
            data["startIndex"] = self.start_index
            data["endIndex"] = self.end_index
        return data
