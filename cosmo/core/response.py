"""
Response Processor.

Post-processes model output (suggested actions, entities, follow-ups) and
does the accounting: heuristic token estimates, cost, the SSE metadata
line and the audit rows.
"""
from __future__ import annotations

import json
import logging
import math
import re
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Optional

from cosmo.config import settings
from cosmo.core.actions.models import ExtractedEntity

if TYPE_CHECKING:
    from cosmo.services.store import CosmoStore

logger = logging.getLogger(__name__)

MAX_FOLLOW_UPS = 3
ELABORATE_THRESHOLD_CHARS = 500
TOKENS_PER_PRICING_UNIT = 1_000_000

_URL_RE = re.compile(r"https?://[^\s]+")
_DATE_RES: tuple[re.Pattern[str], ...] = (
    re.compile(r"\b\d{1,2}/\d{1,2}/\d{2,4}\b"),
    re.compile(r"\b\d{4}-\d{2}-\d{2}\b"),
    re.compile(
        r"\b(?:January|February|March|April|May|June|July|August|September|October|November|December)"
        r"\s+\d{1,2},?\s*\d{4}\b",
        re.IGNORECASE,
    ),
)


@dataclass(frozen=True)
class SuggestedAction:
    type: str
    label: str
    enabled: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "label": self.label, "enabled": self.enabled}


@dataclass(frozen=True)
class ProcessedResponse:
    content: str
    suggested_actions: list[SuggestedAction] = field(default_factory=list)
    extracted_entities: list[ExtractedEntity] = field(default_factory=list)
    follow_up_recommendations: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "content": self.content,
            "suggestedActions": [a.to_dict() for a in self.suggested_actions],
            "extractedEntities": [e.to_dict() for e in self.extracted_entities],
            "followUpRecommendations": list(self.follow_up_recommendations),
        }


@dataclass(frozen=True)
class CosmoMetadata:
    """What the client is told about how the answer was produced."""
    actual_model_used: str
    cosmo_selected: bool
    detected_category: str
    cost_tier: str
    functions_invoked: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class TokenEstimate:
    prompt: int
    completion: int

    @property
    def total(self) -> int:
        return self.prompt + self.completion


def contains_code(content: str) -> bool:
    return "`" in content


def extract_urls(content: str) -> list[ExtractedEntity]:
    return [ExtractedEntity(type="url", value=m.group(0), confidence=1.0) for m in _URL_RE.finditer(content)]


def extract_dates(content: str) -> list[ExtractedEntity]:
    return [
        ExtractedEntity(type="date", value=m.group(0), confidence=0.9)
        for pattern in _DATE_RES
        for m in pattern.finditer(content)
    ]


def generate_actions(content: str) -> list[SuggestedAction]:
    actions = [SuggestedAction("save", "Save Response")]
    if contains_code(content):
        actions.append(SuggestedAction("export", "Export Code"))
    actions.append(SuggestedAction("regenerate", "Regenerate"))
    if len(content) > ELABORATE_THRESHOLD_CHARS:
        actions.append(SuggestedAction("elaborate", "Elaborate More"))
    actions.append(SuggestedAction("share", "Share"))
    return actions


def generate_follow_ups(content: str) -> list[str]:
    lower = content.lower()
    follow_ups: list[str] = []
    if "step" in lower or "first" in lower:
        follow_ups.append("Can you explain any of these steps in more detail?")
    if "alternative" in lower or "option" in lower:
        follow_ups.append("What are the pros and cons of each option?")
    if contains_code(content):
        follow_ups.append("Can you add error handling to this code?")
        follow_ups.append("How would I test this?")
    if not follow_ups:
        follow_ups = [
            "Can you provide more examples?",
            "How does this compare to alternatives?",
        ]
    return follow_ups[:MAX_FOLLOW_UPS]


def process_response(content: str) -> ProcessedResponse:
    """Suggested actions, URL/date entities and follow-ups for ``content``."""
    content = content or ""
    processed = ProcessedResponse(
        content=content,
        suggested_actions=generate_actions(content),
        extracted_entities=extract_urls(content) + extract_dates(content),
        follow_up_recommendations=generate_follow_ups(content),
    )
    logger.debug(
        f"Response processed: {len(processed.extracted_entities)} entities, "
        f"{len(processed.suggested_actions)} actions, "
        f"{len(processed.follow_up_recommendations)} follow-ups"
    )
    return processed


def create_metadata_event(metadata: CosmoMetadata) -> str:
    """SSE ``data:`` line announcing the model and routing outcome."""
    payload = {
        "type": "metadata",
        "actualModelUsed": metadata.actual_model_used,
        "cosmoSelected": metadata.cosmo_selected,
        "detectedCategory": metadata.detected_category,
        "costTier": metadata.cost_tier,
        "functionsInvoked": list(metadata.functions_invoked),
    }
    return f"data: {json.dumps(payload)}\n\n"


def create_actions_event(actions: list[SuggestedAction]) -> str:
    payload = {"type": "actions", "suggestedActions": [a.to_dict() for a in actions]}
    return f"data: {json.dumps(payload)}\n\n"


def estimate_tokens(text: str) -> TokenEstimate:
    """~4 characters per prompt token; a fixed completion estimate."""
    return TokenEstimate(
        prompt=math.ceil(len(text or "") / settings.chars_per_token),
        completion=settings.estimated_completion_tokens,
    )


def calculate_cost(
    tokens: TokenEstimate,
    pricing_prompt: float,
    pricing_completion: float,
) -> float:
    """Dollar cost; pricing is per 1M tokens."""
    return (
        tokens.prompt / TOKENS_PER_PRICING_UNIT * (pricing_prompt or 0.0)
        + tokens.completion / TOKENS_PER_PRICING_UNIT * (pricing_completion or 0.0)
    )


async def save_debug_log(
    store: "CosmoStore",
    debug: dict[str, Any],
    *,
    trace_id: Optional[str] = None,
    workspace_id: Optional[str] = None,
    chat_id: Optional[str] = None,
    user_id: Optional[str] = None,
) -> bool:
    """Persist the debug bag when enabled; failures are logged, not raised."""
    if not settings.debug_log_enabled:
        return False
    return await store.save_debug_log(
        debug,
        trace_id=trace_id,
        workspace_id=workspace_id,
        chat_id=chat_id,
        user_id=user_id,
    )
