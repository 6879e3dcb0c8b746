"""
Local (keyword) intent detection.

Pure functions over an already-loaded registry; no I/O.
"""
from __future__ import annotations

from typing import Iterable

from cosmo.config import settings
from cosmo.core.intent.models import (
    GENERAL_CATEGORY,
    ContextNeed,
    IntentDefinition,
    LocalDetection,
)

# Cap on the confidence local keyword matching may claim.
MAX_LOCAL_CONFIDENCE = 0.9

ENHANCEMENT_TRIGGERS: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("elaborate", ("explain", "detail")),
    ("include_examples", ("example",)),
    ("step_by_step", ("step", "how to")),
)


def default_detection(floor: float | None = None) -> LocalDetection:
    """Result when nothing in the registry matches."""
    return LocalDetection(
        category=GENERAL_CATEGORY,
        confidence=settings.local_confidence_floor if floor is None else floor,
        functions=("chat",),
        contexts=(ContextNeed.PERSONA.value, ContextNeed.HISTORY.value),
        intent_key=GENERAL_CATEGORY,
    )


def keyword_ratio(prompt_lower: str, keywords: Iterable[str]) -> float:
    """Fraction of ``keywords`` that occur in the (lower-cased) prompt."""
    keywords = [k for k in keywords if k]
    if not keywords:
        return 0.0
    matches = sum(1 for k in keywords if k.lower() in prompt_lower)
    return matches / len(keywords)


def detect_intent_locally(
    prompt: str,
    intents: Iterable[IntentDefinition],
    floor: float | None = None,
) -> LocalDetection:
    """
    Score every intent by keyword hit ratio plus ``priority / 1000``.

    The best adjusted score must beat the floor; on equal scores the intent
    seen first wins, and intents arrive ordered by priority descending, so
    ties go to priority then registry order.  The reported confidence is
    ``min(ratio * 2, 0.9)``; no winner yields ``general`` at the floor.
    """
    floor = settings.local_confidence_floor if floor is None else floor
    prompt_lower = (prompt or "").lower()

    best: LocalDetection | None = None
    best_score = floor
    for intent in intents:
        if not intent.keywords:
            continue
        ratio = keyword_ratio(prompt_lower, intent.keywords)
        adjusted = ratio + intent.priority / 1000
        if ratio > 0 and adjusted > best_score:
            best_score = adjusted
            best = LocalDetection(
                category=intent.category,
                confidence=min(ratio * 2, MAX_LOCAL_CONFIDENCE),
                functions=tuple(intent.required_functions) or ("chat",),
                contexts=tuple(intent.context_needs),
                intent_key=intent.intent_key,
            )

    return best or default_detection(floor)


def suggest_enhancements(prompt: str) -> list[str]:
    """Prompt-modification hints from plain substring checks."""
    lower = (prompt or "").lower()
    return [
        hint
        for hint, triggers in ENHANCEMENT_TRIGGERS
        if any(t in lower for t in triggers)
    ]
