"""
Function Selector - decides which registered functions a request needs.

Candidates are scored against the intent:

    +10  function_key listed in intent.required_functions
    +3   per tag contained in the intent category
    +2   per tag containing any required-function term
    +2   description mentions the intent category

Zero-score functions are dropped and ``chat`` is always kept as a safety
net.  Execution order is a fixed two-bucket heuristic: data-fetching
functions first, then processing functions, then everything else.  It is
not a dependency scheduler; a function that needs the output of two other
non-adjacent functions has no way to say so.
"""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Sequence

from cosmo.core.functions.models import FunctionCandidate, FunctionSelection
from cosmo.core.intent.models import IntentAnalysis

if TYPE_CHECKING:
    from cosmo.services.store import CosmoStore

logger = logging.getLogger(__name__)

CHAT_FUNCTION = "chat"

DATA_FUNCTIONS: tuple[str, ...] = ("maps", "gmail", "calendar", "web_search", "knowledge_base")
PROCESSING_FUNCTIONS: tuple[str, ...] = ("chat", "image_generation")

REQUIRED_FUNCTION_SCORE = 10
CATEGORY_TAG_SCORE = 3
REQUIRED_TAG_SCORE = 2
DESCRIPTION_SCORE = 2


def score_function_relevance(fn: FunctionCandidate, intent: IntentAnalysis) -> int:
    score = 0
    category = intent.category.lower()
    required = [rf.lower() for rf in intent.required_functions]

    if fn.function_key in intent.required_functions:
        score += REQUIRED_FUNCTION_SCORE

    for tag in fn.tags:
        tag_lower = tag.lower()
        if tag_lower and tag_lower in category:
            score += CATEGORY_TAG_SCORE
        if any(rf in tag_lower for rf in required):
            score += REQUIRED_TAG_SCORE

    if fn.description and category in fn.description.lower():
        score += DESCRIPTION_SCORE

    return score


def determine_execution_order(function_keys: Sequence[str]) -> list[str]:
    """Data-fetching functions, then processing functions, then the rest.

    Each bucket keeps the order of ``function_keys``; the result is a
    permutation of the de-duplicated input.
    """
    ordered: list[str] = []
    for key in function_keys:
        if key in DATA_FUNCTIONS and key not in ordered:
            ordered.append(key)
    for key in function_keys:
        if key in PROCESSING_FUNCTIONS and key not in ordered:
            ordered.append(key)
    for key in function_keys:
        if key not in ordered:
            ordered.append(key)
    return ordered


def rank_functions(
    candidates: Sequence[FunctionCandidate],
    intent: IntentAnalysis,
) -> FunctionSelection:
    """Pure selection over an already-loaded registry."""
    if not candidates:
        return FunctionSelection(
            selected_functions=[CHAT_FUNCTION],
            execution_order=[CHAT_FUNCTION],
            reasoning="No functions registered, defaulting to chat",
        )

    scored = [(fn, score_function_relevance(fn, intent)) for fn in candidates]
    # sort() is stable, so equal scores keep registry order
    scored.sort(key=lambda pair: pair[1], reverse=True)

    selected: list[str] = []
    for fn, score in scored:
        if score > 0 and fn.function_key not in selected:
            selected.append(fn.function_key)

    has_chat = any(fn.function_key == CHAT_FUNCTION for fn in candidates)
    if has_chat and CHAT_FUNCTION not in selected:
        selected.append(CHAT_FUNCTION)
    if not selected:
        selected.append(CHAT_FUNCTION)

    return FunctionSelection(
        selected_functions=selected,
        execution_order=determine_execution_order(selected),
        reasoning=(
            f"Selected {len(selected)} functions for {intent.category} intent "
            f"with {intent.confidence * 100:.0f}% confidence"
        ),
    )


async def select_functions(intent: IntentAnalysis, store: "CosmoStore") -> FunctionSelection:
    """Load enabled functions and pick the ones ``intent`` needs."""
    logger.info("Selecting functions")
    result = await store.load_functions()
    if not result.ok:
        logger.warning(f"Function registry unavailable ({result.error}), defaulting to chat")
    logger.debug(f"Available functions loaded: {len(result.value)}")

    selection = rank_functions(result.value, intent)
    logger.info(
        f"Function selection complete: {selection.selected_functions} "
        f"order={selection.execution_order}"
    )
    return selection


async def is_function_available(function_key: str, store: "CosmoStore") -> bool:
    result = await store.get_function(function_key)
    return result.ok and result.value is not None and result.value.is_enabled
