"""
Tests for intent analysis.

Covers local keyword detection, AI escalation (and its failure modes),
the registry cache fallback and the enhanced analysis with action plans.
"""
from __future__ import annotations

import httpx
import pytest

from cosmo.core.intent.analyzer import (
    AI_ERROR_CONFIDENCE,
    AI_UNMATCHED_CONFIDENCE,
    analyze_intent,
    analyze_intent_enhanced,
    build_classifier_messages,
    classify_with_ai,
    match_category,
    needs_context,
    refresh_intent_cache,
    requires_function,
)
from cosmo.core.intent.detection import (
    default_detection,
    detect_intent_locally,
    keyword_ratio,
    suggest_enhancements,
)
from cosmo.core.intent.models import IntentAnalysis, IntentDefinition
from cosmo.core.intent.registry import BUILTIN_INTENTS, IntentRegistry, get_intent_registry
from cosmo.core.routing.models import CosmoRoutingConfig
from cosmo.services.load_result import LoadResult

from tests.conftest import completion_body


CODING = IntentDefinition(
    intent_key="coding",
    category="coding",
    keywords=("error",),
    required_functions=("chat",),
    context_needs=("history",),
    priority=50,
)

ROUTING = CosmoRoutingConfig(
    enabled=True,
    model_id="classifier/model",
    provider="OpenRouter",
    system_prompt="Classify.",
    fallback_category="general",
)


class FakeStore:
    """Just enough of CosmoStore for the registry and the resolver."""

    def __init__(self, intents=(), mappings=(), fail: bool = False):
        self.intents = list(intents)
        self.mappings = list(mappings)
        self.fail = fail
        self.intent_loads = 0

    async def load_intents(self) -> LoadResult:
        self.intent_loads += 1
        if self.fail:
            return LoadResult.failure([], "cosmo_intents", RuntimeError("db down"))
        return LoadResult.success(list(self.intents))

    async def load_action_mappings(self) -> LoadResult:
        return LoadResult.success(list(self.mappings))


# ---------------------------------------------------------------------------
# Local detection
# ---------------------------------------------------------------------------


class TestLocalDetection:

    def test_explain_error_is_coding(self) -> None:
        detection = detect_intent_locally("explain this error in my code", [CODING])
        assert detection.category == "coding"
        assert "chat" in detection.functions
        assert detection.confidence == 0.9

    def test_no_match_is_general_at_floor(self) -> None:
        detection = detect_intent_locally("zzz qqq", [CODING])
        assert detection == default_detection(0.3)
        assert detection.category == "general"
        assert detection.confidence == 0.3
        assert detection.functions == ("chat",)

    def test_empty_registry(self) -> None:
        assert detect_intent_locally("explain this error", []).category == "general"

    def test_weak_match_does_not_beat_floor(self) -> None:
        wide = IntentDefinition(
            intent_key="wide", category="wide",
            keywords=tuple(f"kw{i}" for i in range(10)), priority=0,
        )
        # 1 of 10 keywords: 0.1 < 0.3
        assert detect_intent_locally("kw1 here", [wide]).category == "general"

    def test_confidence_is_capped(self) -> None:
        detection = detect_intent_locally("error error", [CODING])
        assert detection.confidence == 0.9

    def test_priority_breaks_ratio_ties(self) -> None:
        low = IntentDefinition(intent_key="low", category="low", keywords=("error",), priority=10)
        high = IntentDefinition(intent_key="high", category="high", keywords=("error",), priority=90)
        assert detect_intent_locally("an error", [low, high]).category == "high"

    def test_equal_scores_keep_registry_order(self) -> None:
        a = IntentDefinition(intent_key="a", category="a", keywords=("error",), priority=50)
        b = IntentDefinition(intent_key="b", category="b", keywords=("error",), priority=50)
        assert detect_intent_locally("an error", [a, b]).category == "a"
        assert detect_intent_locally("an error", [b, a]).category == "b"

    def test_keyword_ratio(self) -> None:
        assert keyword_ratio("debug this code", ["code", "debug", "error", "function"]) == 0.5
        assert keyword_ratio("anything", []) == 0.0

    def test_suggest_enhancements(self) -> None:
        assert suggest_enhancements("Explain how to sort, with an example") == [
            "elaborate", "include_examples", "step_by_step",
        ]
        assert suggest_enhancements("hello") == []

    def test_builtins_classify_analysis(self) -> None:
        detection = detect_intent_locally("please analyze and compare these", BUILTIN_INTENTS)
        assert detection.category == "analysis"


# ---------------------------------------------------------------------------
# Classifier
# ---------------------------------------------------------------------------


class TestMatchCategory:

    def test_exact(self) -> None:
        assert match_category(" Coding ", ["coding", "creative"]) == ("coding", 0.95)

    def test_substring(self) -> None:
        assert match_category("The category is creative.", ["coding", "creative"]) == ("creative", 0.85)

    def test_no_match(self) -> None:
        assert match_category("weather", ["coding"]) == (None, 0.0)
        assert match_category(None, ["coding"]) == (None, 0.0)

    def test_classifier_messages_list_categories(self) -> None:
        messages = build_classifier_messages("fix it", "Classify.", ["coding", "creative"])
        assert messages[0]["content"].endswith("Available categories: coding, creative")
        assert '"fix it"' in messages[1]["content"]


class TestClassifyWithAI:

    async def test_matched_category(self, make_llm) -> None:
        llm = make_llm(lambda request, payload: httpx.Response(200, json=completion_body("coding")))
        result = await classify_with_ai("fix", ROUTING, "key", (CODING,), llm)
        assert result.category == "coding"
        assert result.intent_key == "coding"
        assert result.matched is True
        assert llm.sent[0]["model"] == "classifier/model"
        assert llm.sent[0]["temperature"] == 0.1

    async def test_http_500_falls_back(self, make_llm) -> None:
        llm = make_llm(lambda request, payload: httpx.Response(500))
        result = await classify_with_ai("fix", ROUTING, "key", (CODING,), llm)
        assert result.category == "general"
        assert result.confidence == AI_UNMATCHED_CONFIDENCE

    async def test_transport_error_falls_back(self, make_llm) -> None:
        def handler(request, payload):
            raise httpx.ConnectError("refused", request=request)

        result = await classify_with_ai("fix", ROUTING, "key", (CODING,), make_llm(handler))
        assert result.category == "general"
        assert result.confidence == AI_ERROR_CONFIDENCE

    async def test_unmatched_answer(self, make_llm) -> None:
        llm = make_llm(lambda request, payload: httpx.Response(200, json=completion_body("cooking")))
        result = await classify_with_ai("fix", ROUTING, "key", (CODING,), llm)
        assert result.matched is False
        assert result.category == "general"


# ---------------------------------------------------------------------------
# analyze_intent
# ---------------------------------------------------------------------------


class TestAnalyzeIntent:

    async def test_registry_row_supplies_functions(self, store, seed_intents) -> None:
        analysis = await analyze_intent("explain this error in my code", store)
        assert analysis.category == "coding"
        assert analysis.required_functions == ["chat"]
        assert analysis.context_needs == ["history"]
        assert "elaborate" in analysis.suggested_enhancements

    async def test_empty_registry_is_general(self, store) -> None:
        analysis = await analyze_intent("what's up", store)
        assert analysis.category == "general"
        assert analysis.confidence == 0.3
        assert analysis.required_functions == ["chat"]

    async def test_failed_load_serves_builtins(self) -> None:
        store = FakeStore(fail=True)
        analysis = await analyze_intent("debug this function", store, registry=IntentRegistry())
        assert analysis.category == "coding"

    async def test_no_escalation_without_key(self, make_llm) -> None:
        llm = make_llm(lambda request, payload: httpx.Response(200, json=completion_body("coding")))
        store = FakeStore(intents=[CODING])
        await analyze_intent("hello there", store, ROUTING, api_key=None, llm=llm, registry=IntentRegistry())
        assert llm.sent == []

    async def test_no_escalation_when_confident(self, make_llm) -> None:
        llm = make_llm(lambda request, payload: httpx.Response(200, json=completion_body("creative")))
        store = FakeStore(intents=[CODING])
        analysis = await analyze_intent("an error", store, ROUTING, "key", llm, IntentRegistry())
        assert analysis.category == "coding"
        assert llm.sent == []

    async def test_ai_overrides_weak_local(self, make_llm) -> None:
        creative = IntentDefinition(
            intent_key="story_time", category="creative", keywords=("story",),
            required_functions=("chat", "image_generation"),
        )
        llm = make_llm(lambda request, payload: httpx.Response(200, json=completion_body("creative")))
        store = FakeStore(intents=[CODING, creative])
        analysis = await analyze_intent("something vague", store, ROUTING, "key", llm, IntentRegistry())
        assert analysis.category == "creative"
        assert analysis.confidence == 0.95
        assert analysis.required_functions == ["chat", "image_generation"]

    async def test_ai_failure_keeps_local(self, make_llm) -> None:
        llm = make_llm(lambda request, payload: httpx.Response(500))
        store = FakeStore(intents=[CODING])
        analysis = await analyze_intent("something vague", store, ROUTING, "key", llm, IntentRegistry())
        # fallback verdict (0.5) beats the floor but "general" is not a registry category
        assert analysis.category == "general"
        assert analysis.confidence == 0.3

    async def test_confidence_bounded(self, store, seed_intents) -> None:
        for prompt in ("", "error", "code error debug function", "near restaurant"):
            analysis = await analyze_intent(prompt, store)
            assert 0.0 <= analysis.confidence <= 1.0

    async def test_registry_cached_across_calls(self) -> None:
        store = FakeStore(intents=[CODING])
        registry = IntentRegistry()
        await analyze_intent("error", store, registry=registry)
        await analyze_intent("error", store, registry=registry)
        assert store.intent_loads == 1

    async def test_refresh_intent_cache(self, store, db_session, seed_intents) -> None:
        registry = get_intent_registry()
        await registry.get(store)
        assert registry.cache.is_fresh()
        refresh_intent_cache()
        assert not registry.cache.is_fresh()


class TestHelpers:

    def test_requires_function_and_context(self) -> None:
        intent = IntentAnalysis(
            category="coding", confidence=0.9,
            required_functions=["chat", "maps"], context_needs=["history"],
        )
        assert requires_function(intent, "maps")
        assert not requires_function(intent, "web_search")
        assert needs_context(intent, "history")
        assert not needs_context(intent, "persona")

    def test_to_dict_is_camel_case(self) -> None:
        data = IntentAnalysis(category="general", confidence=0.3).to_dict()
        assert set(data) == {
            "category", "confidence", "requiredFunctions", "suggestedEnhancements", "contextNeeds",
        }


# ---------------------------------------------------------------------------
# Enhanced analysis
# ---------------------------------------------------------------------------


class TestEnhancedAnalysis:

    async def test_plan_and_parameters(self, store, seed_intents, seed_actions) -> None:
        analysis = await analyze_intent_enhanced(
            "find a restaurant near Boston on 2024-05-01", store,
        )
        assert analysis.intent_key == "location_search"
        assert [a.action_key for a in analysis.actions] == ["lookup_places", "answer"]
        assert analysis.parameter_extractions == {"place": "Boston"}
        assert analysis.action_plan.should_stream is True
        types = {e.type for e in analysis.entity_extractions}
        assert {"date", "number"} <= types

    async def test_wildcard_only_for_unmatched(self, store, seed_actions) -> None:
        analysis = await analyze_intent_enhanced("hello", store)
        assert analysis.intent_key == "general"
        assert [a.action_key for a in analysis.actions] == ["answer"]

    async def test_to_dict(self, store, seed_intents, seed_actions) -> None:
        data = (await analyze_intent_enhanced("restaurant near Paris", store)).to_dict()
        assert data["intentKey"] == "location_search"
        assert data["actionPlan"]["executionOrder"] == ["lookup_places", "answer"]
        assert data["parameterExtractions"] == {"place": "Paris"}
