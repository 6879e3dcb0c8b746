"""Tests for function selection and execution ordering."""
from __future__ import annotations

import itertools

from cosmo.core.functions.models import FunctionCandidate
from cosmo.core.functions.selector import (
    determine_execution_order,
    is_function_available,
    rank_functions,
    score_function_relevance,
    select_functions,
)
from cosmo.core.intent.models import IntentAnalysis


def intent(category: str = "general", required: tuple[str, ...] = ("chat",)) -> IntentAnalysis:
    return IntentAnalysis(category=category, confidence=0.8, required_functions=list(required))


CHAT = FunctionCandidate(function_key="chat", tags=("conversation",))
MAPS = FunctionCandidate(function_key="maps", description="Location lookups", tags=("location",))
KB = FunctionCandidate(function_key="knowledge_base", tags=("knowledge",))
IMAGE = FunctionCandidate(function_key="image_generation", tags=("creative", "image"))
CUSTOM = FunctionCandidate(function_key="summarize", tags=("summary",))


class TestScoring:

    def test_required_function(self) -> None:
        assert score_function_relevance(MAPS, intent("general", ("maps",))) >= 10

    def test_category_tag(self) -> None:
        assert score_function_relevance(MAPS, intent("location", ())) == 3 + 2

    def test_tag_containing_required_term(self) -> None:
        fn = FunctionCandidate(function_key="x", tags=("maps_v2",))
        assert score_function_relevance(fn, intent("general", ("maps",))) == 2

    def test_irrelevant_scores_zero(self) -> None:
        assert score_function_relevance(CUSTOM, intent("coding", ("chat",))) == 0


class TestExecutionOrder:

    def test_data_then_processing_then_rest(self) -> None:
        assert determine_execution_order(["summarize", "chat", "maps", "knowledge_base"]) == [
            "maps", "knowledge_base", "chat", "summarize",
        ]

    def test_is_permutation(self) -> None:
        keys = ["chat", "maps", "summarize", "image_generation", "web_search"]
        for perm in itertools.permutations(keys):
            order = determine_execution_order(list(perm))
            assert sorted(order) == sorted(keys)
            assert len(order) == len(set(order))

    def test_duplicates_collapse(self) -> None:
        assert determine_execution_order(["chat", "chat", "maps"]) == ["maps", "chat"]


class TestRankFunctions:

    def test_empty_registry_defaults_to_chat(self) -> None:
        selection = rank_functions([], intent())
        assert selection.selected_functions == ["chat"]
        assert selection.execution_order == ["chat"]

    def test_location_intent(self) -> None:
        selection = rank_functions([CHAT, MAPS, KB, CUSTOM], intent("location", ("maps", "chat")))
        assert selection.selected_functions == ["maps", "chat"]
        assert selection.execution_order == ["maps", "chat"]
        assert "location" in selection.reasoning

    def test_chat_kept_even_when_unscored(self) -> None:
        selection = rank_functions([CHAT, MAPS], intent("location", ("maps",)))
        assert "chat" in selection.selected_functions

    def test_nothing_relevant_still_chat(self) -> None:
        selection = rank_functions([CUSTOM], intent("coding", ()))
        assert selection.selected_functions == ["chat"]

    def test_order_is_permutation_of_selection(self) -> None:
        candidates = [CHAT, MAPS, KB, IMAGE, CUSTOM]
        for perm in itertools.permutations(candidates):
            selection = rank_functions(list(perm), intent("creative", ("chat", "image_generation", "maps")))
            assert sorted(selection.execution_order) == sorted(selection.selected_functions)

    def test_to_dict(self) -> None:
        data = rank_functions([], intent()).to_dict()
        assert data["selectedFunctions"] == ["chat"]
        assert data["executionOrder"] == ["chat"]


class TestSelectFunctions:

    async def test_empty_database(self, store) -> None:
        selection = await select_functions(intent(), store)
        assert selection.selected_functions == ["chat"]
        assert selection.execution_order == ["chat"]

    async def test_from_database(self, store, seed_functions) -> None:
        selection = await select_functions(intent("knowledge", ("knowledge_base", "chat")), store)
        assert selection.execution_order == ["knowledge_base", "chat"]

    async def test_is_function_available(self, store, seed_functions) -> None:
        assert await is_function_available("maps", store)
        assert not await is_function_available("gmail", store)
