"""
Unit tests for exemplar selection.
"""

import pytest

from flowsmith.core.complexity import score_request
from flowsmith.core.exemplars import (
    CORPUS,
    CORPUS_VERSION,
    Exemplar,
    ExemplarComplexity,
    exemplars_by_category,
    exemplars_by_complexity,
    request_keywords,
    select_exemplars,
)
from flowsmith.core.request import GenerationRequest


def _exemplar(name, category, tags, complexity=ExemplarComplexity.MEDIUM):
    return Exemplar(name=name, description=name, category=category, tags=tuple(tags),
                    complexity=complexity, node_count=20, node_types=())


SYNC_REQUEST = GenerationRequest(principal_id="p1", prompt="Sync shopify orders to hubspot crm")


class TestCorpus:

    def test_corpus_shape(self):
        assert CORPUS_VERSION
        assert len(CORPUS) == 14
        assert len({exemplar.name for exemplar in CORPUS}) == 14

    def test_by_category(self):
        names = [e.name for e in exemplars_by_category("Project Management")]
        assert names == ["Asana to Notion Sync", "Jira Ticket Management"]

    def test_by_complexity(self):
        simple = exemplars_by_complexity(ExemplarComplexity.SIMPLE)
        assert {e.name for e in simple} == {"AI Agent Routing", "Shopify to HubSpot Sync"}


class TestKeywords:

    def test_whole_words_only(self):
        request = GenerationRequest(principal_id="p1", prompt="Email the team about each order")
        keywords = request_keywords(request)
        assert "email" in keywords
        assert "order" in keywords
        assert "ai" not in keywords

    def test_declared_integrations_added(self):
        request = GenerationRequest(principal_id="p1", prompt="Do things", integrations=("Stripe",))
        assert request_keywords(request) == ["stripe"]


class TestSelection:
    """Test ranking, diversity and determinism."""

    def test_selects_relevant_diverse_exemplars(self):
        picks = select_exemplars(SYNC_REQUEST, 3)
        assert [e.name for e in picks] == [
            "Shopify to HubSpot Sync",
            "HubSpot Customer Onboarding",
            "Asana to Notion Sync",
        ]

    def test_no_repeated_category_when_avoidable(self):
        picks = select_exemplars(SYNC_REQUEST, 5)
        categories = [e.category for e in picks]
        assert len(categories) == len(set(categories))

    def test_deterministic(self):
        assert select_exemplars(SYNC_REQUEST, 3) == select_exemplars(SYNC_REQUEST, 3)

    def test_uses_supplied_estimate(self):
        estimate = score_request(SYNC_REQUEST.prompt)
        assert select_exemplars(SYNC_REQUEST, 3, estimate=estimate) == select_exemplars(SYNC_REQUEST, 3)

    def test_workflow_type_hint_adds_category_bonus(self):
        corpus = (
            _exemplar("A", "Analytics", ["x"]),
            _exemplar("B", "Marketing", ["x"]),
        )
        request = GenerationRequest(principal_id="p1", prompt="Do things", workflow_type="customer_journey")
        assert [e.name for e in select_exemplars(request, 1, corpus)] == ["B"]

    def test_fills_from_repeated_categories_when_few_exist(self):
        corpus = (
            _exemplar("A", "Same", ["shopify"]),
            _exemplar("B", "Same", ["hubspot", "shopify"]),
            _exemplar("C", "Same", []),
        )
        picks = select_exemplars(SYNC_REQUEST, 2, corpus)
        assert [e.name for e in picks] == ["B", "A"]

    def test_ties_keep_corpus_order(self):
        corpus = (
            _exemplar("First", "One", ["x"]),
            _exemplar("Second", "Two", ["x"]),
            _exemplar("Third", "Three", ["x"]),
        )
        assert [e.name for e in select_exemplars(SYNC_REQUEST, 2, corpus)] == ["First", "Second"]

    @pytest.mark.parametrize("k", [0, -1])
    def test_non_positive_k(self, k):
        assert select_exemplars(SYNC_REQUEST, k) == []

    def test_empty_corpus(self):
        assert select_exemplars(SYNC_REQUEST, 3, corpus=()) == []

    def test_k_larger_than_corpus(self):
        corpus = (_exemplar("Only", "One", []),)
        assert len(select_exemplars(SYNC_REQUEST, 5, corpus)) == 1
