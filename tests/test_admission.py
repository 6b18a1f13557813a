"""
Unit tests for complexity scoring and the admission pre-check.
"""

import pytest

from flowsmith.config.loader import AdmissionConfig, PricingConfig
from flowsmith.core.admission import pre_check
from flowsmith.core.complexity import (
    ComplexityTier,
    find_integrations,
    score_request,
    tier_for_score,
)
from flowsmith.core.errors import InsufficientCredits, TierNotPermitted
from flowsmith.core.request import GenerationRequest
from flowsmith.storage.models import CreditBalance

ROUTING_PROMPT = (
    "When a lead arrives in hubspot, route it to slack and gmail, otherwise escalate"
)


class TestComplexityScoring:
    """Test deterministic request scoring."""

    def test_simple_request(self):
        estimate = score_request("Send a slack message")
        assert estimate.word_count == 4
        assert estimate.branching_hits == 0
        assert estimate.integration_hits == 1
        assert estimate.score == 2
        assert estimate.tier == ComplexityTier.LOW

    def test_branching_multi_app_request(self):
        estimate = score_request(ROUTING_PROMPT)
        assert estimate.word_count == 14
        assert estimate.branching_hits == 4
        assert estimate.integration_hits == 3
        assert estimate.app_count == 3
        # 14 // 10 + 3 * 4 + 2 * 3 + 5 * 2
        assert estimate.score == 29
        assert estimate.tier == ComplexityTier.HIGH

    def test_declared_integrations_count_as_apps(self):
        without = score_request("Send a slack message")
        with_declared = score_request("Send a slack message", ["notion", "Jira"])
        assert with_declared.app_count == 3
        assert with_declared.score == without.score + 10

    def test_deterministic(self):
        assert score_request(ROUTING_PROMPT) == score_request(ROUTING_PROMPT)

    def test_word_count_is_capped(self):
        estimate = score_request("word " * 1000)
        assert estimate.score == 30

    @pytest.mark.parametrize("score,tier", [
        (0, ComplexityTier.LOW),
        (9, ComplexityTier.LOW),
        (10, ComplexityTier.MEDIUM),
        (20, ComplexityTier.HIGH),
        (34, ComplexityTier.HIGH),
        (35, ComplexityTier.VERY_HIGH),
    ])
    def test_tier_bands(self, score, tier):
        assert tier_for_score(score, (10, 20, 35)) == tier

    def test_find_integrations_appends_declared_after_mentioned(self):
        assert find_integrations("gmail then slack", ["Slack", "stripe"]) == ["slack", "gmail", "stripe"]

    def test_find_integrations_matches_whole_words(self):
        assert find_integrations("data-driven worksheets for the slackers") == []
        assert find_integrations("Upload to Google Drive, then update Sheets") == ["sheets", "drive"]


class TestPreCheck:
    """Test admission decisions against balance snapshots."""

    def _check(self, regular, bonus=0, tier="pro", prompt="Send a slack message"):
        request = GenerationRequest(principal_id="p1", prompt=prompt)
        balance = CreditBalance(principal_id="p1", regular=regular, bonus=bonus, tier=tier)
        return pre_check(request, balance, PricingConfig(), AdmissionConfig())

    def test_admitted(self):
        decision = self._check(regular=10)
        assert decision.estimated_cost == 5
        assert decision.estimate.tier == ComplexityTier.LOW

    def test_bonus_counts_towards_balance(self):
        decision = self._check(regular=2, bonus=3)
        assert decision.balance.total == 5

    def test_insufficient_credits(self):
        with pytest.raises(InsufficientCredits) as exc_info:
            self._check(regular=3, bonus=1)
        error = exc_info.value
        assert error.required == 5
        assert error.available == 4
        assert error.stage == "admission"
        assert error.kind == "insufficient_credits"

    def test_expensive_request_needs_more(self):
        with pytest.raises(InsufficientCredits) as exc_info:
            self._check(regular=10, prompt=ROUTING_PROMPT)
        assert exc_info.value.required == 12

    def test_tier_not_permitted(self):
        with pytest.raises(TierNotPermitted):
            self._check(regular=100, tier="starter")

    def test_tier_is_case_insensitive(self):
        assert self._check(regular=10, tier="Agency").estimated_cost == 5


class TestGenerationRequest:

    def test_request_id_generated(self):
        first = GenerationRequest(principal_id="p1", prompt="x")
        second = GenerationRequest(principal_id="p1", prompt="x")
        assert first.request_id and first.request_id != second.request_id

    def test_empty_prompt_rejected(self):
        with pytest.raises(ValueError, match="prompt"):
            GenerationRequest(principal_id="p1", prompt="   ")

    def test_unknown_workflow_type_rejected(self):
        with pytest.raises(ValueError, match="workflow_type"):
            GenerationRequest(principal_id="p1", prompt="x", workflow_type="chaos")

    def test_integrations_become_tuple(self):
        request = GenerationRequest(principal_id="p1", prompt="x", integrations=["slack"])
        assert request.integrations == ("slack",)
