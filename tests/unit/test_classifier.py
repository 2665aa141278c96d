"""
Tests for the keyword intent classifier agent.

Validates that:
- Keyword hits map to the canonical capabilities
- Confidence grows with the number of hits
- Ties are flagged ambiguous and penalised
- Rule priority decides the primary intent on ties
- process() classifies the request type plus its text payload
"""

import pytest

from multiagent_orchestrator.agents.classifier import (
    AMBIGUITY_PENALTY,
    IntentRule,
    KeywordIntentClassifier,
)
from multiagent_orchestrator.context import ExecutionContext
from multiagent_orchestrator.models.agents import AgentCategory, Capability
from multiagent_orchestrator.models.requests import BaseRequest, ExecutionConstraints


@pytest.fixture()
def classifier() -> KeywordIntentClassifier:
    return KeywordIntentClassifier()


class TestIntentRule:
    """Verify rule scoring."""

    def test_keywords_lowercased(self) -> None:
        rule = IntentRule("quiz_generation", ["Quiz", "MCQ"])
        assert rule.keywords == ["quiz", "mcq"]

    def test_score_counts_distinct_keywords(self) -> None:
        rule = IntentRule("quiz_generation", ["quiz", "mcq"])
        assert rule.score("quiz quiz quiz") == 1
        assert rule.score("an mcq quiz") == 2
        assert rule.score("nothing here") == 0

    def test_to_dict(self) -> None:
        rule = IntentRule("quiz_generation", ["quiz"], priority=3)
        assert rule.to_dict() == {
            "capability": "quiz_generation",
            "keywords": ["quiz"],
            "priority": 3,
        }


class TestClassify:
    """Verify classification results."""

    def test_single_hit(self, classifier: KeywordIntentClassifier) -> None:
        result = classifier.classify("make a quiz on polity")
        assert result["capability"] == Capability.QUIZ_GENERATION
        assert result["confidence"] == 0.5
        assert result["ambiguous"] is False
        assert result["secondary"] == []

    def test_more_hits_more_confidence(self, classifier: KeywordIntentClassifier) -> None:
        result = classifier.classify("generate a quiz with mcq questions")
        assert result["capability"] == Capability.QUIZ_GENERATION
        assert result["confidence"] == 0.75

    def test_case_insensitive(self, classifier: KeywordIntentClassifier) -> None:
        result = classifier.classify("TRANSCRIBE this RECORDING")
        assert result["capability"] == Capability.TRANSCRIPTION
        assert result["confidence"] == pytest.approx(0.667)

    def test_no_match(self, classifier: KeywordIntentClassifier) -> None:
        result = classifier.classify("hello there")
        assert result == {
            "capability": None,
            "confidence": 0.0,
            "ambiguous": False,
            "secondary": [],
        }

    def test_tie_is_ambiguous_and_penalised(self, classifier: KeywordIntentClassifier) -> None:
        result = classifier.classify("quiz and essay")
        assert result["ambiguous"] is True
        assert result["capability"] == Capability.QUIZ_GENERATION
        assert result["confidence"] == 0.5 * AMBIGUITY_PENALTY
        assert result["secondary"] == [
            {"capability": Capability.WRITING_EVALUATION, "confidence": 0.5}
        ]

    def test_priority_breaks_ties(self) -> None:
        classifier = KeywordIntentClassifier(
            rules=[
                IntentRule("second", ["shared"], priority=5),
                IntentRule("first", ["shared"], priority=1),
            ]
        )
        result = classifier.classify("a shared word")
        assert result["capability"] == "first"
        assert result["ambiguous"] is True

    def test_rules_sorted_by_priority(self) -> None:
        classifier = KeywordIntentClassifier(
            rules=[IntentRule("b", ["b"], priority=9), IntentRule("a", ["a"], priority=2)]
        )
        assert [r.capability for r in classifier.rules] == ["a", "b"]


class TestClassifierAgent:
    """Verify the classifier behaves as an intent_classification agent."""

    def test_metadata(self, classifier: KeywordIntentClassifier) -> None:
        meta = classifier.get_metadata()
        assert meta.name == "intent-classifier"
        assert meta.category == AgentCategory.ORCHESTRATION
        assert meta.capabilities == frozenset({"intent_classification"})

    @pytest.mark.anyio
    async def test_process_uses_type_and_payload(self, classifier: KeywordIntentClassifier) -> None:
        request = BaseRequest(
            type="chat", payload={"text": "summarise today's newspaper editorial"}
        )
        context = ExecutionContext(
            request.id, ExecutionConstraints(max_execution_time=5, max_tokens=10, max_cost=0.1)
        )
        response = await classifier.process(request, context)
        assert response.success is True
        assert response.agent_name == "intent-classifier"
        assert response.data["capability"] == Capability.NEWSPAPER_ANALYSIS
        assert response.data["confidence"] == 0.75
        assert response.tokens_used == 0

    @pytest.mark.anyio
    async def test_health_check(self, classifier: KeywordIntentClassifier) -> None:
        assert await classifier.health_check() is True
