"""
Keyword-based intent classification agent.

Serves the ``intent_classification`` capability without an external model:
priority-ordered :class:`IntentRule` objects are scored against the request
type and its textual payload fields. A model-backed classifier can replace
it by registering another agent for the same capability, as long as it
returns the same result shape::

    {"capability": str | None, "confidence": float,
     "ambiguous": bool, "secondary": [{"capability": str, "confidence": float}]}
"""

import logging
from typing import Any

from multiagent_orchestrator.agent import BaseAgent
from multiagent_orchestrator.context import ExecutionContext
from multiagent_orchestrator.logging_config import get_structured_logger
from multiagent_orchestrator.models.agents import AgentCategory, AgentMetadata, Capability
from multiagent_orchestrator.models.requests import BaseRequest, BaseResponse

logger: logging.LoggerAdapter[Any] = get_structured_logger(__name__)

# Confidence multiplier applied when two capabilities score the same.
AMBIGUITY_PENALTY = 0.5


class IntentRule:
    """Maps keywords to a capability.

    Rules are evaluated in priority order; on equal scores the rule with the
    lower priority number is reported as the primary intent.

    Attributes:
        capability: Capability the rule points at.
        keywords: Case-insensitive keywords matched against the request text.
        priority: Lower numbers win ties.
    """

    def __init__(self, capability: str, keywords: list[str], priority: int = 100) -> None:
        self.capability = capability
        self.keywords = [k.lower() for k in keywords]
        self.priority = priority

    def score(self, text: str) -> int:
        """Number of distinct keywords present in ``text`` (already lowercased)."""
        return sum(1 for keyword in self.keywords if keyword in text)

    def to_dict(self) -> dict[str, Any]:
        return {
            "capability": self.capability,
            "keywords": self.keywords,
            "priority": self.priority,
        }


def _build_default_rules() -> list[IntentRule]:
    """Build the default keyword rules for the canonical capabilities."""
    return [
        IntentRule(
            Capability.NEWSPAPER_ANALYSIS,
            ["newspaper", "news", "article", "editorial", "headline", "current affairs"],
            priority=10,
        ),
        IntentRule(
            Capability.QUIZ_GENERATION,
            ["quiz", "mcq", "multiple choice", "questions", "test me", "practice"],
            priority=20,
        ),
        IntentRule(
            Capability.WRITING_EVALUATION,
            ["essay", "evaluate", "grammar", "feedback", "answer writing", "review my"],
            priority=30,
        ),
        IntentRule(
            Capability.MOCK_INTERVIEW,
            ["interview", "mock", "panel", "personality test"],
            priority=40,
        ),
        IntentRule(
            Capability.TRANSCRIPTION,
            ["transcribe", "transcription", "audio to text", "speech to text", "recording"],
            priority=50,
        ),
        IntentRule(
            Capability.TEXT_TO_SPEECH,
            ["text to speech", "read aloud", "narrate", "voice", "tts"],
            priority=60,
        ),
    ]


class KeywordIntentClassifier(BaseAgent):
    """Intent classification agent scoring keyword rules.

    Confidence for a capability with ``n`` keyword hits is ``n / (n + 1)``:
    one hit gives 0.5, two give about 0.67. When the best score is shared by
    more than one capability the result is flagged ambiguous and its
    confidence is multiplied by :data:`AMBIGUITY_PENALTY`.

    Args:
        rules: Classification rules. Defaults to the canonical capability rules.
        name: Agent name.
    """

    def __init__(self, rules: list[IntentRule] | None = None, name: str = "intent-classifier") -> None:
        super().__init__(
            AgentMetadata(
                name=name,
                category=AgentCategory.ORCHESTRATION,
                capabilities=frozenset({Capability.INTENT_CLASSIFICATION.value}),
                description="Keyword-based intent classifier",
            )
        )
        self._rules = sorted(
            rules if rules is not None else _build_default_rules(), key=lambda r: r.priority
        )

    @property
    def rules(self) -> list[IntentRule]:
        return list(self._rules)

    def classify(self, text: str) -> dict[str, Any]:
        """Classify free text into a capability.

        Args:
            text: Text to classify.

        Returns:
            Dictionary with ``capability``, ``confidence``, ``ambiguous`` and
            ``secondary`` keys.
        """
        lowered = text.lower()
        scores: dict[str, int] = {}
        for rule in self._rules:
            hits = rule.score(lowered)
            if hits and hits > scores.get(rule.capability, 0):
                scores[rule.capability] = hits

        if not scores:
            return {"capability": None, "confidence": 0.0, "ambiguous": False, "secondary": []}

        # Stable sort keeps rule priority order among equal scores.
        ranked = sorted(scores.items(), key=lambda item: item[1], reverse=True)
        best_capability, best_hits = ranked[0]
        ambiguous = len(ranked) > 1 and ranked[1][1] == best_hits

        confidence = best_hits / (best_hits + 1)
        if ambiguous:
            confidence *= AMBIGUITY_PENALTY

        secondary = [
            {"capability": capability, "confidence": round(hits / (hits + 1), 3)}
            for capability, hits in ranked[1:]
        ]
        return {
            "capability": best_capability,
            "confidence": round(confidence, 3),
            "ambiguous": ambiguous,
            "secondary": secondary,
        }

    async def process(self, request: BaseRequest, context: ExecutionContext) -> BaseResponse:
        self.check_constraints(context)
        text = f"{request.type} {request.text_content()}"
        result = self.classify(text)

        logger.debug(
            "Request classified",
            extra={
                "extra_data": {
                    "request_id": request.id,
                    "capability": result["capability"],
                    "confidence": result["confidence"],
                    "ambiguous": result["ambiguous"],
                }
            },
        )
        return self.create_response(request, result)
