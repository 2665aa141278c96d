"""
Ready-made agent implementations.

Modules:
    callable -- Wraps an async provider call as an agent.
    classifier -- Keyword-based intent classification agent.
"""

from multiagent_orchestrator.agents.callable import CallableAgent, CallResult
from multiagent_orchestrator.agents.classifier import IntentRule, KeywordIntentClassifier

__all__ = [
    "CallableAgent",
    "CallResult",
    "IntentRule",
    "KeywordIntentClassifier",
]
