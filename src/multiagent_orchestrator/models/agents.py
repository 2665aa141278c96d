"""
Agent-related Pydantic models for the multi-agent orchestrator.

Defines the data contracts for agent metadata, capabilities, categories,
runtime health status and usage metrics. These models are used by the
Agent Registry, the Intent Router and the Dispatch Executor.
"""

import re
from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field, field_validator


class Capability(StrEnum):
    """Canonical capability names.

    Registration accepts any non-empty capability string; these are the
    ones the bundled classifier knows how to recognise.
    """

    NEWSPAPER_ANALYSIS = "newspaper_analysis"
    QUIZ_GENERATION = "quiz_generation"
    WRITING_EVALUATION = "writing_evaluation"
    MOCK_INTERVIEW = "mock_interview"
    TRANSCRIPTION = "transcription"
    TEXT_TO_SPEECH = "text_to_speech"
    INTENT_CLASSIFICATION = "intent_classification"


class AgentCategory(StrEnum):
    """Broad category an agent belongs to, used for stats breakdowns."""

    CONTENT_ANALYSIS = "content_analysis"
    WRITING_SUPPORT = "writing_support"
    KNOWLEDGE = "knowledge"
    UTILITY = "utility"
    ORCHESTRATION = "orchestration"


class HealthState(StrEnum):
    """Runtime health of a registered agent.

    ``UNKNOWN`` agents have not been probed yet and are routable.
    ``INACTIVE`` agents were deactivated by ``unregister`` or ``shutdown``.
    """

    UNKNOWN = "unknown"
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNAVAILABLE = "unavailable"
    INACTIVE = "inactive"


# States an agent can be routed to, best first.
ROUTABLE_STATES = (HealthState.HEALTHY, HealthState.UNKNOWN, HealthState.DEGRADED)

_AGENT_NAME_PATTERN = re.compile(r"^[a-z][a-z0-9_-]*$")


class AgentMetadata(BaseModel):
    """Immutable description of an agent.

    Attributes:
        name: Unique identifier (e.g. ``"quiz-generator"``). Lowercase
            alphanumeric with hyphens or underscores, starting with a letter.
        category: Broad category for reporting.
        capabilities: Capability names the agent can serve.
        version: Version string of the provider.
        description: Human-readable summary.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    category: AgentCategory
    capabilities: frozenset[str]
    version: str = "1.0.0"
    description: str = ""

    @field_validator("name")
    @classmethod
    def name_must_be_valid(cls, v: str) -> str:
        """Agent name must be a lowercase slug starting with a letter."""
        if not v:
            raise ValueError("name must not be empty")
        if not _AGENT_NAME_PATTERN.match(v):
            raise ValueError(
                f"name '{v}' is invalid. Must be lowercase alphanumeric with "
                f"hyphens or underscores, starting with a letter "
                f"(pattern: {_AGENT_NAME_PATTERN.pattern})"
            )
        return v

    @field_validator("capabilities")
    @classmethod
    def capabilities_must_be_non_empty(cls, v: frozenset[str]) -> frozenset[str]:
        """An agent must declare at least one non-blank capability."""
        cleaned = frozenset(c.strip() for c in v)
        if not cleaned or "" in cleaned:
            raise ValueError("capabilities must contain at least one non-empty name")
        return cleaned


class AgentStatus(BaseModel):
    """Live health snapshot of a registered agent.

    Attributes:
        state: Current health state.
        last_check: When the last health probe finished.
        active_requests: In-flight dispatches to this agent.
        consecutive_failures: Failed probes since the last passing one.
        last_response_time_ms: Duration of the last probe.
    """

    state: HealthState = HealthState.UNKNOWN
    last_check: datetime | None = None
    active_requests: int = 0
    consecutive_failures: int = 0
    last_response_time_ms: float | None = None


class AgentMetrics(BaseModel):
    """Cumulative usage counters for one agent."""

    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    average_latency_ms: float = 0.0
    total_tokens: int = 0
    total_cost: float = 0.0
    last_activity: datetime | None = None

    @property
    def error_rate(self) -> float:
        """Failed requests as a fraction of all requests."""
        if self.total_requests == 0:
            return 0.0
        return self.failed_requests / self.total_requests


class SystemMetrics(BaseModel):
    """Registry-wide aggregate of agent metrics."""

    total_agents: int
    active_agents: int
    healthy_agents: int
    total_requests: int
    active_requests: int
    average_response_time_ms: float
    error_rate: float
    total_tokens: int
    total_cost: float
    system_load: float = Field(ge=0.0, le=1.0)
