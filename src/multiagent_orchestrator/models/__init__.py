"""
Pydantic models for the multi-agent orchestrator.

All data contracts are defined here and re-exported for convenient access
via ``from multiagent_orchestrator.models import ...``.

Modules:
    agents -- Agent metadata, capabilities, health status and metrics.
    requests -- Requests, execution constraints, responses and error details.
    workflows -- Multi-step workflows, steps and their transitions.
"""

from multiagent_orchestrator.models.agents import (
    AgentCategory,
    AgentMetadata,
    AgentMetrics,
    AgentStatus,
    Capability,
    HealthState,
    SystemMetrics,
)
from multiagent_orchestrator.models.requests import (
    BaseRequest,
    BaseResponse,
    ErrorDetail,
    ErrorKind,
    ExecutionConstraints,
)
from multiagent_orchestrator.models.workflows import (
    StepStatus,
    Workflow,
    WorkflowStatus,
    WorkflowStep,
)

__all__ = [
    # Agent models
    "AgentCategory",
    "AgentMetadata",
    "AgentMetrics",
    "AgentStatus",
    "Capability",
    "HealthState",
    "SystemMetrics",
    # Request models
    "BaseRequest",
    "BaseResponse",
    "ErrorDetail",
    "ErrorKind",
    "ExecutionConstraints",
    # Workflow models
    "StepStatus",
    "Workflow",
    "WorkflowStatus",
    "WorkflowStep",
]
