"""
Workflow-related Pydantic models for the multi-agent orchestrator.

A workflow is a multi-step orchestration that outlives a single dispatch:
an ordered list of capability steps where each step receives the previous
step's output. The Workflow Manager enforces the transitions declared in
:data:`VALID_TRANSITIONS`.
"""

from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator


class WorkflowStatus(StrEnum):
    """Lifecycle status of a workflow."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class StepStatus(StrEnum):
    """Status of a single workflow step."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


TERMINAL_STATUSES = frozenset(
    {WorkflowStatus.COMPLETED, WorkflowStatus.FAILED, WorkflowStatus.CANCELLED}
)

VALID_TRANSITIONS: dict[WorkflowStatus, frozenset[WorkflowStatus]] = {
    WorkflowStatus.PENDING: frozenset({WorkflowStatus.RUNNING, WorkflowStatus.CANCELLED}),
    WorkflowStatus.RUNNING: frozenset(
        {WorkflowStatus.COMPLETED, WorkflowStatus.FAILED, WorkflowStatus.CANCELLED}
    ),
    WorkflowStatus.COMPLETED: frozenset(),
    WorkflowStatus.FAILED: frozenset(),
    WorkflowStatus.CANCELLED: frozenset(),
}


class WorkflowStep(BaseModel):
    """A single capability invocation within a workflow.

    Attributes:
        step_id: Unique identifier within the workflow.
        capability: Capability the step is routed to.
        payload: Input for the step; ``previous_result`` is added at run time.
        status: Current step status.
        result: Output data once completed.
        error: Error message if the step failed.
    """

    step_id: str
    capability: str
    payload: dict[str, Any] = Field(default_factory=dict)
    status: StepStatus = StepStatus.PENDING
    result: Any = None
    error: str | None = None

    @field_validator("step_id", "capability")
    @classmethod
    def must_be_non_empty(cls, v: str) -> str:
        """Step ID and capability must be non-empty strings."""
        if not v.strip():
            raise ValueError("must not be empty")
        return v


class Workflow(BaseModel):
    """A tracked multi-step orchestration.

    Attributes:
        id: Unique workflow identifier.
        request_id: The top-level request that created the workflow.
        steps: Ordered steps; executed sequentially.
        status: Current lifecycle status.
        created_at: When the workflow was created.
        started_at: When it moved to ``running``.
        completed_at: When it reached a terminal status.
        error_message: Description of the failure or cancellation.
    """

    id: str
    request_id: str
    steps: list[WorkflowStep]
    status: WorkflowStatus = WorkflowStatus.PENDING
    created_at: datetime
    started_at: datetime | None = None
    completed_at: datetime | None = None
    error_message: str | None = None

    @field_validator("steps")
    @classmethod
    def must_have_at_least_one_step(cls, v: list[WorkflowStep]) -> list[WorkflowStep]:
        """A workflow must contain at least one step."""
        if not v:
            raise ValueError("Workflow must have at least one step")
        return v

    @model_validator(mode="after")
    def step_ids_unique(self) -> "Workflow":
        """Step IDs must be unique within the workflow."""
        seen: set[str] = set()
        duplicates = []
        for step in self.steps:
            if step.step_id in seen:
                duplicates.append(step.step_id)
            seen.add(step.step_id)
        if duplicates:
            raise ValueError(f"Duplicate step_ids found: {duplicates}")
        return self

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def can_transition_to(self, target: WorkflowStatus) -> bool:
        return target in VALID_TRANSITIONS[self.status]
