"""
Workflow Manager for the multi-agent orchestrator.

Tracks multi-step orchestrations that outlive a single dispatch. Steps run
sequentially; each step receives the previous step's output. Cancellation
is cooperative: :meth:`WorkflowManager.cancel_workflow` sets the workflow's
:class:`CancellationToken`, which is polled between steps and by agents
through ``BaseAgent.check_constraints``. In-flight agent calls are never
interrupted.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from typing import Any
from uuid import uuid4

from multiagent_orchestrator.context import CancellationToken
from multiagent_orchestrator.error_codes import (
    MAO_3001_WORKFLOW_NOT_FOUND,
    MAO_3002_WORKFLOW_INVALID_TRANSITION,
)
from multiagent_orchestrator.logging_config import get_structured_logger, workflow_id_var
from multiagent_orchestrator.models.requests import BaseResponse, ErrorKind
from multiagent_orchestrator.models.workflows import (
    StepStatus,
    Workflow,
    WorkflowStatus,
    WorkflowStep,
)

logger: logging.LoggerAdapter[Any] = get_structured_logger(__name__)

StepRunner = Callable[[WorkflowStep, Any], Awaitable[BaseResponse]]


class WorkflowError(Exception):
    """Base exception for workflow manager errors.

    Attributes:
        error_code: Machine-readable error code from error_codes.py.
        message: Human-readable error description.
        kind: Error category reported to callers.
    """

    retryable = False

    def __init__(self, error_code: str, message: str, kind: ErrorKind) -> None:
        self.error_code = error_code
        self.message = message
        self.kind = kind
        super().__init__(f"[{error_code}] {message}")


class WorkflowNotFoundError(WorkflowError):
    """Raised when a workflow ID is unknown."""

    def __init__(self, workflow_id: str) -> None:
        self.workflow_id = workflow_id
        super().__init__(
            MAO_3001_WORKFLOW_NOT_FOUND,
            f"Workflow '{workflow_id}' not found",
            ErrorKind.NOT_FOUND,
        )


class InvalidWorkflowTransitionError(WorkflowError):
    """Raised when a transition is not allowed from the current status."""

    def __init__(self, workflow_id: str, current: WorkflowStatus, target: WorkflowStatus) -> None:
        self.workflow_id = workflow_id
        self.current = current
        self.target = target
        super().__init__(
            MAO_3002_WORKFLOW_INVALID_TRANSITION,
            f"Workflow '{workflow_id}' cannot move from '{current}' to '{target}'",
            ErrorKind.INTERNAL_ERROR,
        )


class WorkflowManager:
    """Creates, runs, cancels and reports on workflows.

    Args:
        max_history: Terminal workflows kept in memory; the oldest are
            dropped first.
    """

    def __init__(self, max_history: int = 200) -> None:
        self._max_history = max_history
        self._workflows: dict[str, Workflow] = {}
        self._tokens: dict[str, CancellationToken] = {}

    def create_workflow(self, request_id: str, steps: list[WorkflowStep]) -> Workflow:
        """Create a pending workflow.

        Args:
            request_id: The top-level request owning the workflow.
            steps: Ordered steps to run.

        Returns:
            The new :class:`Workflow` in ``pending`` status.
        """
        workflow = Workflow(
            id=f"wf_{uuid4().hex[:12]}",
            request_id=request_id,
            steps=steps,
            created_at=datetime.now(UTC),
        )
        self._workflows[workflow.id] = workflow
        self._tokens[workflow.id] = CancellationToken()
        self._prune()

        logger.info(
            "Workflow created",
            extra={
                "extra_data": {
                    "workflow_id": workflow.id,
                    "request_id": request_id,
                    "step_count": len(steps),
                }
            },
        )
        return workflow

    def get(self, workflow_id: str) -> Workflow:
        """Look up a workflow.

        Raises:
            WorkflowNotFoundError: If the ID is unknown.
        """
        workflow = self._workflows.get(workflow_id)
        if workflow is None:
            raise WorkflowNotFoundError(workflow_id)
        return workflow

    def cancellation_token(self, workflow_id: str) -> CancellationToken:
        """Return the workflow's cancellation token.

        Raises:
            WorkflowNotFoundError: If the ID is unknown.
        """
        self.get(workflow_id)
        return self._tokens[workflow_id]

    def _transition(
        self,
        workflow: Workflow,
        target: WorkflowStatus,
        error_message: str | None = None,
    ) -> Workflow:
        if not workflow.can_transition_to(target):
            raise InvalidWorkflowTransitionError(workflow.id, workflow.status, target)

        previous = workflow.status
        now = datetime.now(UTC)
        workflow.status = target
        if target == WorkflowStatus.RUNNING:
            workflow.started_at = now
        if workflow.is_terminal:
            workflow.completed_at = now
        if error_message is not None:
            workflow.error_message = error_message

        logger.info(
            "Workflow transitioned",
            extra={
                "extra_data": {
                    "workflow_id": workflow.id,
                    "from": previous.value,
                    "to": target.value,
                }
            },
        )
        return workflow

    def start(self, workflow_id: str) -> Workflow:
        """Move a pending workflow to ``running``."""
        return self._transition(self.get(workflow_id), WorkflowStatus.RUNNING)

    def complete(self, workflow_id: str) -> Workflow:
        """Move a running workflow to ``completed``."""
        return self._transition(self.get(workflow_id), WorkflowStatus.COMPLETED)

    def fail(self, workflow_id: str, message: str) -> Workflow:
        """Move a running workflow to ``failed``."""
        return self._transition(self.get(workflow_id), WorkflowStatus.FAILED, message)

    def cancel_workflow(self, workflow_id: str) -> bool:
        """Cancel a pending or running workflow.

        Cancelling an already terminal workflow is a no-op and leaves its
        status unchanged.

        Args:
            workflow_id: The workflow to cancel.

        Returns:
            True if the workflow was cancelled by this call, False if it was
            already terminal.

        Raises:
            WorkflowNotFoundError: If the ID is unknown.
        """
        workflow = self.get(workflow_id)
        if workflow.is_terminal:
            logger.info(
                "Cancel ignored for terminal workflow",
                extra={
                    "extra_data": {
                        "workflow_id": workflow_id,
                        "status": workflow.status.value,
                    }
                },
            )
            return False

        self._tokens[workflow_id].cancel()
        self._transition(workflow, WorkflowStatus.CANCELLED, "Cancelled by request")
        return True

    async def run(self, workflow_id: str, step_runner: StepRunner) -> Workflow:
        """Run a pending workflow's steps in order.

        ``step_runner(step, previous_result)`` must return a response rather
        than raise. The first failed step fails the workflow and the steps
        after it are skipped. The cancellation token is checked before every
        step; once cancelled, the remaining steps are skipped.

        Args:
            workflow_id: The workflow to run.
            step_runner: Coroutine function executing one step.

        Returns:
            The workflow in its terminal status.

        Raises:
            asyncio.CancelledError: If the run is cancelled mid-step; the
                workflow is moved to ``cancelled`` before re-raising.
            Exception: Anything the step runner raises; the workflow is
                moved to ``failed`` before re-raising.
        """
        workflow = self.start(workflow_id)
        token = self._tokens[workflow_id]
        previous_result: Any = None
        wf_token = workflow_id_var.set(workflow_id)

        try:
            for index, step in enumerate(workflow.steps):
                if token.cancelled:
                    self._skip_from(workflow, index)
                    logger.info(
                        "Workflow stopped after cancellation",
                        extra={"extra_data": {"workflow_id": workflow_id, "next_step": step.step_id}},
                    )
                    return workflow

                step.status = StepStatus.RUNNING
                response = await step_runner(step, previous_result)

                if response.success:
                    step.status = StepStatus.COMPLETED
                    step.result = response.data
                    previous_result = response.data
                    continue

                step.status = StepStatus.FAILED
                step.error = response.error.message if response.error else "Step failed"
                self._skip_from(workflow, index + 1)
                if not token.cancelled:
                    self.fail(workflow_id, f"Step '{step.step_id}' failed: {step.error}")
                return workflow

            if not token.cancelled:
                self.complete(workflow_id)
            return workflow
        except BaseException as exc:
            self._interrupt(workflow, exc)
            raise
        finally:
            workflow_id_var.reset(wf_token)
            self._prune()

    def _interrupt(self, workflow: Workflow, exc: BaseException) -> None:
        reason = f"Interrupted: {type(exc).__name__}"
        for step in workflow.steps:
            if step.status == StepStatus.RUNNING:
                step.status = StepStatus.FAILED
                step.error = reason
        self._skip_from(workflow, 0)
        if workflow.is_terminal:
            return

        logger.warning(
            "Workflow interrupted",
            extra={
                "extra_data": {
                    "workflow_id": workflow.id,
                    "error": f"{type(exc).__name__}: {exc}",
                }
            },
        )
        if isinstance(exc, asyncio.CancelledError):
            self._tokens[workflow.id].cancel()
            self._transition(workflow, WorkflowStatus.CANCELLED, reason)
        else:
            self.fail(workflow.id, reason)

    @staticmethod
    def _skip_from(workflow: Workflow, index: int) -> None:
        for step in workflow.steps[index:]:
            if step.status == StepStatus.PENDING:
                step.status = StepStatus.SKIPPED

    def list_workflows(self, status: WorkflowStatus | None = None) -> list[Workflow]:
        """List tracked workflows, newest first.

        Args:
            status: If provided, filter to workflows in this status.
        """
        workflows = sorted(self._workflows.values(), key=lambda w: w.created_at, reverse=True)
        if status is not None:
            return [w for w in workflows if w.status == status]
        return workflows

    def active_workflows(self) -> list[Workflow]:
        """Workflows that are pending or running."""
        return [w for w in self.list_workflows() if not w.is_terminal]

    def get_summary(self) -> dict[str, Any]:
        """Counts of tracked workflows by status."""
        by_status: dict[str, int] = {}
        for workflow in self._workflows.values():
            by_status[workflow.status.value] = by_status.get(workflow.status.value, 0) + 1
        return {
            "total_workflows": len(self._workflows),
            "active_workflows": len(self.active_workflows()),
            "workflows_by_status": by_status,
        }

    def _prune(self) -> None:
        terminal = sorted(
            (w for w in self._workflows.values() if w.is_terminal),
            key=lambda w: w.completed_at or w.created_at,
        )
        excess = len(terminal) - self._max_history
        for workflow in terminal[: max(excess, 0)]:
            self._workflows.pop(workflow.id, None)
            self._tokens.pop(workflow.id, None)
