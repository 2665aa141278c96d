"""
Unit tests for the WorkflowManager.

Validates that:
- Workflows are created pending and move through valid transitions only
- Steps run in order and receive the previous step's result
- A failed step fails the workflow and skips the rest
- Cancellation is cooperative, checked between steps, and a no-op on terminal workflows
- An interrupted run never leaves the workflow or its step running
- History is bounded and listing is newest first
"""

import asyncio
from datetime import timedelta
from typing import Any

import pytest

from multiagent_orchestrator.models.requests import BaseResponse, ErrorDetail, ErrorKind
from multiagent_orchestrator.models.workflows import StepStatus, WorkflowStatus, WorkflowStep
from multiagent_orchestrator.workflow_manager import (
    InvalidWorkflowTransitionError,
    WorkflowManager,
    WorkflowNotFoundError,
)


def _steps(*capabilities: str) -> list[WorkflowStep]:
    return [
        WorkflowStep(step_id=f"step-{i + 1}", capability=cap)
        for i, cap in enumerate(capabilities)
    ]


def _ok(data: Any) -> BaseResponse:
    return BaseResponse(request_id="req_1", success=True, data=data)


def _failed(message: str) -> BaseResponse:
    return BaseResponse.failure(
        "req_1",
        ErrorDetail(kind=ErrorKind.UPSTREAM_FAILURE, code="MAO_4003", message=message),
    )


@pytest.fixture()
def manager() -> WorkflowManager:
    return WorkflowManager(max_history=10)


class TestLifecycle:
    """Verify creation and status transitions."""

    def test_create_pending(self, manager: WorkflowManager) -> None:
        workflow = manager.create_workflow("req_1", _steps("transcription"))
        assert workflow.id.startswith("wf_")
        assert workflow.status == WorkflowStatus.PENDING
        assert manager.get(workflow.id) is workflow
        assert manager.cancellation_token(workflow.id).cancelled is False

    def test_unknown_workflow(self, manager: WorkflowManager) -> None:
        with pytest.raises(WorkflowNotFoundError) as exc_info:
            manager.get("wf_missing")
        assert exc_info.value.error_code == "MAO_3001"
        with pytest.raises(WorkflowNotFoundError):
            manager.cancel_workflow("wf_missing")

    def test_valid_transitions(self, manager: WorkflowManager) -> None:
        workflow = manager.create_workflow("req_1", _steps("transcription"))
        manager.start(workflow.id)
        assert workflow.started_at is not None
        manager.complete(workflow.id)
        assert workflow.status == WorkflowStatus.COMPLETED
        assert workflow.completed_at is not None

    def test_fail_records_message(self, manager: WorkflowManager) -> None:
        workflow = manager.create_workflow("req_1", _steps("transcription"))
        manager.start(workflow.id)
        manager.fail(workflow.id, "provider down")
        assert workflow.status == WorkflowStatus.FAILED
        assert workflow.error_message == "provider down"

    def test_invalid_transition(self, manager: WorkflowManager) -> None:
        workflow = manager.create_workflow("req_1", _steps("transcription"))
        with pytest.raises(InvalidWorkflowTransitionError):
            manager.complete(workflow.id)
        manager.start(workflow.id)
        manager.complete(workflow.id)
        with pytest.raises(InvalidWorkflowTransitionError):
            manager.start(workflow.id)


class TestCancellation:
    """Verify cooperative cancellation."""

    def test_cancel_pending(self, manager: WorkflowManager) -> None:
        workflow = manager.create_workflow("req_1", _steps("transcription"))
        assert manager.cancel_workflow(workflow.id) is True
        assert workflow.status == WorkflowStatus.CANCELLED
        assert manager.cancellation_token(workflow.id).cancelled is True
        assert workflow.error_message == "Cancelled by request"

    def test_cancel_terminal_is_noop(self, manager: WorkflowManager) -> None:
        workflow = manager.create_workflow("req_1", _steps("transcription"))
        manager.start(workflow.id)
        manager.complete(workflow.id)
        assert manager.cancel_workflow(workflow.id) is False
        assert workflow.status == WorkflowStatus.COMPLETED
        assert manager.cancellation_token(workflow.id).cancelled is False

    def test_cancel_twice(self, manager: WorkflowManager) -> None:
        workflow = manager.create_workflow("req_1", _steps("transcription"))
        assert manager.cancel_workflow(workflow.id) is True
        assert manager.cancel_workflow(workflow.id) is False
        assert workflow.status == WorkflowStatus.CANCELLED


class TestRun:
    """Verify sequential step execution."""

    @pytest.mark.anyio
    async def test_steps_chain_results(self, manager: WorkflowManager) -> None:
        seen: list[tuple[str, Any]] = []

        async def runner(step: WorkflowStep, previous: Any) -> BaseResponse:
            seen.append((step.step_id, previous))
            return _ok(f"{step.capability}-out")

        workflow = manager.create_workflow("req_1", _steps("transcription", "quiz_generation"))
        result = await manager.run(workflow.id, runner)

        assert result.status == WorkflowStatus.COMPLETED
        assert seen == [("step-1", None), ("step-2", "transcription-out")]
        assert [s.status for s in result.steps] == [StepStatus.COMPLETED, StepStatus.COMPLETED]
        assert result.steps[1].result == "quiz_generation-out"

    @pytest.mark.anyio
    async def test_failed_step_skips_rest(self, manager: WorkflowManager) -> None:
        async def runner(step: WorkflowStep, previous: Any) -> BaseResponse:
            if step.step_id == "step-2":
                return _failed("provider down")
            return _ok("fine")

        workflow = manager.create_workflow(
            "req_1", _steps("transcription", "quiz_generation", "text_to_speech")
        )
        result = await manager.run(workflow.id, runner)

        assert result.status == WorkflowStatus.FAILED
        assert [s.status for s in result.steps] == [
            StepStatus.COMPLETED,
            StepStatus.FAILED,
            StepStatus.SKIPPED,
        ]
        assert result.steps[1].error == "provider down"
        assert result.error_message == "Step 'step-2' failed: provider down"

    @pytest.mark.anyio
    async def test_cancel_during_step_stops_before_next(self, manager: WorkflowManager) -> None:
        calls: list[str] = []
        workflow = manager.create_workflow("req_1", _steps("transcription", "quiz_generation"))

        async def runner(step: WorkflowStep, previous: Any) -> BaseResponse:
            calls.append(step.step_id)
            manager.cancel_workflow(workflow.id)
            return _ok("in-flight result kept")

        result = await manager.run(workflow.id, runner)

        assert calls == ["step-1"]
        assert result.status == WorkflowStatus.CANCELLED
        assert result.steps[0].status == StepStatus.COMPLETED
        assert result.steps[1].status == StepStatus.SKIPPED

    @pytest.mark.anyio
    async def test_cancelled_step_failure_keeps_cancelled_status(
        self, manager: WorkflowManager
    ) -> None:
        workflow = manager.create_workflow("req_1", _steps("transcription", "quiz_generation"))

        async def runner(step: WorkflowStep, previous: Any) -> BaseResponse:
            manager.cancel_workflow(workflow.id)
            return _failed("aborted")

        result = await manager.run(workflow.id, runner)
        assert result.status == WorkflowStatus.CANCELLED
        assert result.steps[1].status == StepStatus.SKIPPED

    @pytest.mark.anyio
    async def test_run_cancelled_workflow_rejected(self, manager: WorkflowManager) -> None:
        workflow = manager.create_workflow("req_1", _steps("transcription"))
        manager.cancel_workflow(workflow.id)

        async def runner(step: WorkflowStep, previous: Any) -> BaseResponse:
            return _ok(None)

        with pytest.raises(InvalidWorkflowTransitionError):
            await manager.run(workflow.id, runner)

    @pytest.mark.anyio
    async def test_timed_out_run_is_cancelled(self, manager: WorkflowManager) -> None:
        workflow = manager.create_workflow("req_1", _steps("transcription", "quiz_generation"))

        async def runner(step: WorkflowStep, previous: Any) -> BaseResponse:
            await asyncio.sleep(5)
            return _ok(None)

        with pytest.raises(TimeoutError):
            await asyncio.wait_for(manager.run(workflow.id, runner), timeout=0.05)

        assert workflow.status == WorkflowStatus.CANCELLED
        assert workflow.completed_at is not None
        assert [s.status for s in workflow.steps] == [StepStatus.FAILED, StepStatus.SKIPPED]
        assert workflow.steps[0].error == "Interrupted: CancelledError"
        assert manager.cancellation_token(workflow.id).cancelled is True
        assert manager.active_workflows() == []

    @pytest.mark.anyio
    async def test_raising_runner_fails_workflow(self, manager: WorkflowManager) -> None:
        workflow = manager.create_workflow(
            "req_1", _steps("transcription", "quiz_generation", "text_to_speech")
        )

        async def runner(step: WorkflowStep, previous: Any) -> BaseResponse:
            if step.step_id == "step-2":
                raise RuntimeError("runner bug")
            return _ok(step.step_id)

        with pytest.raises(RuntimeError, match="runner bug"):
            await manager.run(workflow.id, runner)

        assert workflow.status == WorkflowStatus.FAILED
        assert workflow.error_message == "Interrupted: RuntimeError"
        assert [s.status for s in workflow.steps] == [
            StepStatus.COMPLETED,
            StepStatus.FAILED,
            StepStatus.SKIPPED,
        ]

    @pytest.mark.anyio
    async def test_interrupt_after_cancel_keeps_cancel_reason(
        self, manager: WorkflowManager
    ) -> None:
        workflow = manager.create_workflow("req_1", _steps("transcription"))

        async def runner(step: WorkflowStep, previous: Any) -> BaseResponse:
            manager.cancel_workflow(workflow.id)
            raise RuntimeError("aborted")

        with pytest.raises(RuntimeError):
            await manager.run(workflow.id, runner)

        assert workflow.status == WorkflowStatus.CANCELLED
        assert workflow.error_message == "Cancelled by request"
        assert workflow.steps[0].status == StepStatus.FAILED


class TestReporting:
    """Verify listing, summaries and pruning."""

    def test_list_newest_first_and_filter(self, manager: WorkflowManager) -> None:
        first = manager.create_workflow("req_1", _steps("transcription"))
        second = manager.create_workflow("req_2", _steps("transcription"))
        first.created_at -= timedelta(seconds=1)
        manager.cancel_workflow(first.id)
        ids = [w.id for w in manager.list_workflows()]
        assert ids.index(second.id) < ids.index(first.id)
        assert [w.id for w in manager.list_workflows(WorkflowStatus.CANCELLED)] == [first.id]
        assert [w.id for w in manager.active_workflows()] == [second.id]

    def test_summary(self, manager: WorkflowManager) -> None:
        first = manager.create_workflow("req_1", _steps("transcription"))
        manager.create_workflow("req_2", _steps("transcription"))
        manager.cancel_workflow(first.id)
        assert manager.get_summary() == {
            "total_workflows": 2,
            "active_workflows": 1,
            "workflows_by_status": {"cancelled": 1, "pending": 1},
        }

    def test_terminal_history_bounded(self) -> None:
        manager = WorkflowManager(max_history=2)
        created = [manager.create_workflow(f"req_{i}", _steps("transcription")) for i in range(4)]
        for workflow in created:
            manager.cancel_workflow(workflow.id)
        manager.create_workflow("req_x", _steps("transcription"))

        remaining = {w.id for w in manager.list_workflows()}
        assert created[0].id not in remaining
        assert created[1].id not in remaining
        assert {created[2].id, created[3].id} <= remaining

    def test_active_workflows_never_pruned(self) -> None:
        manager = WorkflowManager(max_history=1)
        created = [manager.create_workflow(f"req_{i}", _steps("transcription")) for i in range(3)]
        assert len(manager.active_workflows()) == 3
        assert {w.id for w in manager.list_workflows()} == {w.id for w in created}
