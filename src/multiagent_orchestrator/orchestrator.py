"""
Orchestrator for the multi-agent system.

The public entry point. :meth:`Orchestrator.process_request` classifies a
request, routes it to a capable healthy agent and dispatches it with
retries, or runs it as a sequential workflow when the payload carries
``steps``. Every outcome, including routing and execution failures, is
returned as a :class:`BaseResponse`; the method never raises.

Agents delegate sub-requests through ``context.delegate()``, which calls
:meth:`Orchestrator.delegate` with a deeper child context sharing the
parent's budget.
"""

import asyncio
import logging
import time
from typing import Any

from pydantic import ValidationError

from multiagent_orchestrator.agent import (
    ExecutionError,
    ValidationFailedError,
    WorkflowCancelledError,
)
from multiagent_orchestrator.config import OrchestratorConfig, get_config
from multiagent_orchestrator.context import ExecutionContext
from multiagent_orchestrator.error_codes import (
    MAO_4003_UPSTREAM_FAILURE,
    MAO_4004_VALIDATION_FAILED,
    MAO_4005_INTERNAL_ERROR,
)
from multiagent_orchestrator.executor import DispatchExecutor
from multiagent_orchestrator.logging_config import (
    LifecycleLogger,
    StructuredLifecycleLogger,
    correlation_id_var,
    get_structured_logger,
)
from multiagent_orchestrator.models.requests import (
    BaseRequest,
    BaseResponse,
    ErrorDetail,
    ErrorKind,
    ExecutionConstraints,
)
from multiagent_orchestrator.models.workflows import Workflow, WorkflowStatus, WorkflowStep
from multiagent_orchestrator.rate_limiter import RateLimiter, RateLimitExceededError
from multiagent_orchestrator.registry import AgentRegistry, RegistrationError
from multiagent_orchestrator.router import (
    DelegationNotAllowedError,
    IntentRouter,
    MaxDepthExceededError,
    RoutingError,
)
from multiagent_orchestrator.workflow_manager import WorkflowError, WorkflowManager

logger: logging.LoggerAdapter[Any] = get_structured_logger(__name__)

COMPONENT = "orchestrator"

# Failures converted into error responses at the public boundary.
_HANDLED_ERRORS = (
    RoutingError,
    ExecutionError,
    RegistrationError,
    WorkflowError,
    RateLimitExceededError,
)


def _validation_detail(exc: ValidationError) -> ErrorDetail:
    return ErrorDetail(
        kind=ErrorKind.VALIDATION_FAILED,
        code=MAO_4004_VALIDATION_FAILED,
        message=f"Invalid request: {exc.error_count()} validation error(s): {exc.errors()[0]['msg']}",
    )


class Orchestrator:
    """Classifies, routes and dispatches requests to registered agents.

    Args:
        config: Validated configuration. Defaults to :func:`get_config`.
        registry: Agent registry. A new one is created when omitted.
        lifecycle_logger: Receiver of request lifecycle events.
    """

    def __init__(
        self,
        config: OrchestratorConfig | None = None,
        registry: AgentRegistry | None = None,
        lifecycle_logger: LifecycleLogger | None = None,
    ) -> None:
        self._config = config or get_config()
        self.registry = registry or AgentRegistry(self._config)
        self.router = IntentRouter(self.registry, self._config)
        self.executor = DispatchExecutor(self.registry, self._config)
        self.workflows = WorkflowManager(max_history=self._config.workflow_history_size)
        self.rate_limiter = RateLimiter(self._config.rate_limit)
        self._lifecycle: LifecycleLogger = lifecycle_logger or StructuredLifecycleLogger()
        self._semaphore = asyncio.Semaphore(self._config.max_concurrent_tasks)
        self._started = False
        self._shut_down = False
        self._counters = {"total": 0, "succeeded": 0, "failed": 0, "active": 0}

    @property
    def config(self) -> OrchestratorConfig:
        return self._config

    # -- Lifecycle ------------------------------------------------------------

    async def start(self) -> dict[str, bool]:
        """Run an initial health check and start periodic checks.

        Must be awaited on the event loop that will serve requests.

        Returns:
            Result of the initial health check.
        """
        results = await self.registry.perform_health_check()
        self.registry.start_health_checks()
        self._started = True
        self._lifecycle.info(
            "Orchestrator started",
            {"agents": self.registry.agent_count, "healthy": sum(results.values())},
        )
        return results

    def shutdown(self) -> None:
        """Cancel active workflows and shut the registry down. Idempotent."""
        for workflow in self.workflows.active_workflows():
            self.workflows.cancel_workflow(workflow.id)
        self.registry.shutdown()
        if not self._shut_down:
            self._shut_down = True
            self._lifecycle.info("Orchestrator shut down", {"counters": dict(self._counters)})

    # -- Request handling -----------------------------------------------------

    def default_constraints(self) -> ExecutionConstraints:
        """Constraints applied when the caller supplies none."""
        return ExecutionConstraints(
            max_execution_time=self._config.default_timeout,
            max_tokens=self._config.default_max_tokens,
            max_cost=self._config.default_max_cost,
            allow_sub_agents=self._config.allow_sub_agents,
            retry_count=self._config.retry_policy.max_retries,
        )

    async def process_request(
        self,
        request: BaseRequest | dict[str, Any],
        constraints: ExecutionConstraints | None = None,
    ) -> BaseResponse:
        """Process one top-level request. Never raises.

        Args:
            request: The request, as a model or a plain dictionary.
            constraints: Budget for the request and its sub-calls. Defaults
                to :meth:`default_constraints`.

        Returns:
            The response; failures carry an :class:`ErrorDetail` whose kind
            distinguishes "retry later" from "fix the request".
        """
        start = time.monotonic()
        if isinstance(request, dict):
            try:
                request = BaseRequest.model_validate(request)
            except ValidationError as exc:
                request_id = str(request.get("id") or "unknown")
                response = BaseResponse.failure(
                    request_id,
                    _validation_detail(exc),
                    processing_time_ms=(time.monotonic() - start) * 1000,
                )
                self._lifecycle.request_error(
                    request_id, COMPONENT, "Request validation failed", {"errors": exc.error_count()}
                )
                self._count(response)
                return response

        cid_token = correlation_id_var.set(request.id)
        self._counters["active"] += 1
        context: ExecutionContext | None = None
        self._lifecycle.request_start(
            request.id,
            COMPONENT,
            "Processing request",
            {"type": request.type, "user_id": request.user_id, "session_id": request.session_id},
        )

        try:
            self.rate_limiter.check(request.user_id)
            async with self._semaphore:
                context = self._new_context(request, constraints or self.default_constraints(), start)
                response = await self._handle(request, context)
        except _HANDLED_ERRORS as exc:
            response = BaseResponse.failure(request.id, ErrorDetail.from_exception(exc))
        except Exception as exc:
            logger.exception(
                "Unexpected error while processing request",
                extra={"extra_data": {"request_id": request.id}},
            )
            response = BaseResponse.failure(
                request.id,
                ErrorDetail(
                    kind=ErrorKind.INTERNAL_ERROR,
                    code=MAO_4005_INTERNAL_ERROR,
                    message=f"Internal error: {type(exc).__name__}",
                ),
            )
        finally:
            self._counters["active"] -= 1
            correlation_id_var.reset(cid_token)

        response.processing_time_ms = (time.monotonic() - start) * 1000
        if context is not None:
            response.tokens_used = context.ledger.tokens_used
            response.cost = context.ledger.cost
            response.metadata = {**response.metadata, "budget": context.ledger.to_dict()}

        meta = {
            "success": response.success,
            "processing_time_ms": round(response.processing_time_ms, 2),
            "agent_name": response.agent_name,
            "tokens_used": response.tokens_used,
            "cost": response.cost,
        }
        if response.success:
            self._lifecycle.request_end(request.id, COMPONENT, "Request completed", meta)
        else:
            assert response.error is not None
            meta.update(
                {
                    "error_kind": response.error.kind.value,
                    "error_code": response.error.code,
                    "retryable": response.error.retryable,
                }
            )
            self._lifecycle.request_error(request.id, COMPONENT, response.error.message, meta)
        self._count(response)
        return response

    def _count(self, response: BaseResponse) -> None:
        self._counters["total"] += 1
        self._counters["succeeded" if response.success else "failed"] += 1

    def _new_context(
        self,
        request: BaseRequest,
        constraints: ExecutionConstraints,
        started_at: float,
    ) -> ExecutionContext:
        return ExecutionContext(
            request_id=request.id,
            constraints=constraints,
            user_id=request.user_id,
            session_id=request.session_id,
            started_at=started_at,
            delegate_hook=self.delegate,
        )

    async def _handle(self, request: BaseRequest, context: ExecutionContext) -> BaseResponse:
        steps = request.payload.get("steps")
        if steps is not None:
            return await self._run_workflow(request, context, steps)
        return await self._dispatch(request, context)

    async def _dispatch(
        self,
        request: BaseRequest,
        context: ExecutionContext,
        capability: str | None = None,
    ) -> BaseResponse:
        decision = await self.router.route(request, context, capability)
        return await self.executor.execute(decision, request, context)

    async def delegate(
        self,
        request: BaseRequest | dict[str, Any],
        context: ExecutionContext,
        capability: str | None = None,
    ) -> BaseResponse:
        """Handle a sub-request on behalf of an agent. Never raises.

        A delegation at ``depth >= max_depth`` fails with
        ``max_depth_exceeded`` whatever ``allow_sub_agents`` says; below
        that depth, ``allow_sub_agents=False`` fails with
        ``delegation_not_allowed``.

        Args:
            request: The sub-request.
            context: The calling agent's context.
            capability: Target capability; routed normally when omitted.

        Returns:
            The sub-call's response.
        """
        start = time.monotonic()
        request_id = context.request_id
        try:
            if isinstance(request, dict):
                request = BaseRequest.model_validate(request)
            request_id = request.id
            if context.depth >= self._config.max_depth:
                raise MaxDepthExceededError(context.depth, self._config.max_depth)
            if not context.constraints.allow_sub_agents:
                raise DelegationNotAllowedError()

            logger.info(
                "Delegating sub-request",
                extra={
                    "extra_data": {
                        "request_id": context.request_id,
                        "sub_request_id": request.id,
                        "depth": context.depth + 1,
                        "capability": capability,
                    }
                },
            )
            response = await self._dispatch(request, context.child(), capability)
        except ValidationError as exc:
            response = BaseResponse.failure(request_id, _validation_detail(exc))
        except (RoutingError, ExecutionError, RegistrationError) as exc:
            logger.info(
                "Delegation rejected",
                extra={
                    "extra_data": {
                        "request_id": context.request_id,
                        "depth": context.depth,
                        "error_kind": exc.kind.value,
                    }
                },
            )
            response = BaseResponse.failure(request_id, ErrorDetail.from_exception(exc))

        response.processing_time_ms = (time.monotonic() - start) * 1000
        return response

    # -- Workflows ------------------------------------------------------------

    async def _run_workflow(
        self,
        request: BaseRequest,
        context: ExecutionContext,
        raw_steps: Any,
    ) -> BaseResponse:
        if not isinstance(raw_steps, list) or not raw_steps:
            raise ValidationFailedError("'steps' must be a non-empty list")
        try:
            steps = [
                WorkflowStep(
                    step_id=str(raw.get("step_id") or f"step-{index + 1}"),
                    capability=raw.get("capability", ""),
                    payload=raw.get("payload") or {},
                )
                for index, raw in enumerate(raw_steps)
            ]
            workflow = self.workflows.create_workflow(request.id, steps)
        except (AttributeError, ValidationError) as exc:
            raise ValidationFailedError(f"invalid workflow steps: {exc}") from exc

        token = self.workflows.cancellation_token(workflow.id)
        wf_context = context.derive(cancellation=token, workflow_id=workflow.id)
        failures: dict[str, ErrorDetail] = {}

        async def run_step(step: WorkflowStep, previous_result: Any) -> BaseResponse:
            payload = dict(step.payload)
            if previous_result is not None:
                payload["previous_result"] = previous_result
            sub_request = BaseRequest(
                id=request.id,
                user_id=request.user_id,
                session_id=request.session_id,
                type=step.capability,
                payload=payload,
                metadata={**request.metadata, "workflow_id": workflow.id, "step_id": step.step_id},
            )
            try:
                response = await self._dispatch(sub_request, wf_context, step.capability)
            except (RoutingError, ExecutionError, RegistrationError) as exc:
                response = BaseResponse.failure(request.id, ErrorDetail.from_exception(exc))
            if not response.success and response.error is not None:
                failures[step.step_id] = response.error
            return response

        workflow = await self.workflows.run(workflow.id, run_step)
        return self._workflow_response(request, workflow, failures)

    def _workflow_response(
        self,
        request: BaseRequest,
        workflow: Workflow,
        failures: dict[str, ErrorDetail],
    ) -> BaseResponse:
        data = {
            "workflow_id": workflow.id,
            "status": workflow.status.value,
            "steps": [
                {
                    "step_id": s.step_id,
                    "capability": s.capability,
                    "status": s.status.value,
                    "result": s.result,
                    "error": s.error,
                }
                for s in workflow.steps
            ],
        }
        metadata = {"workflow_id": workflow.id, "workflow_status": workflow.status.value}

        if workflow.status == WorkflowStatus.COMPLETED:
            data["result"] = workflow.steps[-1].result
            return BaseResponse(
                request_id=request.id, success=True, data=data, metadata=metadata
            )

        if workflow.status == WorkflowStatus.CANCELLED:
            detail = ErrorDetail.from_exception(WorkflowCancelledError(workflow.id))
        else:
            detail = next(
                (failures[s.step_id] for s in workflow.steps if s.step_id in failures),
                ErrorDetail(
                    kind=ErrorKind.UPSTREAM_FAILURE,
                    code=MAO_4003_UPSTREAM_FAILURE,
                    message=workflow.error_message or "Workflow failed",
                ),
            )
        return BaseResponse.failure(request.id, detail, data=data, metadata=metadata)

    def cancel_workflow(self, workflow_id: str) -> bool:
        """Cancel a workflow cooperatively.

        Returns:
            True if cancelled now, False if it was already terminal.

        Raises:
            WorkflowNotFoundError: If the ID is unknown.
        """
        return self.workflows.cancel_workflow(workflow_id)

    def get_workflow(self, workflow_id: str) -> Workflow:
        """Look up a workflow.

        Raises:
            WorkflowNotFoundError: If the ID is unknown.
        """
        return self.workflows.get(workflow_id)

    def list_workflows(self, status: WorkflowStatus | None = None) -> list[Workflow]:
        return self.workflows.list_workflows(status)

    # -- Reporting ------------------------------------------------------------

    def get_stats(self) -> dict[str, Any]:
        """Combined registry, execution, workflow and request statistics."""
        return {
            "started": self._started,
            "shut_down": self._shut_down,
            "requests": dict(self._counters),
            "registry": self.registry.get_stats(),
            "system": self.registry.get_system_metrics().model_dump(),
            "execution": self.executor.get_execution_stats(),
            "workflows": self.workflows.get_summary(),
        }
