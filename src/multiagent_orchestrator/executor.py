"""
Dispatch Executor for the multi-agent orchestrator.

Dispatches a routed request to its agent and drives the retry loop as an
explicit state machine::

    ATTEMPTING -> SUCCEEDED
    ATTEMPTING -> WAITING -> ATTEMPTING ...
    ATTEMPTING -> FAILED

Each attempt runs under ``min(default_timeout, remaining deadline)``.
Transient failures (timeouts, upstream failures) move to ``WAITING`` for
the policy's backoff, awaited with ``asyncio.sleep`` so other requests keep
running. Non-transient failures, an exhausted budget, a passed deadline or
a cancelled workflow end in ``FAILED`` without another agent invocation.
"""

import asyncio
import logging
import time
from collections import deque
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import ValidationError

from multiagent_orchestrator.agent import (
    BudgetExceededError,
    ExecutionError,
    ExecutionTimeoutError,
    UpstreamFailureError,
    ValidationFailedError,
    WorkflowCancelledError,
)
from multiagent_orchestrator.config import OrchestratorConfig
from multiagent_orchestrator.context import ExecutionContext
from multiagent_orchestrator.error_codes import MAO_4003_UPSTREAM_FAILURE
from multiagent_orchestrator.logging_config import agent_name_var, get_structured_logger
from multiagent_orchestrator.models.requests import (
    TRANSIENT_KINDS,
    BaseRequest,
    BaseResponse,
    ErrorDetail,
    ErrorKind,
)
from multiagent_orchestrator.registry import AgentRegistry
from multiagent_orchestrator.router import RoutingDecision

logger: logging.LoggerAdapter[Any] = get_structured_logger(__name__)


class AttemptState(StrEnum):
    """States of the per-dispatch retry state machine."""

    ATTEMPTING = "attempting"
    WAITING = "waiting"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class ExecutionRecord:
    """Record of a single dispatch attempt.

    Attributes:
        request_id: The top-level request the attempt belongs to.
        agent_name: The agent that handled the attempt.
        capability: The routed capability.
        attempt: Attempt number (1-based).
        state: ``succeeded`` or ``failed``.
        started_at: When the attempt began.
        completed_at: When it finished.
        duration_seconds: Wall-clock time of the attempt.
        routing_method: How the request was routed.
        tokens_used: Tokens reported by the attempt.
        cost: Cost reported by the attempt.
        error_kind: Error category if the attempt failed.
        error_message: Error description if the attempt failed.
    """

    def __init__(
        self,
        request_id: str,
        agent_name: str,
        capability: str,
        attempt: int,
        state: AttemptState,
        started_at: datetime,
        completed_at: datetime,
        duration_seconds: float,
        routing_method: str,
        tokens_used: int = 0,
        cost: float = 0.0,
        error_kind: str | None = None,
        error_message: str | None = None,
    ) -> None:
        self.request_id = request_id
        self.agent_name = agent_name
        self.capability = capability
        self.attempt = attempt
        self.state = state
        self.started_at = started_at
        self.completed_at = completed_at
        self.duration_seconds = duration_seconds
        self.routing_method = routing_method
        self.tokens_used = tokens_used
        self.cost = cost
        self.error_kind = error_kind
        self.error_message = error_message

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-compatible dictionary."""
        return {
            "request_id": self.request_id,
            "agent_name": self.agent_name,
            "capability": self.capability,
            "attempt": self.attempt,
            "state": self.state.value,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat(),
            "duration_seconds": round(self.duration_seconds, 3),
            "routing_method": self.routing_method,
            "tokens_used": self.tokens_used,
            "cost": self.cost,
            "error_kind": self.error_kind,
            "error_message": self.error_message,
        }


class _AgentReportedError(ExecutionError):
    """An unsuccessful response returned (not raised) by an agent."""

    def __init__(self, detail: ErrorDetail, tokens_used: int, cost: float) -> None:
        super().__init__(
            detail.code,
            detail.message,
            detail.kind,
            retryable=detail.kind in TRANSIENT_KINDS,
            tokens_used=tokens_used,
            cost=cost,
        )


class DispatchExecutor:
    """Dispatches routed requests with per-attempt timeouts and retries.

    Args:
        registry: Registry used for load tracking and metrics.
        config: Orchestrator configuration (timeouts, retry policy,
            history size).
    """

    def __init__(self, registry: AgentRegistry, config: OrchestratorConfig) -> None:
        self._registry = registry
        self._config = config
        self._policy = config.retry_policy
        self._history: deque[ExecutionRecord] = deque(maxlen=config.execution_history_size)
        self._active = 0

    async def execute(
        self,
        decision: RoutingDecision,
        request: BaseRequest,
        context: ExecutionContext,
    ) -> BaseResponse:
        """Run the dispatch state machine for one routed request.

        Never raises for agent failures; they come back as unsuccessful
        responses.

        Args:
            decision: Routing decision naming the agent.
            request: The request to dispatch.
            context: Execution context carrying deadline, budget and
                cancellation.

        Returns:
            The agent's response on success, otherwise a failure response.
        """
        max_attempts = context.constraints.retry_count + 1
        state = AttemptState.ATTEMPTING
        attempt = 0
        error: ExecutionError | None = None
        response: BaseResponse | None = None
        tokens_total = 0
        cost_total = 0.0
        started = time.monotonic()

        self._active += 1
        agent_token = agent_name_var.set(decision.agent_name)
        try:
            while state not in (AttemptState.SUCCEEDED, AttemptState.FAILED):
                if state == AttemptState.ATTEMPTING:
                    attempt += 1
                    error = self._precheck(context)
                    if error is not None:
                        state = AttemptState.FAILED
                        continue

                    timeout = min(self._config.default_timeout, context.remaining_time)
                    response, error = await self._attempt(
                        decision, request, context, attempt, timeout
                    )
                    if error is None:
                        tokens_total += response.tokens_used  # type: ignore[union-attr]
                        cost_total += response.cost  # type: ignore[union-attr]
                        state = AttemptState.SUCCEEDED
                    else:
                        tokens_total += error.tokens_used
                        cost_total += error.cost
                        if error.retryable and attempt < max_attempts:
                            state = AttemptState.WAITING
                        else:
                            state = AttemptState.FAILED

                elif state == AttemptState.WAITING:
                    delay = self._policy.compute_delay(attempt)
                    if delay >= context.remaining_time:
                        error = ExecutionTimeoutError(
                            f"Request deadline would pass during {delay:.2f}s backoff "
                            f"after attempt {attempt}"
                        )
                        state = AttemptState.FAILED
                        continue

                    logger.info(
                        "Retrying request",
                        extra={
                            "extra_data": {
                                "request_id": request.id,
                                "agent_name": decision.agent_name,
                                "next_attempt": attempt + 1,
                                "backoff_seconds": round(delay, 3),
                            }
                        },
                    )
                    await asyncio.sleep(delay)
                    state = AttemptState.ATTEMPTING
        finally:
            self._active -= 1
            agent_name_var.reset(agent_token)

        elapsed_ms = (time.monotonic() - started) * 1000
        execution_meta = {
            "capability": decision.capability,
            "routing_method": decision.method,
            "attempts": attempt,
            "depth": context.depth,
        }

        if state == AttemptState.SUCCEEDED and response is not None:
            if response.agent_name is None:
                response.agent_name = decision.agent_name
            response.processing_time_ms = elapsed_ms
            response.metadata = {**response.metadata, **execution_meta}
            return response

        assert error is not None
        logger.warning(
            "Request dispatch failed",
            extra={
                "extra_data": {
                    "request_id": request.id,
                    "agent_name": decision.agent_name,
                    "attempts": attempt,
                    "error_kind": error.kind.value,
                    "error": error.message,
                }
            },
        )
        return BaseResponse.failure(
            request.id,
            ErrorDetail.from_exception(error),
            processing_time_ms=elapsed_ms,
            tokens_used=tokens_total,
            cost=cost_total,
            agent_name=decision.agent_name,
            metadata=execution_meta,
        )

    def _precheck(self, context: ExecutionContext) -> ExecutionError | None:
        """Check the context before invoking an agent."""
        if context.is_cancelled:
            return WorkflowCancelledError(context.workflow_id)
        if context.budget_exceeded:
            return BudgetExceededError(context.ledger.describe())
        if context.deadline_exceeded:
            return ExecutionTimeoutError(
                f"Request deadline of {context.constraints.max_execution_time}s passed"
            )
        return None

    async def _attempt(
        self,
        decision: RoutingDecision,
        request: BaseRequest,
        context: ExecutionContext,
        attempt: int,
        timeout: float,
    ) -> tuple[BaseResponse | None, ExecutionError | None]:
        """Invoke the agent once and record the outcome."""
        name = decision.agent_name
        started_at = datetime.now(UTC)
        start = time.monotonic()
        response: BaseResponse | None = None
        error: ExecutionError | None = None

        logger.debug(
            "Dispatching attempt",
            extra={
                "extra_data": {
                    "request_id": request.id,
                    "agent_name": name,
                    "attempt": attempt,
                    "timeout": round(timeout, 3),
                }
            },
        )

        try:
            with self._registry.track(name):
                result = await asyncio.wait_for(
                    decision.agent.agent.process(request, context), timeout=timeout
                )
        except TimeoutError:
            error = ExecutionTimeoutError(
                f"Agent '{name}' attempt {attempt} exceeded {timeout:.2f}s"
            )
        except ExecutionError as exc:
            error = exc
        except ValidationError as exc:
            error = ValidationFailedError(str(exc))
        except Exception as exc:
            logger.warning(
                "Agent raised unexpected exception",
                extra={"extra_data": {"agent_name": name, "attempt": attempt}},
                exc_info=True,
            )
            error = UpstreamFailureError(f"Agent '{name}' raised {type(exc).__name__}: {exc}")
        else:
            if not isinstance(result, BaseResponse):
                error = UpstreamFailureError(
                    f"Agent '{name}' returned {type(result).__name__}, expected BaseResponse"
                )
            elif not result.success:
                detail = result.error or ErrorDetail(
                    kind=ErrorKind.UPSTREAM_FAILURE,
                    code=MAO_4003_UPSTREAM_FAILURE,
                    message="Agent reported failure without details",
                )
                error = _AgentReportedError(detail, result.tokens_used, result.cost)
            else:
                response = result

        duration = time.monotonic() - start
        tokens = response.tokens_used if response is not None else error.tokens_used  # type: ignore[union-attr]
        cost = response.cost if response is not None else error.cost  # type: ignore[union-attr]
        context.ledger.record(tokens, cost)
        self._registry.record_outcome(name, error is None, duration * 1000, tokens, cost)

        self._history.append(
            ExecutionRecord(
                request_id=request.id,
                agent_name=name,
                capability=decision.capability,
                attempt=attempt,
                state=AttemptState.SUCCEEDED if error is None else AttemptState.FAILED,
                started_at=started_at,
                completed_at=datetime.now(UTC),
                duration_seconds=duration,
                routing_method=decision.method,
                tokens_used=tokens,
                cost=cost,
                error_kind=error.kind.value if error is not None else None,
                error_message=error.message if error is not None else None,
            )
        )
        return response, error

    def get_execution_history(
        self, request_id: str | None = None, limit: int = 50
    ) -> list[dict[str, Any]]:
        """Return execution records, newest first.

        Args:
            request_id: If provided, filter to records for this request only.
            limit: Maximum number of records to return.
        """
        records = [r for r in self._history if request_id is None or r.request_id == request_id]
        return [r.to_dict() for r in reversed(records)][:limit]

    def get_execution_stats(self) -> dict[str, Any]:
        """Return aggregate execution statistics.

        Returns:
            Dictionary with total_attempts, success_rate (percent),
            avg_duration_seconds, error distribution and active dispatches.
        """
        total = len(self._history)
        if total == 0:
            return {
                "total_attempts": 0,
                "success_rate": 0.0,
                "avg_duration_seconds": 0.0,
                "error_distribution": {},
                "active_dispatches": self._active,
            }

        succeeded = sum(1 for r in self._history if r.state == AttemptState.SUCCEEDED)
        avg_duration = sum(r.duration_seconds for r in self._history) / total

        distribution: dict[str, int] = {}
        for r in self._history:
            if r.error_kind:
                distribution[r.error_kind] = distribution.get(r.error_kind, 0) + 1

        return {
            "total_attempts": total,
            "success_rate": round((succeeded / total) * 100, 2),
            "avg_duration_seconds": round(avg_duration, 3),
            "error_distribution": distribution,
            "active_dispatches": self._active,
        }
