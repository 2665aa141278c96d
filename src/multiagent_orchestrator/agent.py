"""
Agent contract for the multi-agent orchestrator.

Every capability provider implements :class:`Agent`. Concrete providers
(each wrapping a call to an external AI, text or vision service) are built
and registered by bootstrap code; the core only depends on this contract.

Agents signal failures by raising one of the :class:`ExecutionError`
subclasses below. The Dispatch Executor retries the transient ones
(:class:`ExecutionTimeoutError`, :class:`UpstreamFailureError`) and turns
every error into an unsuccessful :class:`BaseResponse`.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any

from multiagent_orchestrator.context import ExecutionContext
from multiagent_orchestrator.error_codes import (
    MAO_3003_WORKFLOW_CANCELLED,
    MAO_4001_TIMEOUT,
    MAO_4002_BUDGET_EXCEEDED,
    MAO_4003_UPSTREAM_FAILURE,
    MAO_4004_VALIDATION_FAILED,
)
from multiagent_orchestrator.logging_config import get_structured_logger
from multiagent_orchestrator.models.agents import AgentMetadata
from multiagent_orchestrator.models.requests import BaseRequest, BaseResponse, ErrorKind

logger: logging.LoggerAdapter[Any] = get_structured_logger(__name__)


class ExecutionError(Exception):
    """Base exception for failures while processing a request.

    Attributes:
        error_code: Machine-readable error code from error_codes.py.
        message: Human-readable error description.
        kind: Error category reported to the caller.
        retryable: Whether the executor retries this failure.
        tokens_used: Tokens consumed before the failure.
        cost: Cost incurred before the failure.
    """

    def __init__(
        self,
        error_code: str,
        message: str,
        kind: ErrorKind,
        retryable: bool = False,
        tokens_used: int = 0,
        cost: float = 0.0,
    ) -> None:
        self.error_code = error_code
        self.message = message
        self.kind = kind
        self.retryable = retryable
        self.tokens_used = tokens_used
        self.cost = cost
        super().__init__(f"[{error_code}] {message}")


class ExecutionTimeoutError(ExecutionError):
    """Raised when an attempt or the overall request deadline times out."""

    def __init__(self, message: str = "Operation timed out") -> None:
        super().__init__(MAO_4001_TIMEOUT, message, ErrorKind.TIMEOUT, retryable=True)


class UpstreamFailureError(ExecutionError):
    """Raised when the external provider behind an agent fails."""

    def __init__(self, message: str, tokens_used: int = 0, cost: float = 0.0) -> None:
        super().__init__(
            MAO_4003_UPSTREAM_FAILURE,
            message,
            ErrorKind.UPSTREAM_FAILURE,
            retryable=True,
            tokens_used=tokens_used,
            cost=cost,
        )


class BudgetExceededError(ExecutionError):
    """Raised when the request's token or cost budget is exhausted."""

    def __init__(self, details: str) -> None:
        super().__init__(
            MAO_4002_BUDGET_EXCEEDED,
            f"Budget exceeded: {details}",
            ErrorKind.BUDGET_EXCEEDED,
        )


class ValidationFailedError(ExecutionError):
    """Raised when the request payload is invalid for the capability."""

    def __init__(self, details: str) -> None:
        super().__init__(
            MAO_4004_VALIDATION_FAILED,
            f"Validation failed: {details}",
            ErrorKind.VALIDATION_FAILED,
        )


class WorkflowCancelledError(ExecutionError):
    """Raised when work is abandoned because its workflow was cancelled."""

    def __init__(self, workflow_id: str | None) -> None:
        self.workflow_id = workflow_id
        super().__init__(
            MAO_3003_WORKFLOW_CANCELLED,
            f"Workflow '{workflow_id}' was cancelled",
            ErrorKind.CANCELLED,
        )


class Agent(ABC):
    """The contract every capability provider implements."""

    @abstractmethod
    def get_metadata(self) -> AgentMetadata:
        """Return the agent's immutable metadata."""

    @abstractmethod
    async def health_check(self) -> bool:
        """Report whether the agent can serve requests.

        Must not raise: internal errors are reported as ``False``.
        """

    @abstractmethod
    async def process(self, request: BaseRequest, context: ExecutionContext) -> BaseResponse:
        """Handle one request.

        Raises:
            ValidationFailedError: The payload is unusable.
            UpstreamFailureError: The external provider failed.
            BudgetExceededError: The context's budget ran out during work.
            ExecutionTimeoutError: The context's deadline passed during work.
        """


class BaseAgent(Agent):
    """Convenience base class for concrete agents.

    Subclasses implement :meth:`process` and optionally :meth:`_probe`.

    Args:
        metadata: The agent's metadata.
    """

    def __init__(self, metadata: AgentMetadata) -> None:
        self._metadata = metadata

    @property
    def name(self) -> str:
        return self._metadata.name

    def get_metadata(self) -> AgentMetadata:
        return self._metadata

    async def health_check(self) -> bool:
        try:
            return bool(await self._probe())
        except Exception:
            logger.warning(
                "Agent health probe raised",
                extra={"extra_data": {"agent_name": self.name}},
                exc_info=True,
            )
            return False

    async def _probe(self) -> bool:
        """Check the agent's dependencies. Healthy by default."""
        return True

    def check_constraints(self, context: ExecutionContext) -> None:
        """Abort early once the context's limits are exceeded.

        Call before starting work and between expensive steps.

        Raises:
            WorkflowCancelledError: The owning workflow was cancelled.
            BudgetExceededError: Tokens or cost exceed the constraints.
            ExecutionTimeoutError: The overall deadline has passed.
        """
        if context.is_cancelled:
            raise WorkflowCancelledError(context.workflow_id)
        if context.budget_exceeded:
            raise BudgetExceededError(context.ledger.describe())
        if context.deadline_exceeded:
            raise ExecutionTimeoutError(
                f"Request deadline of {context.constraints.max_execution_time}s passed"
            )

    def shared_state(self, context: ExecutionContext) -> dict[str, Any]:
        """Return this agent's namespace inside ``context.shared_state``."""
        return context.shared_state.setdefault(self.name, {})

    def create_response(
        self,
        request: BaseRequest,
        data: Any,
        tokens_used: int = 0,
        cost: float = 0.0,
        metadata: dict[str, Any] | None = None,
    ) -> BaseResponse:
        """Build a successful response attributed to this agent."""
        return BaseResponse(
            request_id=request.id,
            success=True,
            data=data,
            tokens_used=tokens_used,
            cost=cost,
            agent_name=self.name,
            metadata=metadata or {},
        )
