"""
Per-request execution context for the multi-agent orchestrator.

One :class:`ExecutionContext` is created per top-level request and threaded
through the whole call tree. Delegated sub-calls receive :meth:`child`
copies that share the budget ledger, shared state, deadline and
cancellation token of the parent, so the budget covers the full tree.
"""

import time
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any

from multiagent_orchestrator.models.requests import ExecutionConstraints

if TYPE_CHECKING:
    from multiagent_orchestrator.models.requests import BaseRequest, BaseResponse

DelegateHook = Callable[
    ["BaseRequest", "ExecutionContext", str | None], Awaitable["BaseResponse"]
]


class BudgetLedger:
    """Running token and cost totals for one top-level request.

    Usage is always recorded, even when it pushes a total past its limit;
    :pyattr:`exceeded` then blocks any further dispatch.
    """

    def __init__(self, max_tokens: int, max_cost: float) -> None:
        self.max_tokens = max_tokens
        self.max_cost = max_cost
        self.tokens_used = 0
        self.cost = 0.0

    def record(self, tokens: int = 0, cost: float = 0.0) -> None:
        self.tokens_used += max(tokens, 0)
        self.cost += max(cost, 0.0)

    @property
    def exceeded(self) -> bool:
        return self.tokens_used > self.max_tokens or self.cost > self.max_cost

    @property
    def remaining_tokens(self) -> int:
        return max(self.max_tokens - self.tokens_used, 0)

    @property
    def remaining_cost(self) -> float:
        return max(self.max_cost - self.cost, 0.0)

    def describe(self) -> str:
        """Human-readable usage summary for error messages."""
        return (
            f"tokens {self.tokens_used}/{self.max_tokens}, "
            f"cost {self.cost:.4f}/{self.max_cost:.4f}"
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "tokens_used": self.tokens_used,
            "max_tokens": self.max_tokens,
            "cost": round(self.cost, 6),
            "max_cost": self.max_cost,
        }


class CancellationToken:
    """Cooperative cancellation flag polled between workflow steps."""

    def __init__(self) -> None:
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled


class ExecutionContext:
    """State threaded through one top-level request and its delegated sub-calls.

    The context itself is never mutated after creation apart from the
    shared containers it references (``shared_state`` and the ledger).
    Agents must only write under their own namespace in ``shared_state``
    (see :meth:`BaseAgent.shared_state`).

    Args:
        request_id: ID of the top-level request, kept for the whole tree.
        constraints: Time, token and cost budget of the request.
        user_id: Caller identity.
        session_id: Optional session identifier.
        depth: Delegation depth; 0 for the top-level call.
        shared_state: State shared across the call tree.
        ledger: Shared budget ledger. Created from ``constraints`` if omitted.
        started_at: ``time.monotonic()`` start of the top-level request.
        cancellation: Token of the owning workflow, if any.
        workflow_id: ID of the owning workflow, if any.
        delegate_hook: Orchestrator callback used by :meth:`delegate`.
    """

    def __init__(
        self,
        request_id: str,
        constraints: ExecutionConstraints,
        user_id: str = "anonymous",
        session_id: str | None = None,
        depth: int = 0,
        shared_state: dict[str, Any] | None = None,
        ledger: BudgetLedger | None = None,
        started_at: float | None = None,
        cancellation: CancellationToken | None = None,
        workflow_id: str | None = None,
        delegate_hook: DelegateHook | None = None,
    ) -> None:
        self.request_id = request_id
        self.constraints = constraints
        self.user_id = user_id
        self.session_id = session_id
        self.depth = depth
        self.shared_state: dict[str, Any] = shared_state if shared_state is not None else {}
        self.ledger = ledger or BudgetLedger(constraints.max_tokens, constraints.max_cost)
        self.started_at = started_at if started_at is not None else time.monotonic()
        self.cancellation = cancellation
        self.workflow_id = workflow_id
        self._delegate_hook = delegate_hook

    def child(self) -> "ExecutionContext":
        """Return a context for a delegated sub-call, one level deeper."""
        return self.derive(depth=self.depth + 1)

    def derive(self, **changes: Any) -> "ExecutionContext":
        """Return a copy sharing ledger, state and deadline, with ``changes`` applied."""
        values: dict[str, Any] = {
            "request_id": self.request_id,
            "constraints": self.constraints,
            "user_id": self.user_id,
            "session_id": self.session_id,
            "depth": self.depth,
            "shared_state": self.shared_state,
            "ledger": self.ledger,
            "started_at": self.started_at,
            "cancellation": self.cancellation,
            "workflow_id": self.workflow_id,
            "delegate_hook": self._delegate_hook,
        }
        values.update(changes)
        return ExecutionContext(**values)

    @property
    def elapsed(self) -> float:
        """Seconds spent since the top-level request started."""
        return time.monotonic() - self.started_at

    @property
    def remaining_time(self) -> float:
        """Seconds left before the overall deadline (never negative)."""
        return max(self.constraints.max_execution_time - self.elapsed, 0.0)

    @property
    def deadline_exceeded(self) -> bool:
        return self.elapsed >= self.constraints.max_execution_time

    @property
    def budget_exceeded(self) -> bool:
        return self.ledger.exceeded

    @property
    def is_cancelled(self) -> bool:
        return self.cancellation is not None and self.cancellation.cancelled

    async def delegate(
        self, request: "BaseRequest", capability: str | None = None
    ) -> "BaseResponse":
        """Ask the orchestrator to handle ``request`` as a sub-call of this context.

        Args:
            request: The sub-request.
            capability: Target capability; classified from the request if omitted.

        Returns:
            The sub-call's response. Depth and delegation violations come back
            as unsuccessful responses, not exceptions.

        Raises:
            RuntimeError: If the context was not created by an orchestrator.
        """
        if self._delegate_hook is None:
            raise RuntimeError("ExecutionContext is not attached to an orchestrator")
        return await self._delegate_hook(request, self, capability)
