"""
Request and response models for the multi-agent orchestrator.

A :class:`BaseRequest` is created by the caller and never mutated. Every
call through the orchestrator, successful or not, produces a
:class:`BaseResponse`; failures carry an :class:`ErrorDetail` whose
``kind`` tells the caller whether to retry later or fix the request.
"""

from datetime import UTC, datetime
from enum import StrEnum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _new_request_id() -> str:
    return f"req_{uuid4().hex[:16]}"


class BaseRequest(BaseModel):
    """A unit of work submitted to the orchestrator.

    Attributes:
        id: Request identifier; generated when the caller omits it.
        timestamp: Creation time.
        user_id: Caller identity used for rate limiting and tracing.
        session_id: Optional conversation/session identifier.
        type: Caller-declared request type (e.g. ``"quiz_generation"`` or
            ``"chat"``). Used for explicit and default routing.
        payload: Capability-specific input.
        metadata: Free-form caller metadata. ``metadata["capability"]``
            pins the target capability and skips classification.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(default_factory=_new_request_id)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    user_id: str = "anonymous"
    session_id: str | None = None
    type: str
    payload: dict[str, Any] = Field(default_factory=dict)
    metadata: dict[str, Any] = Field(default_factory=dict)

    @field_validator("type")
    @classmethod
    def type_must_be_non_empty(cls, v: str) -> str:
        """Request type must be a non-empty string."""
        stripped = v.strip()
        if not stripped:
            raise ValueError("type must not be empty")
        return stripped

    def text_content(self, limit: int = 2000) -> str:
        """Concatenate the textual payload fields used for classification."""
        fields = ("text", "source_text", "content", "query", "question", "topic")
        parts = [str(self.payload[f]) for f in fields if self.payload.get(f)]
        return " ".join(parts)[:limit]


class ExecutionConstraints(BaseModel):
    """Resource budget for one top-level request and its delegated sub-calls.

    Attributes:
        max_execution_time: Overall deadline in seconds.
        max_tokens: Token allowance across the whole call tree.
        max_cost: Cost allowance (USD) across the whole call tree.
        allow_sub_agents: Whether agents may delegate to other agents.
        retry_count: Retries per dispatch for transient failures.
    """

    model_config = ConfigDict(frozen=True)

    max_execution_time: float = Field(gt=0)
    max_tokens: int = Field(ge=0)
    max_cost: float = Field(ge=0)
    allow_sub_agents: bool = True
    retry_count: int = Field(default=2, ge=0)


class ErrorKind(StrEnum):
    """Machine-readable failure category carried by error responses."""

    CONFIGURATION_ERROR = "configuration_error"
    DUPLICATE_NAME = "duplicate_name"
    CAPACITY_EXCEEDED = "capacity_exceeded"
    NOT_FOUND = "not_found"
    UNROUTABLE = "unroutable"
    NO_AGENT_AVAILABLE = "no_agent_available"
    MAX_DEPTH_EXCEEDED = "max_depth_exceeded"
    DELEGATION_NOT_ALLOWED = "delegation_not_allowed"
    TIMEOUT = "timeout"
    BUDGET_EXCEEDED = "budget_exceeded"
    UPSTREAM_FAILURE = "upstream_failure"
    VALIDATION_FAILED = "validation_failed"
    CANCELLED = "cancelled"
    RATE_LIMITED = "rate_limited"
    INTERNAL_ERROR = "internal_error"


# Kinds the executor retries automatically.
TRANSIENT_KINDS = frozenset({ErrorKind.TIMEOUT, ErrorKind.UPSTREAM_FAILURE})


class ErrorDetail(BaseModel):
    """Structured error attached to a failed :class:`BaseResponse`.

    Attributes:
        kind: Failure category.
        code: ``MAO_XXXX`` error code.
        message: Human-readable description.
        retryable: True when retrying the same request later may succeed.
    """

    kind: ErrorKind
    code: str
    message: str
    retryable: bool = False

    @classmethod
    def from_exception(cls, exc: Exception) -> "ErrorDetail":
        """Build from any orchestrator exception.

        Orchestrator exceptions carry ``error_code``, ``message``, ``kind``
        and ``retryable`` attributes.
        """
        return cls(
            kind=exc.kind,  # type: ignore[attr-defined]
            code=exc.error_code,  # type: ignore[attr-defined]
            message=exc.message,  # type: ignore[attr-defined]
            retryable=getattr(exc, "retryable", False),
        )


class BaseResponse(BaseModel):
    """Outcome of processing a request.

    Attributes:
        id: Response identifier.
        request_id: The request this answers.
        success: Whether the request succeeded.
        data: Capability output on success.
        error: Structured error on failure.
        processing_time_ms: Wall-clock time spent, including retries.
        tokens_used: Tokens consumed by this response.
        cost: Cost (USD) incurred by this response.
        agent_name: Agent that produced the result, if any.
        metadata: Routing and execution details.
    """

    id: str = Field(default_factory=lambda: f"resp_{uuid4().hex[:16]}")
    request_id: str
    success: bool
    data: Any = None
    error: ErrorDetail | None = None
    processing_time_ms: float = Field(default=0.0, ge=0)
    tokens_used: int = Field(default=0, ge=0)
    cost: float = Field(default=0.0, ge=0)
    agent_name: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def failure(
        cls,
        request_id: str,
        error: ErrorDetail,
        processing_time_ms: float = 0.0,
        **kwargs: Any,
    ) -> "BaseResponse":
        """Build an unsuccessful response."""
        return cls(
            request_id=request_id,
            success=False,
            error=error,
            processing_time_ms=processing_time_ms,
            **kwargs,
        )
