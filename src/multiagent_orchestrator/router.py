"""
Intent Router for the multi-agent orchestrator.

Decides which capability a request targets and which registered agent
serves it. Resolution order:

1. Explicit target -- a capability passed by the caller (delegation,
   workflow steps), ``request.metadata["capability"]``, or a
   ``request.type`` naming a registered capability.
2. Classification -- the registered ``intent_classification`` agent,
   under ``classification_timeout``; accepted when its confidence reaches
   ``confidence_threshold``.
3. Default routing -- ``default_routes[request.type]``, then
   ``default_capability``.
4. Otherwise :class:`UnroutableError`.

The capability is then resolved through ``registry.get_agent()``, which
raises :class:`NoAgentAvailableError` when no healthy provider exists.
"""

import asyncio
import logging
import math
import time
from collections import deque
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from multiagent_orchestrator.config import OrchestratorConfig
from multiagent_orchestrator.context import ExecutionContext
from multiagent_orchestrator.error_codes import (
    MAO_2001_UNROUTABLE,
    MAO_2002_NO_AGENT_AVAILABLE,
    MAO_2003_MAX_DEPTH_EXCEEDED,
    MAO_2004_DELEGATION_NOT_ALLOWED,
)
from multiagent_orchestrator.logging_config import get_structured_logger
from multiagent_orchestrator.models.agents import Capability
from multiagent_orchestrator.models.requests import BaseRequest, BaseResponse, ErrorKind

if TYPE_CHECKING:
    from multiagent_orchestrator.registry import AgentRegistry, RegisteredAgent

logger: logging.LoggerAdapter[Any] = get_structured_logger(__name__)


class RoutingError(Exception):
    """Base exception for routing failures.

    Attributes:
        error_code: Machine-readable error code from error_codes.py.
        message: Human-readable error description.
        kind: Error category reported to the caller.
        retryable: Whether the same request may succeed later.
    """

    def __init__(
        self, error_code: str, message: str, kind: ErrorKind, retryable: bool = False
    ) -> None:
        self.error_code = error_code
        self.message = message
        self.kind = kind
        self.retryable = retryable
        super().__init__(f"[{error_code}] {message}")


class UnroutableError(RoutingError):
    """Raised when no capability can be determined for a request."""

    def __init__(self, request_id: str, reason: str) -> None:
        super().__init__(
            MAO_2001_UNROUTABLE,
            f"Request '{request_id}' could not be routed: {reason}",
            ErrorKind.UNROUTABLE,
        )


class NoAgentAvailableError(RoutingError):
    """Raised when no healthy agent serves a capability.

    Distinct from transient per-call failures: nothing was dispatched.
    """

    def __init__(self, capability: str, reason: str) -> None:
        self.capability = capability
        super().__init__(
            MAO_2002_NO_AGENT_AVAILABLE,
            f"No agent available for '{capability}': {reason}",
            ErrorKind.NO_AGENT_AVAILABLE,
            retryable=True,
        )


class MaxDepthExceededError(RoutingError):
    """Raised when a delegation is attempted at the maximum depth."""

    def __init__(self, depth: int, max_depth: int) -> None:
        super().__init__(
            MAO_2003_MAX_DEPTH_EXCEEDED,
            f"Delegation at depth {depth} exceeds maximum depth {max_depth}",
            ErrorKind.MAX_DEPTH_EXCEEDED,
        )


class DelegationNotAllowedError(RoutingError):
    """Raised when the execution constraints forbid sub-agent calls."""

    def __init__(self) -> None:
        super().__init__(
            MAO_2004_DELEGATION_NOT_ALLOWED,
            "Delegation to sub-agents is not allowed for this request",
            ErrorKind.DELEGATION_NOT_ALLOWED,
        )


class RoutingDecision:
    """Result of a routing decision.

    Attributes:
        agent: The selected registry entry.
        capability: The resolved capability.
        method: ``explicit``, ``classified`` or ``default``.
        reason: Human-readable explanation.
        confidence: Classifier confidence, for classified routes.
        timestamp: When the decision was made.
    """

    def __init__(
        self,
        agent: "RegisteredAgent",
        capability: str,
        method: str,
        reason: str,
        confidence: float | None = None,
    ) -> None:
        self.agent = agent
        self.capability = capability
        self.method = method
        self.reason = reason
        self.confidence = confidence
        self.timestamp = datetime.now(UTC)

    @property
    def agent_name(self) -> str:
        return self.agent.name

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-compatible dictionary."""
        return {
            "agent_name": self.agent.name,
            "capability": self.capability,
            "method": self.method,
            "reason": self.reason,
            "confidence": self.confidence,
            "timestamp": self.timestamp.isoformat(),
        }


class IntentRouter:
    """Maps requests to a capability and a healthy agent serving it.

    Args:
        registry: The agent registry.
        config: Orchestrator configuration (thresholds, timeouts, defaults).
        history_size: Number of routing decisions kept in memory.
    """

    def __init__(
        self,
        registry: "AgentRegistry",
        config: OrchestratorConfig,
        history_size: int = 200,
    ) -> None:
        self._registry = registry
        self._config = config
        self._routing_history: deque[dict[str, Any]] = deque(maxlen=history_size)

    async def route(
        self,
        request: BaseRequest,
        context: ExecutionContext,
        capability: str | None = None,
    ) -> RoutingDecision:
        """Route ``request`` to an agent.

        Args:
            request: The request to route.
            context: The request's execution context; classification usage
                is charged to its ledger.
            capability: Explicit target capability, skipping classification.

        Returns:
            RoutingDecision with the selected agent.

        Raises:
            UnroutableError: If no capability could be determined.
            NoAgentAvailableError: If no healthy agent serves the capability.
        """
        confidence: float | None = None

        target = capability or self._explicit_capability(request)
        if target:
            method = "explicit"
            reason = f"Explicit target capability '{target}'"
        else:
            classified = await self._classify(request, context)
            if classified is not None:
                target, confidence = classified
                method = "classified"
                reason = f"Classified as '{target}' with confidence {confidence:.2f}"
            else:
                target = self._default_capability(request)
                method = "default"
                reason = f"Default route for request type '{request.type}'"

        if not target:
            raise UnroutableError(
                request.id,
                f"classification was inconclusive and no default route exists "
                f"for type '{request.type}'",
            )

        entry = self._registry.get_agent(target)
        decision = RoutingDecision(
            agent=entry,
            capability=target,
            method=method,
            reason=reason,
            confidence=confidence,
        )
        self._record_routing(request, decision)
        return decision

    def _explicit_capability(self, request: BaseRequest) -> str | None:
        pinned = request.metadata.get("capability")
        if isinstance(pinned, str) and pinned.strip():
            return pinned.strip()
        if request.type != Capability.INTENT_CLASSIFICATION and self._registry.has_capability(
            request.type
        ):
            return request.type
        return None

    def _default_capability(self, request: BaseRequest) -> str | None:
        return self._config.default_routes.get(request.type) or self._config.default_capability

    async def _classify(
        self, request: BaseRequest, context: ExecutionContext
    ) -> tuple[str, float] | None:
        """Ask the classification agent for a capability.

        Returns ``None`` when no classifier is available, it fails or times
        out, or its confidence is below the threshold.
        """
        try:
            entry = self._registry.get_agent(Capability.INTENT_CLASSIFICATION)
        except NoAgentAvailableError:
            logger.info(
                "No classifier available, using default routing",
                extra={"extra_data": {"request_id": request.id}},
            )
            return None

        timeout = min(self._config.classification_timeout, context.remaining_time)
        start = time.monotonic()
        response: BaseResponse | None = None
        try:
            with self._registry.track(entry.name):
                response = await asyncio.wait_for(
                    entry.agent.process(request, context), timeout=timeout
                )
        except TimeoutError:
            logger.warning(
                "Classification timed out",
                extra={"extra_data": {"request_id": request.id, "timeout": round(timeout, 3)}},
            )
        except Exception as exc:
            logger.warning(
                "Classification failed",
                extra={
                    "extra_data": {
                        "request_id": request.id,
                        "error": f"{type(exc).__name__}: {exc}",
                    }
                },
            )

        latency_ms = (time.monotonic() - start) * 1000
        succeeded = response is not None and response.success
        tokens = response.tokens_used if response is not None else 0
        cost = response.cost if response is not None else 0.0
        context.ledger.record(tokens, cost)
        self._registry.record_outcome(entry.name, succeeded, latency_ms, tokens, cost)

        if not succeeded or not isinstance(response.data, dict):  # type: ignore[union-attr]
            return None

        data = response.data  # type: ignore[union-attr]
        target = data.get("capability")
        try:
            confidence = float(data.get("confidence") or 0.0)
            if not math.isfinite(confidence):
                raise ValueError(confidence)
        except (TypeError, ValueError):
            logger.warning(
                "Classifier returned a non-numeric confidence",
                extra={
                    "extra_data": {
                        "request_id": request.id,
                        "confidence": repr(data.get("confidence")),
                    }
                },
            )
            return None
        if target is not None and not isinstance(target, str):
            logger.warning(
                "Classifier returned a non-string capability",
                extra={"extra_data": {"request_id": request.id, "capability": repr(target)}},
            )
            return None
        if not target or confidence < self._config.confidence_threshold:
            logger.info(
                "Classification below confidence threshold",
                extra={
                    "extra_data": {
                        "request_id": request.id,
                        "capability": target,
                        "confidence": confidence,
                        "threshold": self._config.confidence_threshold,
                        "ambiguous": data.get("ambiguous", False),
                    }
                },
            )
            return None
        return str(target), confidence

    def _record_routing(self, request: BaseRequest, decision: RoutingDecision) -> None:
        record = {"request_id": request.id, **decision.to_dict()}
        self._routing_history.append(record)
        logger.info("Request routed", extra={"extra_data": record})

    def get_routing_history(self, limit: int = 50) -> list[dict[str, Any]]:
        """Return recent routing decisions, newest first."""
        return list(reversed(self._routing_history))[:limit]
