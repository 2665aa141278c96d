"""
Agent Registry for the multi-agent orchestrator.

Holds the set of registered capability providers together with their live
health status and usage metrics, and selects the agent that serves a
capability. The registry is the only owner of this state.

Routing reads and health-check writes run concurrently, so every
:class:`RegisteredAgent` carries its own lock and the entry map is guarded
by a registry-level lock.
"""

import asyncio
import logging
import threading
from collections import deque
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, datetime
from typing import Any

from pydantic import ValidationError

from multiagent_orchestrator.agent import Agent
from multiagent_orchestrator.config import OrchestratorConfig
from multiagent_orchestrator.error_codes import (
    MAO_1001_AGENT_NOT_FOUND,
    MAO_1002_DUPLICATE_NAME,
    MAO_1003_CAPACITY_EXCEEDED,
    MAO_1004_AGENT_INVALID,
    MAO_1005_REGISTRY_SHUT_DOWN,
)
from multiagent_orchestrator.health import (
    RESULT_TO_STATE,
    HealthCheckRecord,
    HealthCheckScheduler,
    probe_agent,
)
from multiagent_orchestrator.logging_config import get_structured_logger
from multiagent_orchestrator.models.agents import (
    ROUTABLE_STATES,
    AgentMetadata,
    AgentMetrics,
    AgentStatus,
    HealthState,
    SystemMetrics,
)
from multiagent_orchestrator.models.requests import ErrorKind
from multiagent_orchestrator.router import NoAgentAvailableError

logger: logging.LoggerAdapter[Any] = get_structured_logger(__name__)


class RegistrationError(Exception):
    """Base exception for registry operations.

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


class AgentNotFoundError(RegistrationError):
    """Raised when an agent name is not in the registry."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(
            MAO_1001_AGENT_NOT_FOUND,
            f"Agent '{name}' not found in registry",
            ErrorKind.NOT_FOUND,
        )


class DuplicateNameError(RegistrationError):
    """Raised when registering a name that is already registered."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(
            MAO_1002_DUPLICATE_NAME,
            f"Agent '{name}' is already registered",
            ErrorKind.DUPLICATE_NAME,
        )


class CapacityExceededError(RegistrationError):
    """Raised when the registry already holds ``max_agents`` agents."""

    def __init__(self, max_agents: int) -> None:
        self.max_agents = max_agents
        super().__init__(
            MAO_1003_CAPACITY_EXCEEDED,
            f"Registry is full ({max_agents} agents)",
            ErrorKind.CAPACITY_EXCEEDED,
        )


class InvalidAgentError(RegistrationError):
    """Raised when an object does not satisfy the agent contract."""

    def __init__(self, details: str) -> None:
        super().__init__(
            MAO_1004_AGENT_INVALID,
            f"Invalid agent: {details}",
            ErrorKind.CONFIGURATION_ERROR,
        )


class RegistryShutDownError(RegistrationError):
    """Raised when registering on a registry that was shut down."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(
            MAO_1005_REGISTRY_SHUT_DOWN,
            f"Cannot register agent '{name}': registry is shut down",
            ErrorKind.CONFIGURATION_ERROR,
        )


class RegisteredAgent:
    """A registry entry: the agent plus its live status and metrics.

    Status and metrics are only read or written under :pyattr:`lock`.

    Args:
        agent: The registered agent.
        metadata: Metadata captured at registration.
        history_size: Number of health records kept.
    """

    def __init__(self, agent: Agent, metadata: AgentMetadata, history_size: int = 50) -> None:
        self.agent = agent
        self.metadata = metadata
        self.registered_at = datetime.now(UTC)
        self.lock = threading.Lock()
        self._status = AgentStatus()
        self._metrics = AgentMetrics()
        self._history: deque[HealthCheckRecord] = deque(maxlen=history_size)

    @property
    def name(self) -> str:
        return self.metadata.name

    @property
    def status(self) -> AgentStatus:
        """Consistent copy of the current status."""
        with self.lock:
            return self._status.model_copy()

    @property
    def metrics(self) -> AgentMetrics:
        """Consistent copy of the current metrics."""
        with self.lock:
            return self._metrics.model_copy()

    @property
    def state(self) -> HealthState:
        with self.lock:
            return self._status.state

    def supports(self, capability: str) -> bool:
        return capability in self.metadata.capabilities

    def apply_health(self, record: HealthCheckRecord) -> None:
        """Update the status from a probe result. Inactive entries stay inactive."""
        with self.lock:
            self._history.append(record)
            if self._status.state == HealthState.INACTIVE:
                return
            self._status.state = RESULT_TO_STATE[record.result]
            self._status.last_check = record.timestamp
            self._status.last_response_time_ms = record.response_time_ms
            if record.passed:
                self._status.consecutive_failures = 0
            else:
                self._status.consecutive_failures += 1

    def deactivate(self) -> None:
        with self.lock:
            self._status.state = HealthState.INACTIVE

    def history(self, limit: int) -> list[HealthCheckRecord]:
        """Newest-first health records."""
        with self.lock:
            records = list(self._history)
        return list(reversed(records))[:limit]

    def _selection_key(self) -> tuple[int, int, str]:
        # Caller holds the lock.
        return (self._status.active_requests, self._metrics.total_requests, self.name)

    def to_dict(self) -> dict[str, Any]:
        """Serialize a snapshot to a JSON-compatible dictionary."""
        with self.lock:
            status = self._status.model_dump(mode="json")
            metrics = self._metrics.model_dump(mode="json")
            metrics["error_rate"] = round(self._metrics.error_rate, 4)
        return {
            "name": self.name,
            "category": self.metadata.category.value,
            "capabilities": sorted(self.metadata.capabilities),
            "version": self.metadata.version,
            "description": self.metadata.description,
            "registered_at": self.registered_at.isoformat(),
            "status": status,
            "metrics": metrics,
        }


class AgentRegistry:
    """Central registry of capability providers.

    Args:
        config: Orchestrator configuration supplying ``max_agents``,
            health check timing and history sizes.
    """

    def __init__(self, config: OrchestratorConfig) -> None:
        self._config = config
        self._agents: dict[str, RegisteredAgent] = {}
        self._lock = threading.Lock()
        self._scheduler: HealthCheckScheduler | None = None
        self._shut_down = False

    # -- Registration -------------------------------------------------------

    def register(self, agent: Agent) -> AgentMetadata:
        """Register an agent; it becomes routable immediately with state ``unknown``.

        Args:
            agent: The agent to register.

        Returns:
            The agent's metadata.

        Raises:
            InvalidAgentError: If ``agent`` does not implement the contract or
                its metadata is invalid.
            DuplicateNameError: If the name is already registered.
            CapacityExceededError: If the registry is full.
            RegistryShutDownError: If the registry was shut down.
        """
        if not isinstance(agent, Agent):
            raise InvalidAgentError(f"{type(agent).__name__} does not implement Agent")
        try:
            metadata = agent.get_metadata()
        except ValidationError as exc:
            raise InvalidAgentError(str(exc)) from exc
        if not isinstance(metadata, AgentMetadata):
            raise InvalidAgentError("get_metadata() must return AgentMetadata")

        with self._lock:
            if self._shut_down:
                raise RegistryShutDownError(metadata.name)
            if metadata.name in self._agents:
                raise DuplicateNameError(metadata.name)
            if len(self._agents) >= self._config.max_agents:
                raise CapacityExceededError(self._config.max_agents)
            self._agents[metadata.name] = RegisteredAgent(
                agent, metadata, history_size=self._config.health_history_size
            )

        logger.info(
            "Agent registered",
            extra={
                "extra_data": {
                    "agent_name": metadata.name,
                    "category": metadata.category.value,
                    "capabilities": sorted(metadata.capabilities),
                }
            },
        )
        return metadata

    def unregister(self, name: str) -> AgentMetadata:
        """Remove an agent from the registry.

        Raises:
            AgentNotFoundError: If no agent with that name is registered.
        """
        with self._lock:
            entry = self._agents.pop(name, None)
        if entry is None:
            raise AgentNotFoundError(name)
        entry.deactivate()

        logger.info("Agent unregistered", extra={"extra_data": {"agent_name": name}})
        return entry.metadata

    # -- Lookup ---------------------------------------------------------------

    def _entries(self) -> list[RegisteredAgent]:
        with self._lock:
            return list(self._agents.values())

    def get(self, name: str) -> RegisteredAgent:
        """Return the entry for ``name`` regardless of its health.

        Raises:
            AgentNotFoundError: If no agent with that name is registered.
        """
        with self._lock:
            entry = self._agents.get(name)
        if entry is None:
            raise AgentNotFoundError(name)
        return entry

    def get_agent(self, capability: str) -> RegisteredAgent:
        """Select the agent that should serve ``capability``.

        Healthy and not-yet-checked agents are preferred, least loaded first
        (fewest in-flight requests, then fewest total requests, then name).
        Degraded agents are used only when no such agent exists; unavailable
        and inactive agents never are.

        Raises:
            NoAgentAvailableError: If no eligible agent supports the capability.
        """
        preferred: list[tuple[tuple[int, int, str], RegisteredAgent]] = []
        fallback: list[tuple[tuple[int, int, str], RegisteredAgent]] = []
        total = 0

        for entry in self._entries():
            if not entry.supports(capability):
                continue
            total += 1
            with entry.lock:
                state = entry._status.state
                key = entry._selection_key()
            if state in (HealthState.HEALTHY, HealthState.UNKNOWN):
                preferred.append((key, entry))
            elif state == HealthState.DEGRADED:
                fallback.append((key, entry))

        candidates = preferred or fallback
        if not candidates:
            reason = (
                "no agent registered"
                if total == 0
                else f"{total} agent(s) registered but none healthy"
            )
            raise NoAgentAvailableError(capability, reason)
        return min(candidates, key=lambda item: item[0])[1]

    def get_agent_by_name(self, name: str) -> RegisteredAgent:
        """Return ``name`` if it is eligible for routing.

        Raises:
            AgentNotFoundError: If no agent with that name is registered.
            NoAgentAvailableError: If the agent is unavailable or inactive.
        """
        entry = self.get(name)
        state = entry.state
        if state not in ROUTABLE_STATES:
            raise NoAgentAvailableError(name, f"agent is {state.value}")
        return entry

    def has_capability(self, capability: str) -> bool:
        """Whether any registered agent declares ``capability``."""
        return any(entry.supports(capability) for entry in self._entries())

    def capabilities(self) -> list[str]:
        """Sorted list of all capabilities offered by registered agents."""
        found: set[str] = set()
        for entry in self._entries():
            found.update(entry.metadata.capabilities)
        return sorted(found)

    def list_agents(self) -> list[dict[str, Any]]:
        """Snapshots of all registered agents, sorted by name."""
        return [entry.to_dict() for entry in sorted(self._entries(), key=lambda e: e.name)]

    # -- Load and metrics -----------------------------------------------------

    @contextmanager
    def track(self, name: str) -> Iterator[None]:
        """Count an in-flight request against ``name`` for the duration of the block.

        An agent unregistered since routing is still dispatched to, uncounted.
        """
        with self._lock:
            entry = self._agents.get(name)
        if entry is None:
            yield
            return
        with entry.lock:
            entry._status.active_requests += 1
        try:
            yield
        finally:
            with entry.lock:
                entry._status.active_requests -= 1

    def record_outcome(
        self,
        name: str,
        success: bool,
        latency_ms: float,
        tokens_used: int = 0,
        cost: float = 0.0,
    ) -> None:
        """Add one dispatch outcome to the agent's metrics.

        Outcomes for agents unregistered in the meantime are dropped.
        """
        with self._lock:
            entry = self._agents.get(name)
        if entry is None:
            logger.debug(
                "Outcome for unknown agent dropped",
                extra={"extra_data": {"agent_name": name}},
            )
            return
        with entry.lock:
            m = entry._metrics
            m.total_requests += 1
            if success:
                m.successful_requests += 1
            else:
                m.failed_requests += 1
            m.average_latency_ms += (latency_ms - m.average_latency_ms) / m.total_requests
            m.total_tokens += tokens_used
            m.total_cost += cost
            m.last_activity = datetime.now(UTC)

    # -- Health ---------------------------------------------------------------

    async def perform_health_check(self) -> dict[str, bool]:
        """Probe every registered agent concurrently.

        Each probe is bounded by ``health_check_timeout``. Never raises;
        failures only change routing eligibility.

        Returns:
            Mapping of agent name to whether its probe passed.
        """
        entries = [e for e in self._entries() if e.state != HealthState.INACTIVE]
        if not entries:
            return {}

        records = await asyncio.gather(
            *(
                probe_agent(
                    entry.name,
                    entry.agent,
                    timeout=self._config.health_check_timeout,
                    degraded_threshold=self._config.degraded_threshold,
                )
                for entry in entries
            )
        )

        results: dict[str, bool] = {}
        for entry, record in zip(entries, records, strict=True):
            entry.apply_health(record)
            results[entry.name] = record.passed

        logger.info(
            "Health check cycle completed",
            extra={
                "extra_data": {
                    "checked": len(results),
                    "passed": sum(1 for ok in results.values() if ok),
                }
            },
        )
        return results

    def get_health_history(self, name: str, limit: int = 20) -> list[dict[str, Any]]:
        """Newest-first health records for ``name``.

        Raises:
            AgentNotFoundError: If no agent with that name is registered.
        """
        return [record.to_dict() for record in self.get(name).history(limit)]

    def start_health_checks(self) -> bool:
        """Start periodic health checks on the running event loop.

        Returns:
            True if the scheduler is running afterwards; False when disabled
            (``health_check_interval == 0``) or after shutdown.
        """
        if self._shut_down or self._config.health_check_interval <= 0:
            return False
        if self._scheduler is None:
            self._scheduler = HealthCheckScheduler(self, self._config.health_check_interval)
        self._scheduler.start()
        return True

    # -- Reporting ------------------------------------------------------------

    def get_stats(self) -> dict[str, Any]:
        """Aggregate counts over the current registry state. Pure read."""
        by_category: dict[str, int] = {}
        by_state: dict[str, int] = {}
        active_requests = 0
        entries = self._entries()

        for entry in entries:
            category = entry.metadata.category.value
            by_category[category] = by_category.get(category, 0) + 1
            status = entry.status
            by_state[status.state.value] = by_state.get(status.state.value, 0) + 1
            active_requests += status.active_requests

        return {
            "total_agents": len(entries),
            "active_agents": sum(by_state.get(s.value, 0) for s in ROUTABLE_STATES),
            "healthy_agents": by_state.get(HealthState.HEALTHY.value, 0),
            "active_requests": active_requests,
            "agents_by_category": by_category,
            "agents_by_state": by_state,
            "capabilities": self.capabilities(),
            "max_agents": self._config.max_agents,
        }

    def get_system_metrics(self) -> SystemMetrics:
        """Registry-wide aggregate of agent metrics."""
        entries = self._entries()
        total_requests = 0
        failed = 0
        latency_sum = 0.0
        tokens = 0
        cost = 0.0
        active_requests = 0
        active_agents = 0
        busy_agents = 0
        healthy = 0

        for entry in entries:
            with entry.lock:
                m = entry._metrics
                s = entry._status
                total_requests += m.total_requests
                failed += m.failed_requests
                latency_sum += m.average_latency_ms * m.total_requests
                tokens += m.total_tokens
                cost += m.total_cost
                active_requests += s.active_requests
                if s.state in ROUTABLE_STATES:
                    active_agents += 1
                    if s.active_requests > 0:
                        busy_agents += 1
                if s.state == HealthState.HEALTHY:
                    healthy += 1

        return SystemMetrics(
            total_agents=len(entries),
            active_agents=active_agents,
            healthy_agents=healthy,
            total_requests=total_requests,
            active_requests=active_requests,
            average_response_time_ms=latency_sum / total_requests if total_requests else 0.0,
            error_rate=failed / total_requests if total_requests else 0.0,
            total_tokens=tokens,
            total_cost=cost,
            system_load=busy_agents / active_agents if active_agents else 0.0,
        )

    # -- Lifecycle ------------------------------------------------------------

    def shutdown(self) -> None:
        """Stop health checks and deactivate every agent. Idempotent.

        Later registrations are rejected with :class:`RegistryShutDownError`.
        """
        with self._lock:
            first_call = not self._shut_down
            self._shut_down = True
        if self._scheduler is not None:
            self._scheduler.stop()
            self._scheduler = None
        for entry in self._entries():
            entry.deactivate()
        if first_call:
            logger.info(
                "Registry shut down",
                extra={"extra_data": {"agent_count": self.agent_count}},
            )

    @property
    def agent_count(self) -> int:
        """Return the number of registered agents."""
        with self._lock:
            return len(self._agents)

    @property
    def is_shut_down(self) -> bool:
        return self._shut_down
