"""
Agent health probing and periodic health checks.

Each probe calls the agent's own ``health_check()`` under a bounded
timeout. A probe that times out or raises is recorded as a failure
(fail-safe default); a passing probe slower than the degraded threshold
marks the agent degraded. The :class:`HealthCheckScheduler` runs checks on
an asyncio task of its own, so a slow probe never stalls request dispatch.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import StrEnum
from typing import TYPE_CHECKING, Any

from multiagent_orchestrator.agent import Agent
from multiagent_orchestrator.logging_config import get_structured_logger
from multiagent_orchestrator.models.agents import HealthState

if TYPE_CHECKING:
    from multiagent_orchestrator.registry import AgentRegistry

logger: logging.LoggerAdapter[Any] = get_structured_logger(__name__)


class HealthCheckResult(StrEnum):
    """Result of a single health probe."""

    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"
    TIMED_OUT = "timed_out"


# Mapping from probe result to agent health state
RESULT_TO_STATE: dict[HealthCheckResult, HealthState] = {
    HealthCheckResult.HEALTHY: HealthState.HEALTHY,
    HealthCheckResult.DEGRADED: HealthState.DEGRADED,
    HealthCheckResult.UNHEALTHY: HealthState.UNAVAILABLE,
    HealthCheckResult.TIMED_OUT: HealthState.UNAVAILABLE,
}


@dataclass
class HealthCheckRecord:
    """Record of a single health probe.

    Attributes:
        agent_name: The agent that was checked.
        result: The probe outcome.
        response_time_ms: Duration of the probe in milliseconds.
        timestamp: When the probe finished.
        details: Additional context (error messages, etc.).
    """

    agent_name: str
    result: HealthCheckResult
    response_time_ms: float
    timestamp: datetime
    details: str = ""

    @property
    def passed(self) -> bool:
        return self.result in (HealthCheckResult.HEALTHY, HealthCheckResult.DEGRADED)

    def to_dict(self) -> dict[str, Any]:
        """Serialize to a JSON-compatible dictionary."""
        return {
            "agent_name": self.agent_name,
            "result": self.result.value,
            "response_time_ms": round(self.response_time_ms, 2),
            "timestamp": self.timestamp.isoformat(),
            "details": self.details,
        }


async def probe_agent(
    name: str,
    agent: Agent,
    timeout: float,
    degraded_threshold: float,
) -> HealthCheckRecord:
    """Run one bounded health probe against ``agent``.

    Never raises: timeouts and exceptions become failing records.

    Args:
        name: Registered name of the agent.
        agent: The agent to probe.
        timeout: Probe timeout in seconds.
        degraded_threshold: Passing probes slower than this are degraded.

    Returns:
        The resulting :class:`HealthCheckRecord`.
    """
    start = time.monotonic()
    details = ""
    try:
        ok = await asyncio.wait_for(agent.health_check(), timeout=timeout)
    except TimeoutError:
        result = HealthCheckResult.TIMED_OUT
        details = f"Health probe exceeded {timeout}s"
    except Exception as exc:
        result = HealthCheckResult.UNHEALTHY
        details = f"Health probe raised {type(exc).__name__}: {exc}"
    else:
        elapsed = time.monotonic() - start
        if not ok:
            result = HealthCheckResult.UNHEALTHY
            details = "Health probe reported unhealthy"
        elif elapsed > degraded_threshold:
            result = HealthCheckResult.DEGRADED
            details = f"Health probe took {elapsed:.2f}s (threshold {degraded_threshold}s)"
        else:
            result = HealthCheckResult.HEALTHY

    elapsed_ms = (time.monotonic() - start) * 1000
    record = HealthCheckRecord(
        agent_name=name,
        result=result,
        response_time_ms=elapsed_ms,
        timestamp=datetime.now(UTC),
        details=details,
    )

    log = logger.debug if record.passed else logger.warning
    log(
        "Health check completed",
        extra={
            "extra_data": {
                "agent_name": name,
                "result": result.value,
                "response_time_ms": round(elapsed_ms, 2),
            }
        },
    )
    return record


class HealthCheckScheduler:
    """Runs ``registry.perform_health_check()`` every ``interval`` seconds.

    Args:
        registry: The registry to check.
        interval: Seconds between checks.
    """

    def __init__(self, registry: "AgentRegistry", interval: float) -> None:
        self._registry = registry
        self._interval = interval
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start the periodic task on the running event loop."""
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(
            self._run(), name="health-check-scheduler"
        )
        logger.info(
            "Health check scheduler started",
            extra={"extra_data": {"interval_seconds": self._interval}},
        )

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            await self._registry.perform_health_check()

    def stop(self) -> None:
        """Cancel the periodic task. Safe to call more than once."""
        if self._task is None:
            return
        self._task.cancel()
        self._task = None
        logger.info("Health check scheduler stopped")
