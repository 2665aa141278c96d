"""
Unit tests for agent health probing.

Tests cover:
- Healthy, degraded, unhealthy and timed-out probe results
- Probes never raising, whatever the agent does
- Record serialisation
- The periodic health check scheduler
"""

import asyncio
from collections.abc import Callable
from datetime import UTC, datetime
from typing import Any

import pytest

from multiagent_orchestrator.agent import Agent
from multiagent_orchestrator.config import load_config
from multiagent_orchestrator.context import ExecutionContext
from multiagent_orchestrator.health import (
    RESULT_TO_STATE,
    HealthCheckRecord,
    HealthCheckResult,
    HealthCheckScheduler,
    probe_agent,
)
from multiagent_orchestrator.models.agents import AgentCategory, AgentMetadata, HealthState
from multiagent_orchestrator.models.requests import BaseRequest, BaseResponse
from multiagent_orchestrator.registry import AgentRegistry


class RaisingHealthAgent(Agent):
    """Agent violating the contract by raising from health_check()."""

    def get_metadata(self) -> AgentMetadata:
        return AgentMetadata(
            name="raiser", category=AgentCategory.UTILITY, capabilities=frozenset({"x"})
        )

    async def health_check(self) -> bool:
        raise RuntimeError("probe exploded")

    async def process(self, request: BaseRequest, context: ExecutionContext) -> BaseResponse:
        raise NotImplementedError


class TestProbeAgent:
    """Verify single probe outcomes."""

    @pytest.mark.anyio
    async def test_healthy(self, make_agent: Callable[..., Any]) -> None:
        record = await probe_agent("a", make_agent("a", "x"), timeout=0.5, degraded_threshold=0.2)
        assert record.result == HealthCheckResult.HEALTHY
        assert record.passed is True
        assert record.details == ""
        assert record.response_time_ms >= 0

    @pytest.mark.anyio
    async def test_reported_unhealthy(self, make_agent: Callable[..., Any]) -> None:
        agent = make_agent("a", "x", healthy=False)
        record = await probe_agent("a", agent, timeout=0.5, degraded_threshold=0.2)
        assert record.result == HealthCheckResult.UNHEALTHY
        assert record.passed is False

    @pytest.mark.anyio
    async def test_probe_exception_in_base_agent(self, make_agent: Callable[..., Any]) -> None:
        agent = make_agent("a", "x", healthy=ConnectionError("refused"))
        record = await probe_agent("a", agent, timeout=0.5, degraded_threshold=0.2)
        assert record.result == HealthCheckResult.UNHEALTHY

    @pytest.mark.anyio
    async def test_health_check_raising_is_contained(self) -> None:
        record = await probe_agent(
            "raiser", RaisingHealthAgent(), timeout=0.5, degraded_threshold=0.2
        )
        assert record.result == HealthCheckResult.UNHEALTHY
        assert "RuntimeError" in record.details

    @pytest.mark.anyio
    async def test_slow_pass_is_degraded(self, make_agent: Callable[..., Any]) -> None:
        agent = make_agent("a", "x", probe_delay=0.1)
        record = await probe_agent("a", agent, timeout=1.0, degraded_threshold=0.02)
        assert record.result == HealthCheckResult.DEGRADED
        assert record.passed is True

    @pytest.mark.anyio
    async def test_timeout(self, make_agent: Callable[..., Any]) -> None:
        agent = make_agent("a", "x", probe_delay=1.0)
        record = await probe_agent("a", agent, timeout=0.05, degraded_threshold=0.01)
        assert record.result == HealthCheckResult.TIMED_OUT
        assert record.passed is False
        assert "exceeded" in record.details


class TestHealthCheckRecord:
    """Verify record helpers."""

    def test_to_dict(self) -> None:
        ts = datetime(2026, 1, 1, tzinfo=UTC)
        record = HealthCheckRecord("a", HealthCheckResult.DEGRADED, 12.3456, ts, "slow")
        assert record.to_dict() == {
            "agent_name": "a",
            "result": "degraded",
            "response_time_ms": 12.35,
            "timestamp": ts.isoformat(),
            "details": "slow",
        }

    def test_result_to_state(self) -> None:
        assert RESULT_TO_STATE[HealthCheckResult.HEALTHY] == HealthState.HEALTHY
        assert RESULT_TO_STATE[HealthCheckResult.DEGRADED] == HealthState.DEGRADED
        assert RESULT_TO_STATE[HealthCheckResult.UNHEALTHY] == HealthState.UNAVAILABLE
        assert RESULT_TO_STATE[HealthCheckResult.TIMED_OUT] == HealthState.UNAVAILABLE


class TestHealthCheckScheduler:
    """Verify the periodic health check task."""

    @pytest.mark.anyio
    async def test_runs_checks_periodically(
        self, tmp_data_dir: Any, make_agent: Callable[..., Any]
    ) -> None:
        registry = AgentRegistry(load_config(data_dir=str(tmp_data_dir)))
        registry.register(make_agent("quiz", "quiz_generation"))
        scheduler = HealthCheckScheduler(registry, interval=0.02)

        scheduler.start()
        assert scheduler.running is True
        await asyncio.sleep(0.15)
        scheduler.stop()

        assert scheduler.running is False
        assert registry.get("quiz").state == HealthState.HEALTHY
        assert len(registry.get_health_history("quiz")) >= 2

    @pytest.mark.anyio
    async def test_start_twice_keeps_one_task(self, tmp_data_dir: Any) -> None:
        registry = AgentRegistry(load_config(data_dir=str(tmp_data_dir)))
        scheduler = HealthCheckScheduler(registry, interval=10)
        scheduler.start()
        task = scheduler._task
        scheduler.start()
        assert scheduler._task is task
        scheduler.stop()
        scheduler.stop()
