"""
Shared test fixtures for multiagent-orchestrator.

Provides reusable fixtures for:
- OrchestratorConfig with fast, test-safe timings and tmp_path isolation
- Scripted agents whose outcomes, health and usage are controlled per test
- Module-level singleton cleanup between tests
- The anyio backend for async tests
"""

import asyncio
from collections.abc import Callable, Generator
from pathlib import Path
from typing import Any

import pytest

from multiagent_orchestrator.agent import BaseAgent
from multiagent_orchestrator.config import OrchestratorConfig, RetryPolicy, load_config
from multiagent_orchestrator.context import ExecutionContext
from multiagent_orchestrator.models.agents import AgentCategory, AgentMetadata
from multiagent_orchestrator.models.requests import BaseRequest, BaseResponse, ExecutionConstraints

# ---------------------------------------------------------------------------
# Async backend
# ---------------------------------------------------------------------------


@pytest.fixture()
def anyio_backend() -> str:
    return "asyncio"


# ---------------------------------------------------------------------------
# Configuration fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def tmp_data_dir(tmp_path: Path) -> Path:
    """Return a temporary data directory with a logs subdirectory."""
    data_dir = tmp_path / "multiagent-orchestrator"
    data_dir.mkdir()
    (data_dir / "logs").mkdir()
    return data_dir


@pytest.fixture()
def test_config(tmp_data_dir: Path, monkeypatch: pytest.MonkeyPatch) -> OrchestratorConfig:
    """Return a config with millisecond-scale retry and health timings.

    Periodic health checks are disabled so tests drive them explicitly.
    """
    monkeypatch.setenv("MAO_DATA_DIR", str(tmp_data_dir))
    monkeypatch.setenv("MAO_LOG_LEVEL", "DEBUG")
    return load_config(
        max_agents=5,
        health_check_interval=0,
        health_check_timeout=0.2,
        degraded_threshold=0.1,
        default_timeout=1.0,
        classification_timeout=0.5,
        retry_policy=RetryPolicy(max_retries=2, base_delay=0.01, max_delay=0.05),
    )


# ---------------------------------------------------------------------------
# Scripted agents
# ---------------------------------------------------------------------------


class ScriptedAgent(BaseAgent):
    """Agent whose per-call outcomes are scripted by the test.

    ``outcomes`` is consumed one entry per ``process()`` call:
    an exception instance is raised, ``"hang"`` sleeps far beyond any test
    timeout, a :class:`BaseResponse` is returned as is, and any other value
    becomes the response data. Once exhausted, calls succeed with
    ``{"agent": name, "call": n}``.
    """

    def __init__(
        self,
        name: str,
        capabilities: set[str],
        outcomes: list[Any] | None = None,
        healthy: bool | Exception = True,
        probe_delay: float = 0.0,
        tokens: int = 0,
        cost: float = 0.0,
        delay: float = 0.0,
        category: AgentCategory = AgentCategory.UTILITY,
    ) -> None:
        super().__init__(
            AgentMetadata(name=name, category=category, capabilities=frozenset(capabilities))
        )
        self.outcomes = list(outcomes or [])
        self.healthy = healthy
        self.probe_delay = probe_delay
        self.tokens = tokens
        self.cost = cost
        self.delay = delay
        self.calls = 0
        self.requests: list[BaseRequest] = []
        self.contexts: list[ExecutionContext] = []

    async def _probe(self) -> bool:
        if self.probe_delay:
            await asyncio.sleep(self.probe_delay)
        if isinstance(self.healthy, Exception):
            raise self.healthy
        return self.healthy

    async def process(self, request: BaseRequest, context: ExecutionContext) -> BaseResponse:
        self.calls += 1
        self.requests.append(request)
        self.contexts.append(context)
        if self.delay:
            await asyncio.sleep(self.delay)
        outcome = self.outcomes.pop(0) if self.outcomes else None
        if isinstance(outcome, Exception):
            raise outcome
        if outcome == "hang":
            await asyncio.sleep(60)
        if isinstance(outcome, BaseResponse):
            return outcome
        data = outcome if outcome is not None else {"agent": self.name, "call": self.calls}
        return self.create_response(request, data, tokens_used=self.tokens, cost=self.cost)


@pytest.fixture()
def make_agent() -> Callable[..., ScriptedAgent]:
    """Factory fixture building :class:`ScriptedAgent` instances."""

    def _make(name: str, capabilities: set[str] | str, **kwargs: Any) -> ScriptedAgent:
        caps = {capabilities} if isinstance(capabilities, str) else capabilities
        return ScriptedAgent(name, caps, **kwargs)

    return _make


@pytest.fixture()
def constraints() -> ExecutionConstraints:
    """Generous constraints for a single test request."""
    return ExecutionConstraints(
        max_execution_time=5.0, max_tokens=1000, max_cost=1.0, retry_count=2
    )


# ---------------------------------------------------------------------------
# Singleton cleanup
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _reset_global_singletons() -> Generator[None, None, None]:
    """Reset all module-level global singletons before and after each test."""
    import multiagent_orchestrator.config as config_mod
    import multiagent_orchestrator.http_server as http_server_mod

    config_mod._config = None
    http_server_mod._orchestrator_instance = None

    yield

    config_mod._config = None
    http_server_mod._orchestrator_instance = None
