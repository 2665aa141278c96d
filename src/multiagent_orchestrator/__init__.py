"""
Multi-agent orchestrator -- routes requests to capability agents.

Classifies incoming requests, routes them to a healthy agent offering the
required capability, dispatches with timeouts, retries and budget
tracking, and coordinates multi-step workflows.
"""

__version__ = "0.1.0"

from multiagent_orchestrator.agent import Agent, BaseAgent
from multiagent_orchestrator.config import OrchestratorConfig, get_config, load_config
from multiagent_orchestrator.context import ExecutionContext
from multiagent_orchestrator.logging_config import get_structured_logger, setup_logging
from multiagent_orchestrator.models.requests import (
    BaseRequest,
    BaseResponse,
    ExecutionConstraints,
)
from multiagent_orchestrator.orchestrator import Orchestrator
from multiagent_orchestrator.registry import AgentRegistry

__all__ = [
    # Configuration
    "OrchestratorConfig",
    "get_config",
    "load_config",
    # Logging
    "get_structured_logger",
    "setup_logging",
    # Agent contract
    "Agent",
    "BaseAgent",
    "ExecutionContext",
    # Requests
    "BaseRequest",
    "BaseResponse",
    "ExecutionConstraints",
    # Core
    "AgentRegistry",
    "Orchestrator",
]
