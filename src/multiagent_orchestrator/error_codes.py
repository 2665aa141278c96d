"""
Error code constants for the multi-agent orchestrator.

All error codes follow the ``MAO_XXXX`` format grouped by domain.
Each constant is a string suitable for use in structured error responses
and machine-readable logging.
"""

# ---------------------------------------------------------------------------
# Registration errors (MAO_1xxx)
# ---------------------------------------------------------------------------

MAO_1001_AGENT_NOT_FOUND = "MAO_1001"
"""Agent name not found in the registry."""

MAO_1002_DUPLICATE_NAME = "MAO_1002"
"""An agent with the given name is already registered."""

MAO_1003_CAPACITY_EXCEEDED = "MAO_1003"
"""The registry already holds ``max_agents`` agents."""

MAO_1004_AGENT_INVALID = "MAO_1004"
"""Agent metadata failed validation."""

MAO_1005_REGISTRY_SHUT_DOWN = "MAO_1005"
"""The registry was shut down and accepts no new agents."""

# ---------------------------------------------------------------------------
# Routing errors (MAO_2xxx)
# ---------------------------------------------------------------------------

MAO_2001_UNROUTABLE = "MAO_2001"
"""The request could not be mapped to any capability."""

MAO_2002_NO_AGENT_AVAILABLE = "MAO_2002"
"""No healthy agent supports the resolved capability."""

MAO_2003_MAX_DEPTH_EXCEEDED = "MAO_2003"
"""A delegation was attempted at the maximum recursion depth."""

MAO_2004_DELEGATION_NOT_ALLOWED = "MAO_2004"
"""The execution constraints forbid delegation to sub-agents."""

# ---------------------------------------------------------------------------
# Workflow errors (MAO_3xxx)
# ---------------------------------------------------------------------------

MAO_3001_WORKFLOW_NOT_FOUND = "MAO_3001"
"""Workflow ID not found."""

MAO_3002_WORKFLOW_INVALID_TRANSITION = "MAO_3002"
"""Attempted an invalid workflow state transition."""

MAO_3003_WORKFLOW_CANCELLED = "MAO_3003"
"""The workflow owning this work was cancelled."""

# ---------------------------------------------------------------------------
# Execution errors (MAO_4xxx)
# ---------------------------------------------------------------------------

MAO_4001_TIMEOUT = "MAO_4001"
"""An agent attempt or the overall request deadline timed out."""

MAO_4002_BUDGET_EXCEEDED = "MAO_4002"
"""The request's token or cost budget is exhausted."""

MAO_4003_UPSTREAM_FAILURE = "MAO_4003"
"""The agent's upstream provider failed."""

MAO_4004_VALIDATION_FAILED = "MAO_4004"
"""The request payload failed validation."""

MAO_4005_INTERNAL_ERROR = "MAO_4005"
"""An unexpected internal fault was converted into a response."""

# ---------------------------------------------------------------------------
# Configuration and admission errors (MAO_5xxx)
# ---------------------------------------------------------------------------

MAO_5001_CONFIGURATION_INVALID = "MAO_5001"
"""Orchestrator configuration failed validation."""

MAO_5002_RATE_LIMITED = "MAO_5002"
"""The caller exceeded the configured request rate."""
