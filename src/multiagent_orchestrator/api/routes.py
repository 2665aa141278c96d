"""
API route definitions for the multi-agent orchestrator HTTP server.

All routes are prefixed with ``/api`` and call the shared
:class:`Orchestrator` singleton.

Endpoints:
- POST /api/requests                  -- process a request
- GET  /api/health                    -- orchestrator health (unauthenticated)
- GET  /api/agents                    -- all agents with status and metrics
- GET  /api/agents/{name}             -- one agent
- GET  /api/agents/{name}/health      -- health history for one agent
- POST /api/agents/health-check       -- run a health check now
- GET  /api/stats                     -- registry, execution and workflow stats
- GET  /api/workflows                 -- list workflows
- GET  /api/workflows/{workflow_id}   -- one workflow
- POST /api/workflows/{workflow_id}/cancel -- cancel a workflow
"""

import logging
from datetime import UTC, datetime
from typing import Any

from fastapi import APIRouter, Body, HTTPException, Query
from fastapi.responses import JSONResponse

from multiagent_orchestrator import __version__
from multiagent_orchestrator.logging_config import get_structured_logger
from multiagent_orchestrator.models.requests import ErrorKind, ExecutionConstraints
from multiagent_orchestrator.models.workflows import WorkflowStatus
from multiagent_orchestrator.orchestrator import Orchestrator
from multiagent_orchestrator.registry import AgentNotFoundError
from multiagent_orchestrator.workflow_manager import WorkflowNotFoundError

logger: logging.LoggerAdapter[Any] = get_structured_logger(__name__)

router = APIRouter(prefix="/api", tags=["api"])

# HTTP status returned for each error kind of an unsuccessful response.
_STATUS_BY_KIND: dict[ErrorKind, int] = {
    ErrorKind.VALIDATION_FAILED: 400,
    ErrorKind.MAX_DEPTH_EXCEEDED: 400,
    ErrorKind.DELEGATION_NOT_ALLOWED: 400,
    ErrorKind.BUDGET_EXCEEDED: 402,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.CANCELLED: 409,
    ErrorKind.UNROUTABLE: 422,
    ErrorKind.RATE_LIMITED: 429,
    ErrorKind.UPSTREAM_FAILURE: 502,
    ErrorKind.NO_AGENT_AVAILABLE: 503,
    ErrorKind.TIMEOUT: 504,
}


def _get_orchestrator() -> Orchestrator:
    """Get the orchestrator singleton via the http_server module."""
    from multiagent_orchestrator.http_server import get_orchestrator

    return get_orchestrator()


@router.post("/requests")
async def post_request(body: dict[str, Any] = Body(...)) -> JSONResponse:
    """Process a request through the orchestrator.

    The body is the request itself (``type``, ``payload``, optional ``id``,
    ``user_id``, ``session_id``, ``metadata``) plus optional
    ``constraints`` overriding the default execution constraints.

    Error responses keep the response body and use a status code derived
    from the error kind (400 fix the request, 429/503/504 retry later).
    """
    orchestrator = _get_orchestrator()
    raw_constraints = body.pop("constraints", None)
    constraints: ExecutionConstraints | None = None
    if raw_constraints is not None:
        if not isinstance(raw_constraints, dict):
            raise HTTPException(status_code=400, detail="constraints must be an object")
        merged = {**orchestrator.default_constraints().model_dump(), **raw_constraints}
        try:
            constraints = ExecutionConstraints.model_validate(merged)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc

    response = await orchestrator.process_request(body, constraints)

    status_code = 200
    if not response.success and response.error is not None:
        status_code = _STATUS_BY_KIND.get(response.error.kind, 500)

    logger.info(
        "HTTP request processed",
        extra={
            "extra_data": {
                "request_id": response.request_id,
                "success": response.success,
                "status_code": status_code,
            }
        },
    )
    return JSONResponse(status_code=status_code, content=response.model_dump(mode="json"))


@router.get("/health")
async def get_health() -> dict[str, Any]:
    """Return the orchestrator's health.

    ``status`` is ``healthy`` when at least one agent is routable and the
    orchestrator is not shut down, otherwise ``degraded``.
    """
    orchestrator = _get_orchestrator()
    stats = orchestrator.registry.get_stats()
    healthy = stats["active_agents"] > 0 and not orchestrator.registry.is_shut_down
    return {
        "status": "healthy" if healthy else "degraded",
        "version": __version__,
        "total_agents": stats["total_agents"],
        "active_agents": stats["active_agents"],
        "healthy_agents": stats["healthy_agents"],
        "active_workflows": len(orchestrator.workflows.active_workflows()),
        "timestamp": datetime.now(UTC).isoformat(),
    }


@router.get("/agents")
async def get_agents() -> dict[str, Any]:
    """Return every registered agent with its status and metrics."""
    agents = _get_orchestrator().registry.list_agents()
    return {"agents": agents, "total_agents": len(agents)}


@router.post("/agents/health-check")
async def post_health_check() -> dict[str, Any]:
    """Probe every agent now and return ``{name: passed}``."""
    results = await _get_orchestrator().registry.perform_health_check()
    return {"results": results, "timestamp": datetime.now(UTC).isoformat()}


@router.get("/agents/{name}")
async def get_agent(name: str) -> dict[str, Any]:
    """Return one agent's details.

    Raises:
        HTTPException: 404 if the agent is not registered.
    """
    try:
        return _get_orchestrator().registry.get(name).to_dict()
    except AgentNotFoundError as exc:
        raise HTTPException(status_code=404, detail=exc.message) from exc


@router.get("/agents/{name}/health")
async def get_agent_health(
    name: str,
    limit: int = Query(default=20, ge=1, le=500, description="Maximum records returned."),
) -> dict[str, Any]:
    """Return the agent's current status and newest-first health history.

    Raises:
        HTTPException: 404 if the agent is not registered.
    """
    registry = _get_orchestrator().registry
    try:
        entry = registry.get(name)
        history = registry.get_health_history(name, limit)
    except AgentNotFoundError as exc:
        raise HTTPException(status_code=404, detail=exc.message) from exc
    return {
        "name": name,
        "status": entry.status.model_dump(mode="json"),
        "history": history,
    }


@router.get("/stats")
async def get_stats() -> dict[str, Any]:
    """Return combined orchestrator statistics."""
    return _get_orchestrator().get_stats()


@router.get("/workflows")
async def get_workflows(
    status: WorkflowStatus | None = Query(default=None, description="Filter by status."),
) -> dict[str, Any]:
    """List workflows, newest first."""
    workflows = _get_orchestrator().list_workflows(status)
    return {
        "workflows": [w.model_dump(mode="json") for w in workflows],
        "total": len(workflows),
    }


@router.get("/workflows/{workflow_id}")
async def get_workflow(workflow_id: str) -> dict[str, Any]:
    """Return one workflow.

    Raises:
        HTTPException: 404 if the workflow is unknown.
    """
    try:
        return _get_orchestrator().get_workflow(workflow_id).model_dump(mode="json")
    except WorkflowNotFoundError as exc:
        raise HTTPException(status_code=404, detail=exc.message) from exc


@router.post("/workflows/{workflow_id}/cancel")
async def cancel_workflow(workflow_id: str) -> dict[str, Any]:
    """Cancel a workflow. Terminal workflows are left unchanged.

    Raises:
        HTTPException: 404 if the workflow is unknown.
    """
    orchestrator = _get_orchestrator()
    try:
        cancelled = orchestrator.cancel_workflow(workflow_id)
        workflow = orchestrator.get_workflow(workflow_id)
    except WorkflowNotFoundError as exc:
        raise HTTPException(status_code=404, detail=exc.message) from exc

    logger.info(
        "HTTP workflow cancel served",
        extra={"extra_data": {"workflow_id": workflow_id, "cancelled": cancelled}},
    )
    return {"workflow_id": workflow_id, "cancelled": cancelled, "status": workflow.status.value}
