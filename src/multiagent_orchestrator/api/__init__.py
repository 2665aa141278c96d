"""
HTTP API routes for the multi-agent orchestrator.

This package contains FastAPI route definitions that expose the
orchestrator's request processing, agent and workflow views over HTTP.
"""
