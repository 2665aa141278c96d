"""
FastAPI HTTP server for the multi-agent orchestrator.

Exposes the orchestrator over a REST API. A single :class:`Orchestrator`
instance backs all routes; bootstrap code installs its agents with
:func:`set_orchestrator` or by registering on :func:`get_orchestrator`
before the app starts. The app's lifespan runs the initial health check,
starts periodic checks and shuts the orchestrator down on exit.
"""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from multiagent_orchestrator import __version__
from multiagent_orchestrator.agents.classifier import KeywordIntentClassifier
from multiagent_orchestrator.config import get_config
from multiagent_orchestrator.logging_config import get_structured_logger
from multiagent_orchestrator.orchestrator import Orchestrator

logger: logging.LoggerAdapter[Any] = get_structured_logger(__name__)

_orchestrator_instance: Orchestrator | None = None


def get_orchestrator() -> Orchestrator:
    """Get or create the Orchestrator singleton.

    A newly created orchestrator has the keyword intent classifier
    registered; capability providers are registered by bootstrap code.
    """
    global _orchestrator_instance
    if _orchestrator_instance is None:
        orchestrator = Orchestrator(get_config())
        orchestrator.registry.register(KeywordIntentClassifier())
        _orchestrator_instance = orchestrator
    return _orchestrator_instance


def set_orchestrator(orchestrator: Orchestrator) -> None:
    """Install a pre-built orchestrator as the singleton."""
    global _orchestrator_instance
    _orchestrator_instance = orchestrator


def reset_http_singletons() -> None:
    """Reset the HTTP server singletons. For use in tests."""
    global _orchestrator_instance
    _orchestrator_instance = None


@asynccontextmanager
async def _lifespan(app: FastAPI) -> AsyncIterator[None]:
    orchestrator = get_orchestrator()
    await orchestrator.start()
    try:
        yield
    finally:
        orchestrator.shutdown()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application.

    Configures CORS middleware with allowed origins from the orchestrator
    config and registers all API routes.

    Returns:
        Configured FastAPI application instance.
    """
    config = get_config()

    app = FastAPI(
        title="Multi-Agent Orchestrator API",
        description=(
            "REST API for the multi-agent orchestrator: submit requests, inspect "
            "agents and their health, and manage workflows."
        ),
        version=__version__,
        docs_url="/api/docs",
        openapi_url="/api/openapi.json",
        lifespan=_lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["*"],
    )

    from multiagent_orchestrator.api.routes import router

    app.include_router(router)

    logger.info(
        "FastAPI app created",
        extra={
            "extra_data": {
                "version": __version__,
                "cors_origins": config.cors_origins,
                "docs_url": "/api/docs",
            }
        },
    )

    return app
