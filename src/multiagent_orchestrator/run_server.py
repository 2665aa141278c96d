"""
Entry point for running the multi-agent orchestrator HTTP server.

Loads ``.env``, configures structured logging, optionally runs a bootstrap
hook that registers capability agents, and serves the FastAPI app with
uvicorn.

Usage:
    multiagent-orchestrator
    multiagent-orchestrator --port 9000
    multiagent-orchestrator --bootstrap myproject.agents:register_agents

The bootstrap hook is a ``module:function`` path; the function receives
the :class:`Orchestrator` and registers agents on ``orchestrator.registry``.
"""

import argparse
import importlib
from collections.abc import Callable
from typing import Any

import uvicorn
from dotenv import load_dotenv

from multiagent_orchestrator.config import get_config
from multiagent_orchestrator.logging_config import setup_logging


def load_bootstrap(path: str) -> Callable[[Any], None]:
    """Resolve a ``module:function`` bootstrap path.

    Raises:
        ValueError: If the path is malformed or does not name a callable.
    """
    module_name, sep, attr = path.partition(":")
    if not sep or not module_name or not attr:
        raise ValueError(f"Bootstrap path must look like 'module:function', got '{path}'")
    hook = getattr(importlib.import_module(module_name), attr, None)
    if not callable(hook):
        raise ValueError(f"Bootstrap target '{path}' is not callable")
    return hook  # type: ignore[no-any-return]


def main() -> None:
    """Start the orchestrator HTTP server."""
    load_dotenv()

    parser = argparse.ArgumentParser(
        description="Multi-agent orchestrator -- routes requests to capability agents.",
    )
    parser.add_argument(
        "--host",
        type=str,
        default=None,
        help="Host to bind the HTTP server to (overrides MAO_HTTP_HOST).",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=None,
        help="Port for the HTTP server (overrides MAO_HTTP_PORT).",
    )
    parser.add_argument(
        "--bootstrap",
        type=str,
        default=None,
        help="'module:function' called with the orchestrator to register agents.",
    )

    args = parser.parse_args()

    config = get_config()
    setup_logging(level=config.log_level, log_dir=config.resolved_log_dir)

    from multiagent_orchestrator.http_server import create_app, get_orchestrator

    if args.bootstrap:
        load_bootstrap(args.bootstrap)(get_orchestrator())

    _run_http(
        app=create_app(),
        host=args.host or config.http_host,
        port=args.port or config.http_port,
    )


def _run_http(app: Any, host: str, port: int) -> None:
    """Serve ``app`` with uvicorn.

    Args:
        app: The FastAPI application.
        host: Host to bind to.
        port: Port to listen on.
    """
    print(f"Starting multi-agent orchestrator HTTP server on {host}:{port}")
    print(f"API docs available at http://{host}:{port}/api/docs")

    uvicorn.run(app, host=host, port=port, log_level="info")


if __name__ == "__main__":
    main()
