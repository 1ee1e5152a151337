"""FastAPI application entry point with lifespan management.

Startup: configure logging, start the client's periodic health checks.
Shutdown: cancel the health-check task and close the client's HTTP pool.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from rpc_fallback.client import RPCClient
from rpc_fallback.config.settings import RpcSettings
from rpc_fallback.logging_config import configure_logging
from rpc_fallback.middleware.error_handler import register_error_handlers
from rpc_fallback.middleware.request_id import RequestIdMiddleware
from rpc_fallback.routers.rpc import create_rpc_router
from rpc_fallback.routers.status import create_status_router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: startup and shutdown logic."""
    settings: RpcSettings = app.state.settings
    client: RPCClient = app.state.client

    configure_logging(settings.log_level)
    logger.info("Starting RPC relay service on port %d", settings.port)

    client.start()
    logger.info(
        "RPC relay service started (health checks %s)",
        "enabled" if client.health_check_running else "disabled",
    )

    yield

    # --- Shutdown ---
    logger.info("Shutting down RPC relay service…")
    await client.aclose()
    logger.info("RPC relay service shut down")


def create_app(
    settings: RpcSettings | None = None,
    client: RPCClient | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    The client is built eagerly from ``settings`` (chain file at
    ``settings.chains_path``) unless one is injected.
    """
    settings = settings or RpcSettings()
    client = client or RPCClient.from_settings(settings)

    app = FastAPI(
        title="RPC Fallback Relay",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.client = client

    register_error_handlers(app)
    app.add_middleware(RequestIdMiddleware)

    app.include_router(create_status_router(client=client))
    app.include_router(create_rpc_router(client=client))

    return app


app = create_app()
