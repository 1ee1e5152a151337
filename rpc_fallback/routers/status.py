"""Health, readiness, and per-network diagnostic endpoints.

None of these perform network I/O; they read the client's in-memory state.
Endpoint URLs are passed through ``redact_url`` since provider keys live in them.
- GET  /health: service status + concurrency stats
- GET  /readiness: 200 only when the client can still issue calls
- GET  /networks/{network_id}/health: per-endpoint health records
- GET  /networks/{network_id}/fallback-order: current ranked candidates
- GET  /networks/{network_id}/statistics: aggregated counters
- POST /networks/{network_id}/reset: zero all health state for a network
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from fastapi import APIRouter, Response

from rpc_fallback.logging_config import redact_url
from rpc_fallback.middleware.error_handler import NetworkNotFoundError
from rpc_fallback.models.responses import (
    ApiResponse,
    EndpointHealthView,
    FallbackOrderView,
    NetworkStatistics,
)

if TYPE_CHECKING:
    from rpc_fallback.client import RPCClient


def _require_network(client: "RPCClient", network_id: int) -> None:
    if not client.registry.has_endpoints(network_id):
        raise NetworkNotFoundError(
            f"Network {network_id} is not configured",
            network_id=network_id,
        )


def create_status_router(*, client: Any = None) -> APIRouter:
    """Factory that creates the status router with the injected ``RPCClient``."""

    status_router = APIRouter(tags=["status"])

    @status_router.get("/health")
    async def health() -> dict:
        """Service health check with client statistics."""
        stats = client.get_stats() if client else {}
        return ApiResponse(
            success=True,
            data={"status": "healthy", "client": stats},
        ).model_dump()

    @status_router.get("/readiness")
    async def readiness(response: Response) -> dict:
        """Readiness probe: 200 iff a client is wired and not closed."""
        is_ready = client is not None and not client.closed
        if not is_ready:
            response.status_code = 503

        return ApiResponse(
            success=is_ready,
            data={"ready": is_ready},
            error=None if is_ready else "Service not ready",
        ).model_dump()

    @status_router.get("/networks/{network_id}/health")
    async def network_health(network_id: int) -> dict:
        _require_network(client, network_id)
        records = client.get_health_snapshot(network_id)
        endpoints = [
            EndpointHealthView.model_validate(
                {**record.to_dict(), "url": redact_url(record.url)}
            ).model_dump()
            for record in sorted(records.values(), key=lambda r: r.index)
        ]
        return ApiResponse(
            success=True,
            data={"network_id": network_id, "endpoints": endpoints},
        ).model_dump()

    @status_router.get("/networks/{network_id}/fallback-order")
    async def fallback_order(network_id: int) -> dict:
        _require_network(client, network_id)
        order = [redact_url(url) for url in client.get_fallback_order(network_id)]
        view = FallbackOrderView(
            network_id=network_id,
            endpoints=order,
            best=order[0] if order else None,
        )
        return ApiResponse(success=True, data=view.model_dump()).model_dump()

    @status_router.get("/networks/{network_id}/statistics")
    async def statistics(network_id: int) -> dict:
        _require_network(client, network_id)
        stats = NetworkStatistics(network_id=network_id, **client.get_statistics(network_id))
        return ApiResponse(success=True, data=stats.model_dump()).model_dump()

    @status_router.post("/networks/{network_id}/reset")
    async def reset(network_id: int) -> dict:
        """Zero all health counters and clear rate-limit markers for a network."""
        _require_network(client, network_id)
        client.reset_network(network_id)
        return ApiResponse(
            success=True,
            data={"network_id": network_id, "reset": True},
        ).model_dump()

    return status_router
