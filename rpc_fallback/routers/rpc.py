"""JSON-RPC relay endpoint.

- POST /rpc/{network_id}: forward a JSON-RPC 2.0 payload through the
  client's fallback order and return the ``result``

Query parameters override the chain's retry and timeout settings for one call:
``retry_attempts``, ``timeout`` (seconds per attempt), ``deadline`` (seconds
for the whole call).
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Query

from rpc_fallback.middleware.error_handler import NetworkNotFoundError
from rpc_fallback.models.jsonrpc import JsonRpcRequest, RequestOptions
from rpc_fallback.models.responses import ApiResponse, RpcRelayResult

logger = logging.getLogger(__name__)


def create_rpc_router(*, client: Any = None) -> APIRouter:
    """Factory that creates the relay router with the injected ``RPCClient``."""

    rpc_router = APIRouter(prefix="/rpc", tags=["rpc"])

    @rpc_router.post("/{network_id}")
    async def relay(
        network_id: int,
        body: JsonRpcRequest,
        retry_attempts: int | None = Query(default=None, ge=1),
        timeout: float | None = Query(default=None, gt=0),
        deadline: float | None = Query(default=None, gt=0),
    ) -> dict:
        """Relay one call. Errors map onto the envelope via the global handlers."""
        if not client.registry.has_endpoints(network_id):
            raise NetworkNotFoundError(
                f"Network {network_id} is not configured",
                network_id=network_id,
            )

        options = RequestOptions(
            retry_attempts=retry_attempts,
            timeout=timeout,
            deadline=deadline,
        )
        logger.info(
            "Relaying %s to network %s",
            body.method,
            network_id,
            extra={"network_id": network_id, "rpc_method": body.method},
        )
        result = await client.request(network_id, body, options)

        return ApiResponse(
            success=True,
            data=RpcRelayResult(
                network_id=network_id,
                method=body.method,
                id=body.id,
                result=result,
            ).model_dump(),
        ).model_dump()

    return rpc_router
