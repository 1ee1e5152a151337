"""Public models for the RPC client."""

from rpc_fallback.models.jsonrpc import (
    FATAL_ERROR_CODES,
    RATE_LIMIT_ERROR_CODES,
    RATE_LIMIT_HTTP_STATUSES,
    JsonRpcErrorObject,
    JsonRpcRequest,
    RequestOptions,
)
from rpc_fallback.models.responses import (
    ApiResponse,
    EndpointHealthView,
    FallbackOrderView,
    NetworkStatistics,
    RpcRelayResult,
)

__all__ = [
    "FATAL_ERROR_CODES",
    "RATE_LIMIT_ERROR_CODES",
    "RATE_LIMIT_HTTP_STATUSES",
    "ApiResponse",
    "EndpointHealthView",
    "FallbackOrderView",
    "JsonRpcErrorObject",
    "JsonRpcRequest",
    "NetworkStatistics",
    "RequestOptions",
    "RpcRelayResult",
]
