"""Middleware package: error hierarchy and request ID."""

from rpc_fallback.middleware.error_handler import (
    AllEndpointsExhaustedError,
    InvalidPayloadError,
    NetworkNotFoundError,
    NoEndpointsAvailableError,
    RateLimitedError,
    RpcClientError,
    RpcProtocolError,
    RpcTimeoutError,
    TransportError,
    register_error_handlers,
)
from rpc_fallback.middleware.request_id import RequestIdMiddleware

__all__ = [
    "AllEndpointsExhaustedError",
    "InvalidPayloadError",
    "NetworkNotFoundError",
    "NoEndpointsAvailableError",
    "RateLimitedError",
    "RequestIdMiddleware",
    "RpcClientError",
    "RpcProtocolError",
    "RpcTimeoutError",
    "TransportError",
    "register_error_handlers",
]
