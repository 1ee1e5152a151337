"""RPC client errors and the relay service's exception handlers.

All client-specific errors extend RpcClientError. Inside the library they are
raised by the dispatcher and the facade; when the relay service is running,
the FastAPI exception handlers below turn them (plus Pydantic's
RequestValidationError and unhandled exceptions) into the consistent JSON
envelope: { success, data, error, meta }.
"""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from rpc_fallback.models.jsonrpc import FATAL_ERROR_CODES
from rpc_fallback.models.responses import ApiResponse

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Error hierarchy
# ---------------------------------------------------------------------------


class RpcClientError(Exception):
    """Base error for all RPC client errors."""

    status_code: int = 500
    message: str = "Internal server error"

    def __init__(self, message: str | None = None, **kwargs: object) -> None:
        self.message = message or self.__class__.message
        self.details = kwargs
        super().__init__(self.message)


class NoEndpointsAvailableError(RpcClientError):
    """The network has no configured endpoints."""

    status_code = 503
    message = "No RPC endpoints available"


class AllEndpointsExhaustedError(RpcClientError):
    """Every candidate endpoint was tried and failed.

    ``last_error`` holds the final attempt-level failure and is also chained
    as ``__cause__``.
    """

    status_code = 502
    message = "All RPC endpoints failed"

    def __init__(
        self,
        message: str | None = None,
        *,
        last_error: Exception | None = None,
        attempts: int = 0,
        **kwargs: object,
    ) -> None:
        self.last_error = last_error
        self.attempts = attempts
        if last_error is not None:
            kwargs.setdefault("last_error", str(last_error))
        super().__init__(message, attempts=attempts, **kwargs)


class RateLimitedError(RpcClientError):
    """Every remaining candidate is cooling down after a throttling signal."""

    status_code = 429
    message = "All RPC endpoints are rate limited"


class RpcTimeoutError(RpcClientError):
    """An attempt or the whole call exceeded its deadline."""

    status_code = 504
    message = "RPC request timed out"


class TransportError(RpcClientError):
    """Connection-level failure or a non-JSON-RPC HTTP error response."""

    status_code = 502
    message = "RPC transport error"


class RpcProtocolError(RpcClientError):
    """The endpoint answered with a JSON-RPC error object.

    Malformed-request codes are the caller's fault and map to 400 instead of 502.
    """

    status_code = 502
    message = "RPC error"

    def __init__(
        self,
        message: str | None = None,
        *,
        code: int | None = None,
        data: object = None,
        **kwargs: object,
    ) -> None:
        self.code = code
        self.data = data
        if code in FATAL_ERROR_CODES:
            self.status_code = 400
        super().__init__(message, code=code, **kwargs)


class InvalidPayloadError(RpcClientError):
    """The caller's JSON-RPC payload is malformed; nothing was sent."""

    status_code = 422
    message = "Invalid JSON-RPC payload"


class NetworkNotFoundError(RpcClientError):
    """The network id is not present in the chain configuration."""

    status_code = 404
    message = "Network not found"


# ---------------------------------------------------------------------------
# FastAPI exception handlers
# ---------------------------------------------------------------------------


def _error_response(status_code: int, error: str, meta: dict | None = None) -> JSONResponse:
    """Render a failure as the relay's ``ApiResponse`` envelope."""
    body = ApiResponse(success=False, error=error, meta=meta)
    return JSONResponse(status_code=status_code, content=body.model_dump(mode="json"))


async def _rpc_error_handler(_request: Request, exc: RpcClientError) -> JSONResponse:
    """Map an RpcClientError onto its HTTP status; details travel in ``meta``."""
    if exc.status_code >= 500:
        logger.warning(
            "RPC relay call failed: %s",
            exc.message,
            extra={"status_code": exc.status_code},
        )
    return _error_response(exc.status_code, exc.message, meta=exc.details or None)


async def _validation_error_handler(
    _request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Malformed relay body or query parameters (422)."""
    fields = [
        {
            "field": ".".join(str(part) for part in err["loc"] if part != "body"),
            "message": err["msg"],
        }
        for err in exc.errors()
    ]
    return _error_response(422, "Validation error", meta={"fields": fields})


async def _unhandled_error_handler(_request: Request, exc: Exception) -> JSONResponse:
    """Anything else is a 500; the traceback goes to the log, never the client."""
    logger.error("Unhandled exception in relay service: %s", exc, exc_info=exc)
    return _error_response(500, "Internal server error")


def register_error_handlers(app: FastAPI) -> None:
    """Install the envelope handlers on ``app``."""
    handlers = (
        (RpcClientError, _rpc_error_handler),
        (RequestValidationError, _validation_error_handler),
        (Exception, _unhandled_error_handler),
    )
    for exc_class, handler in handlers:
        app.add_exception_handler(exc_class, handler)  # type: ignore[arg-type]
