"""Pydantic models for JSON-RPC 2.0 payloads and per-call request options.

Also holds the error-code tables used to classify provider responses:
throttling signals move the call to the next endpoint, fatal codes stop it.
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field

# HTTP statuses providers use when throttling (403 is common for exhausted quotas)
RATE_LIMIT_HTTP_STATUSES: frozenset[int] = frozenset({429, 403})

# JSON-RPC "limit exceeded" (EIP-1474)
RATE_LIMIT_ERROR_CODES: frozenset[int] = frozenset({-32005})

RATE_LIMIT_MESSAGES: tuple[str, ...] = ("rate limit", "too many requests")

# Malformed request: every endpoint will reject it the same way
FATAL_ERROR_CODES: frozenset[int] = frozenset({-32700, -32600, -32602})


class JsonRpcRequest(BaseModel):
    """A single JSON-RPC 2.0 call."""

    jsonrpc: Literal["2.0"] = "2.0"
    method: str = Field(..., min_length=1)
    params: list[Any] | dict[str, Any] = Field(default_factory=list)
    id: int | str | None = None


class JsonRpcErrorObject(BaseModel):
    """The ``error`` member of a JSON-RPC response."""

    code: int
    message: str = ""
    data: Any = None


class RequestOptions(BaseModel):
    """Per-call overrides; unset fields fall back to chain configuration.

    ``timeout`` bounds each attempt, ``deadline`` bounds the whole call
    (both in seconds).
    """

    retry_attempts: int | None = Field(default=None, ge=1)
    timeout: float | None = Field(default=None, gt=0)
    deadline: float | None = Field(default=None, gt=0)
    max_total_attempts: int | None = Field(default=None, ge=1)


def is_rate_limit_message(message: str | None) -> bool:
    text = (message or "").lower()
    return any(marker in text for marker in RATE_LIMIT_MESSAGES)


def is_rate_limit_error(error: JsonRpcErrorObject) -> bool:
    return error.code in RATE_LIMIT_ERROR_CODES or is_rate_limit_message(error.message)


def is_fatal_error(error: JsonRpcErrorObject) -> bool:
    return error.code in FATAL_ERROR_CODES
