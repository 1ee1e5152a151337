"""Dispatch package: the per-call state machine and its backoff and concurrency helpers."""

from rpc_fallback.dispatch.backoff import backoff_delay, backoff_schedule
from rpc_fallback.dispatch.concurrency import ConcurrencyLimiter, InFlightRequest
from rpc_fallback.dispatch.dispatcher import (
    AttemptOutcome,
    CallState,
    DispatchState,
    FailureKind,
    RequestDispatcher,
)

__all__ = [
    "AttemptOutcome",
    "CallState",
    "ConcurrencyLimiter",
    "DispatchState",
    "FailureKind",
    "InFlightRequest",
    "RequestDispatcher",
    "backoff_delay",
    "backoff_schedule",
]
