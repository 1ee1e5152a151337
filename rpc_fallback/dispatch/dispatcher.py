"""Request dispatcher: one logical JSON-RPC call across the fallback order.

Each call runs an explicit state machine:

    SELECT_ENDPOINT → SEND → SUCCESS | RETRIABLE_FAILURE | FATAL_FAILURE
                  ↘ EXHAUSTED

- SELECT_ENDPOINT: retry the current endpoint while its per-endpoint budget
  lasts, otherwise take the next candidate that is not rate limited; give up
  when candidates or the total attempt budget run out.
- SEND: one HTTP POST holding a concurrency slot, bounded by the per-attempt
  timeout.
- RETRIABLE_FAILURE: record the failure, then
  * throttling (HTTP 429/403, code -32005, "rate limit" messages): mark the
    endpoint rate limited and move to the next candidate with no delay;
  * transport errors / timeouts: retry the same endpoint after backoff;
  * JSON-RPC error objects and malformed envelopes: move to the next
    candidate after backoff.
- FATAL_FAILURE: malformed-request codes end the call immediately.
- EXHAUSTED: raise RateLimitedError when throttling was the only failure,
  AllEndpointsExhaustedError otherwise.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

import httpx
from pydantic import ValidationError

from rpc_fallback.dispatch.backoff import DEFAULT_MAX_DELAY_SECONDS, backoff_delay
from rpc_fallback.dispatch.concurrency import ConcurrencyLimiter
from rpc_fallback.endpoints.health import HealthTracker
from rpc_fallback.endpoints.registry import EndpointRegistry
from rpc_fallback.logging_config import redact_url
from rpc_fallback.middleware.error_handler import (
    AllEndpointsExhaustedError,
    InvalidPayloadError,
    NoEndpointsAvailableError,
    RateLimitedError,
    RpcClientError,
    RpcProtocolError,
    RpcTimeoutError,
    TransportError,
)
from rpc_fallback.models.jsonrpc import (
    RATE_LIMIT_HTTP_STATUSES,
    JsonRpcErrorObject,
    JsonRpcRequest,
    RequestOptions,
    is_fatal_error,
    is_rate_limit_error,
    is_rate_limit_message,
)

logger = logging.getLogger(__name__)

_JSON_HEADERS = {"Content-Type": "application/json"}


class DispatchState(str, Enum):
    """States of a single logical call."""

    SELECT_ENDPOINT = "select_endpoint"
    SEND = "send"
    SUCCESS = "success"
    RETRIABLE_FAILURE = "retriable_failure"
    FATAL_FAILURE = "fatal_failure"
    EXHAUSTED = "exhausted"


class FailureKind(str, Enum):
    """How a failed attempt steers the next selection."""

    RATE_LIMITED = "rate_limited"  # next candidate, no delay
    TRANSPORT = "transport"  # same endpoint, after backoff
    RPC_ERROR = "rpc_error"  # next candidate, after backoff
    FATAL = "fatal"  # stop


@dataclass
class AttemptOutcome:
    """Result of one SEND."""

    result: Any = None
    error: RpcClientError | None = None
    failure: FailureKind | None = None
    duration_ms: float = 0.0

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class CallState:
    """Bookkeeping for one logical call; drives SELECT_ENDPOINT."""

    network_id: int
    candidates: list[str]
    retry_attempts: int
    max_total_attempts: int
    is_rate_limited: Callable[[str], bool]
    position: int = -1
    current: str | None = None
    endpoint_attempts: int = 0
    attempts: int = 0
    stay_on_current: bool = False
    last_error: RpcClientError | None = None
    non_throttle_failures: int = 0

    def _next_candidate(self) -> str | None:
        while self.position + 1 < len(self.candidates):
            self.position += 1
            url = self.candidates[self.position]
            if not self.is_rate_limited(url):
                return url
        return None

    def select(self) -> str | None:
        """Endpoint for the next send, or None when the call is exhausted."""
        if self.attempts >= self.max_total_attempts:
            return None

        if (
            self.current is not None
            and self.stay_on_current
            and self.endpoint_attempts < self.retry_attempts
            and not self.is_rate_limited(self.current)
        ):
            return self.current

        url = self._next_candidate()
        self.current = url
        self.endpoint_attempts = 0
        self.stay_on_current = False
        return url

    def has_remaining(self) -> bool:
        """Whether another send could follow the current failure."""
        if self.attempts >= self.max_total_attempts:
            return False
        if self.stay_on_current and self.endpoint_attempts < self.retry_attempts:
            return True
        return any(
            not self.is_rate_limited(url)
            for url in self.candidates[self.position + 1 :]
        )


class RequestDispatcher:
    """Executes JSON-RPC calls against ranked endpoints with retry and backoff.

    Args:
        registry: Source of endpoint lists and per-network timeout settings.
        tracker: Health state consulted for ordering and updated per attempt.
        limiter: Concurrency bound for network sends.
        http_client: Shared ``httpx.AsyncClient``.
        max_backoff_seconds: Cap applied to every backoff delay.
        sleep: Awaitable sleep used between attempts (injectable for tests).
        clock: Monotonic clock used for latency measurement.
    """

    def __init__(
        self,
        registry: EndpointRegistry,
        tracker: HealthTracker,
        limiter: ConcurrencyLimiter,
        http_client: httpx.AsyncClient,
        max_backoff_seconds: float = DEFAULT_MAX_DELAY_SECONDS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._registry = registry
        self._tracker = tracker
        self._limiter = limiter
        self._http = http_client
        self._max_backoff_seconds = max_backoff_seconds
        self._sleep = sleep
        self._clock = clock
        self._request_ids = itertools.count(1)

    # ------------------------------------------------------------------
    # Public entry points
    # ------------------------------------------------------------------

    async def dispatch(
        self,
        network_id: int,
        payload: JsonRpcRequest | dict,
        options: RequestOptions | None = None,
    ) -> Any:
        """Run one logical call and return the JSON-RPC ``result``.

        Raises
        ------
        InvalidPayloadError
            The payload is not a valid JSON-RPC request (nothing is sent).
        NoEndpointsAvailableError
            The network has no configured endpoints.
        RateLimitedError
            Every candidate is cooling down after throttling.
        RpcProtocolError
            An endpoint rejected the request as malformed.
        RpcTimeoutError
            ``options.deadline`` elapsed before the call finished.
        AllEndpointsExhaustedError
            All attempts failed; ``last_error`` carries the final cause.
        """
        request = self._coerce(payload)
        options = options or RequestOptions()

        if options.deadline is None:
            return await self._run(network_id, request, options)

        try:
            return await asyncio.wait_for(
                self._run(network_id, request, options),
                timeout=options.deadline,
            )
        except asyncio.TimeoutError:
            logger.warning(
                "RPC call %s on network %s exceeded deadline of %.2fs",
                request.method,
                network_id,
                options.deadline,
                extra={"network_id": network_id, "rpc_method": request.method},
            )
            raise RpcTimeoutError(
                f"RPC call {request.method} exceeded deadline of {options.deadline}s",
                network_id=network_id,
                method=request.method,
            ) from None

    async def probe(self, network_id: int, url: str, timeout: float | None = None) -> bool:
        """Send one ``eth_blockNumber`` to ``url`` and record the outcome."""
        if timeout is None:
            timeout = self._registry.get_timeout_settings(network_id).request_timeout_ms / 1000
        request = JsonRpcRequest(method="eth_blockNumber", params=[], id=next(self._request_ids))
        outcome = await self._send(network_id, url, request, timeout)

        healthy = outcome.ok and outcome.result is not None
        if outcome.failure is FailureKind.RATE_LIMITED:
            self._tracker.mark_rate_limited(url)
        self._tracker.record_outcome(
            network_id,
            url,
            healthy,
            response_time_ms=outcome.duration_ms if healthy else None,
        )
        return healthy

    # ------------------------------------------------------------------
    # State machine
    # ------------------------------------------------------------------

    def _coerce(self, payload: JsonRpcRequest | dict) -> JsonRpcRequest:
        if isinstance(payload, JsonRpcRequest):
            request = payload
        else:
            try:
                request = JsonRpcRequest.model_validate(payload)
            except ValidationError as exc:
                raise InvalidPayloadError(
                    "Invalid JSON-RPC payload",
                    errors=[err["msg"] for err in exc.errors()],
                ) from exc
        if request.id is None:
            request = request.model_copy(update={"id": next(self._request_ids)})
        return request

    async def _run(
        self,
        network_id: int,
        request: JsonRpcRequest,
        options: RequestOptions,
    ) -> Any:
        settings = self._registry.get_timeout_settings(network_id)
        retry_attempts = options.retry_attempts or settings.retry_attempts
        timeout = options.timeout or settings.request_timeout_ms / 1000
        base_delay = settings.retry_delay_ms / 1000

        self._registry.initialize_network(network_id)
        if not self._registry.has_endpoints(network_id):
            raise NoEndpointsAvailableError(
                f"No RPC endpoints configured for network {network_id}",
                network_id=network_id,
            )

        candidates = self._tracker.get_fallback_order(network_id)
        if not candidates:
            raise RateLimitedError(
                f"All RPC endpoints for network {network_id} are rate limited",
                network_id=network_id,
            )

        call = CallState(
            network_id=network_id,
            candidates=candidates,
            retry_attempts=retry_attempts,
            max_total_attempts=options.max_total_attempts or len(candidates) * retry_attempts,
            is_rate_limited=self._tracker.is_rate_limited,
        )

        state = DispatchState.SELECT_ENDPOINT
        url: str | None = None
        outcome = AttemptOutcome()

        while True:
            if state is DispatchState.SELECT_ENDPOINT:
                url = call.select()
                state = DispatchState.EXHAUSTED if url is None else DispatchState.SEND

            elif state is DispatchState.SEND:
                assert url is not None
                outcome = await self._send(network_id, url, request, timeout)
                call.attempts += 1
                call.endpoint_attempts += 1
                if outcome.ok:
                    state = DispatchState.SUCCESS
                elif outcome.failure is FailureKind.FATAL:
                    state = DispatchState.FATAL_FAILURE
                else:
                    state = DispatchState.RETRIABLE_FAILURE

            elif state is DispatchState.SUCCESS:
                assert url is not None
                self._tracker.record_outcome(
                    network_id, url, True, response_time_ms=outcome.duration_ms
                )
                return outcome.result

            elif state is DispatchState.RETRIABLE_FAILURE:
                assert url is not None and outcome.error is not None
                await self._on_retriable_failure(call, url, outcome, base_delay)
                state = DispatchState.SELECT_ENDPOINT

            elif state is DispatchState.FATAL_FAILURE:
                assert url is not None and outcome.error is not None
                logger.error(
                    "RPC request rejected as malformed by %s: %s",
                    redact_url(url),
                    outcome.error,
                    extra={"network_id": network_id, "rpc_method": request.method},
                )
                raise outcome.error

            else:
                raise self._exhausted_error(call, request)

    async def _on_retriable_failure(
        self,
        call: CallState,
        url: str,
        outcome: AttemptOutcome,
        base_delay: float,
    ) -> None:
        assert outcome.error is not None
        self._tracker.record_outcome(call.network_id, url, False)
        call.last_error = outcome.error

        logger.warning(
            "RPC attempt %d/%d failed on %s: %s",
            call.attempts,
            call.max_total_attempts,
            redact_url(url),
            outcome.error,
            extra={
                "network_id": call.network_id,
                "endpoint": url,
                "attempt": call.attempts,
                "max_attempts": call.max_total_attempts,
                "error_reason": outcome.failure.value if outcome.failure else None,
            },
        )

        if outcome.failure is FailureKind.RATE_LIMITED:
            self._tracker.mark_rate_limited(url)
            call.stay_on_current = False
            return

        call.non_throttle_failures += 1
        call.stay_on_current = outcome.failure is FailureKind.TRANSPORT

        if call.has_remaining():
            delay = backoff_delay(call.attempts - 1, base_delay, self._max_backoff_seconds)
            if delay > 0:
                logger.debug(
                    "Backing off %.2fs before next attempt",
                    delay,
                    extra={"network_id": call.network_id, "delay_seconds": delay},
                )
                await self._sleep(delay)

    def _exhausted_error(self, call: CallState, request: JsonRpcRequest) -> RpcClientError:
        if call.non_throttle_failures == 0:
            error: RpcClientError = RateLimitedError(
                f"All RPC endpoints for network {call.network_id} are rate limited",
                network_id=call.network_id,
                attempts=call.attempts,
            )
        else:
            error = AllEndpointsExhaustedError(
                f"All RPC endpoints failed for network {call.network_id}"
                + (f": {call.last_error.message}" if call.last_error else ""),
                last_error=call.last_error,
                attempts=call.attempts,
                network_id=call.network_id,
            )
        error.__cause__ = call.last_error

        logger.error(
            "RPC call %s exhausted after %d attempts on network %s",
            request.method,
            call.attempts,
            call.network_id,
            extra={"network_id": call.network_id, "rpc_method": request.method},
        )
        return error

    # ------------------------------------------------------------------
    # SEND
    # ------------------------------------------------------------------

    async def _send(
        self,
        network_id: int,
        url: str,
        request: JsonRpcRequest,
        timeout: float,
    ) -> AttemptOutcome:
        payload = request.model_dump()
        try:
            async with self._limiter.slot(network_id, url, request.method):
                started = self._clock()
                response = await self._http.post(
                    url,
                    json=payload,
                    headers=_JSON_HEADERS,
                    timeout=timeout,
                )
        except httpx.TimeoutException:
            return AttemptOutcome(
                error=RpcTimeoutError(
                    f"Request timed out after {timeout}s",
                    endpoint=redact_url(url),
                ),
                failure=FailureKind.TRANSPORT,
            )
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            return AttemptOutcome(
                error=TransportError(
                    f"{type(exc).__name__}: {exc}",
                    endpoint=redact_url(url),
                ),
                failure=FailureKind.TRANSPORT,
            )

        duration_ms = (self._clock() - started) * 1000
        outcome = self._classify(url, response)
        outcome.duration_ms = duration_ms

        logger.debug(
            "RPC %s → %s answered HTTP %d in %.1fms",
            request.method,
            redact_url(url),
            response.status_code,
            duration_ms,
            extra={
                "network_id": network_id,
                "rpc_method": request.method,
                "duration_ms": duration_ms,
                "status_code": response.status_code,
            },
        )
        return outcome

    @staticmethod
    def _classify(url: str, response: httpx.Response) -> AttemptOutcome:
        """Map an HTTP response onto success or a failure kind."""
        endpoint = redact_url(url)
        try:
            body = response.json()
        except ValueError:
            body = None

        if response.status_code in RATE_LIMIT_HTTP_STATUSES:
            return AttemptOutcome(
                error=RateLimitedError(
                    f"HTTP {response.status_code} from endpoint",
                    endpoint=endpoint,
                ),
                failure=FailureKind.RATE_LIMITED,
            )

        if isinstance(body, dict) and body.get("error") is not None:
            raw_error = body["error"]
            try:
                rpc_error = JsonRpcErrorObject.model_validate(raw_error)
            except ValidationError:
                rpc_error = JsonRpcErrorObject(code=-32603, message=str(raw_error))

            error = RpcProtocolError(
                rpc_error.message or "RPC error",
                code=rpc_error.code,
                data=rpc_error.data,
                endpoint=endpoint,
            )
            if is_rate_limit_error(rpc_error):
                return AttemptOutcome(error=error, failure=FailureKind.RATE_LIMITED)
            if is_fatal_error(rpc_error):
                return AttemptOutcome(error=error, failure=FailureKind.FATAL)
            return AttemptOutcome(error=error, failure=FailureKind.RPC_ERROR)

        if not response.is_success:
            if is_rate_limit_message(response.text):
                return AttemptOutcome(
                    error=RateLimitedError(
                        f"HTTP {response.status_code} rate limit from endpoint",
                        endpoint=endpoint,
                    ),
                    failure=FailureKind.RATE_LIMITED,
                )
            return AttemptOutcome(
                error=TransportError(
                    f"HTTP {response.status_code}",
                    endpoint=endpoint,
                    status_code=response.status_code,
                ),
                failure=FailureKind.TRANSPORT,
            )

        if not isinstance(body, dict) or "result" not in body:
            return AttemptOutcome(
                error=RpcProtocolError("Invalid JSON-RPC response", endpoint=endpoint),
                failure=FailureKind.RPC_ERROR,
            )

        return AttemptOutcome(result=body["result"])
