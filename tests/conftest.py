"""Shared test fixtures and hypothesis strategies for the RPC client test suite."""

from __future__ import annotations

import json
from collections.abc import Callable

import httpx
import pytest
from hypothesis import strategies as st

from rpc_fallback.client import RPCClient
from rpc_fallback.config.chains import ChainConfig, ChainDefinition, TimeoutSettings
from rpc_fallback.config.settings import RpcSettings
from rpc_fallback.endpoints.health import HealthTracker

NETWORK_ID = 1
A_URL = "https://a.example/rpc"
B_URL = "https://b.example/rpc"
C_URL = "https://c.example/rpc"


# ---------------------------------------------------------------------------
# Scripted JSON-RPC endpoints
# ---------------------------------------------------------------------------

Step = Callable[[httpx.Request], object]


def ok(result: object = "0x1") -> Step:
    def _step(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": body.get("id"), "result": result})

    return _step


def rpc_error(code: int, message: str = "execution reverted") -> Step:
    def _step(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        return httpx.Response(
            200,
            json={"jsonrpc": "2.0", "id": body.get("id"), "error": {"code": code, "message": message}},
        )

    return _step


def http_status(status: int, text: str = "") -> Step:
    def _step(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status, text=text)

    return _step


def connect_error() -> Step:
    def _step(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    return _step


def read_timeout() -> Step:
    def _step(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("timed out", request=request)

    return _step


class ScriptedRpc:
    """``httpx.MockTransport`` handler replaying a per-URL script.

    Each URL maps to a list of steps consumed in order; the last step repeats.
    Unscripted URLs refuse the connection.
    """

    def __init__(self, script: dict[str, list[Step]] | None = None) -> None:
        self.script = {url: list(steps) for url, steps in (script or {}).items()}
        self.calls: list[str] = []
        self.payloads: list[dict] = []

    def __call__(self, request: httpx.Request):
        url = str(request.url)
        self.calls.append(url)
        self.payloads.append(json.loads(request.content))

        steps = self.script.get(url)
        if not steps:
            raise httpx.ConnectError("connection refused", request=request)
        step = steps.pop(0) if len(steps) > 1 else steps[0]
        return step(request)

    def http_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self))


class RecordingSleep:
    """Awaitable sleep that returns immediately and remembers every delay."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def make_chain_config(
    urls: list[str],
    *,
    network_id: int = NETWORK_ID,
    retry_attempts: int = 2,
    retry_delay_ms: int = 100,
    request_timeout_ms: int = 1000,
) -> ChainConfig:
    return ChainConfig(
        {
            network_id: ChainDefinition(
                name="Testnet",
                rpc_urls=urls,
                timeouts=TimeoutSettings(
                    request_timeout_ms=request_timeout_ms,
                    retry_attempts=retry_attempts,
                    retry_delay_ms=retry_delay_ms,
                ),
            )
        },
        environ={},
    )


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def rpc_settings() -> RpcSettings:
    """Test settings: background health checks off, small backoff cap."""
    return RpcSettings(
        health_check_enabled=False,
        max_concurrent_requests=5,
        max_backoff_seconds=30.0,
    )


@pytest.fixture
def tracker() -> HealthTracker:
    return HealthTracker(failure_threshold=3, degraded_ratio=0.5, rate_limit_cooldown_seconds=300)


@pytest.fixture
def fake_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def make_client(rpc_settings: RpcSettings, fake_sleep: RecordingSleep):
    """Build an ``RPCClient`` over scripted endpoints ``[A, B, C]``."""

    def _make(
        script: dict[str, list[Step]],
        *,
        urls: list[str] | None = None,
        settings: RpcSettings | None = None,
        **chain_kwargs,
    ) -> tuple[RPCClient, ScriptedRpc]:
        transport = ScriptedRpc(script)
        client = RPCClient(
            make_chain_config(urls or [A_URL, B_URL, C_URL], **chain_kwargs),
            settings=settings or rpc_settings,
            http_client=transport.http_client(),
            sleep=fake_sleep,
        )
        return client, transport

    return _make


# ---------------------------------------------------------------------------
# Hypothesis strategies (reusable across property tests)
# ---------------------------------------------------------------------------

# 1-8 unique endpoint URLs
endpoint_url_lists = st.lists(
    st.from_regex(r"https://[a-z]{3,10}\.example/rpc", fullmatch=True),
    min_size=1,
    max_size=8,
    unique=True,
)

# Success / failure sequences (True = success)
outcome_sequences = st.lists(st.booleans(), min_size=0, max_size=40)

# Provider API keys as they appear in URL paths
api_keys = st.text(
    alphabet="abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789",
    min_size=20,
    max_size=40,
)
