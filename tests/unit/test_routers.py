"""Unit tests for the status and relay routers and the application factory."""

from __future__ import annotations

import pytest
from conftest import (
    A_URL,
    B_URL,
    C_URL,
    NETWORK_ID,
    ScriptedRpc,
    connect_error,
    make_chain_config,
    ok,
    rpc_error,
)
from fastapi import FastAPI
from fastapi.testclient import TestClient

from rpc_fallback.client import RPCClient
from rpc_fallback.config.settings import RpcSettings
from rpc_fallback.main import create_app
from rpc_fallback.middleware.error_handler import register_error_handlers
from rpc_fallback.routers.rpc import create_rpc_router
from rpc_fallback.routers.status import create_status_router


def _make_rpc_client(script: dict, **chain_kwargs) -> tuple[RPCClient, ScriptedRpc]:
    transport = ScriptedRpc(script)

    async def _no_sleep(delay: float) -> None:
        return None

    client = RPCClient(
        make_chain_config([A_URL, B_URL, C_URL], **chain_kwargs),
        settings=RpcSettings(health_check_enabled=False),
        http_client=transport.http_client(),
        sleep=_no_sleep,
    )
    return client, transport


def _make_app(client: RPCClient | None) -> FastAPI:
    app = FastAPI()
    register_error_handlers(app)
    app.include_router(create_status_router(client=client))
    app.include_router(create_rpc_router(client=client))
    return app


class TestStatusRouter:
    def test_health(self):
        client, _ = _make_rpc_client({})
        response = TestClient(_make_app(client)).get("/health")
        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["data"]["status"] == "healthy"
        assert body["data"]["client"]["concurrency"]["policy"] == "global"

    def test_readiness(self):
        client, _ = _make_rpc_client({})
        response = TestClient(_make_app(client)).get("/readiness")
        assert response.status_code == 200
        assert response.json()["data"]["ready"] is True

    def test_readiness_without_client(self):
        response = TestClient(_make_app(None)).get("/readiness")
        assert response.status_code == 503
        assert response.json()["success"] is False
        assert response.json()["error"] == "Service not ready"

    def test_network_health(self):
        client, _ = _make_rpc_client({})
        client.tracker.register(NETWORK_ID, [A_URL, B_URL, C_URL])
        client.tracker.record_outcome(NETWORK_ID, B_URL, False)

        response = TestClient(_make_app(client)).get(f"/networks/{NETWORK_ID}/health")

        assert response.status_code == 200
        endpoints = response.json()["data"]["endpoints"]
        assert [ep["url"] for ep in endpoints] == [A_URL, B_URL, C_URL]
        assert endpoints[1]["status"] == "degraded"
        assert endpoints[1]["failure_count"] == 1

    def test_fallback_order_excludes_rate_limited(self):
        client, _ = _make_rpc_client({})
        client.get_fallback_order(NETWORK_ID)
        client.tracker.mark_rate_limited(A_URL)

        response = TestClient(_make_app(client)).get(f"/networks/{NETWORK_ID}/fallback-order")

        data = response.json()["data"]
        assert data["endpoints"] == [B_URL, C_URL]
        assert data["best"] == B_URL

    def test_diagnostics_hide_provider_keys(self):
        key = "abcdEFGH1234ijklMNOP5678qrst"
        keyed_url = f"https://eth-mainnet.example/v2/{key}"
        client = RPCClient(
            make_chain_config([keyed_url, B_URL]),
            settings=RpcSettings(health_check_enabled=False),
            http_client=ScriptedRpc({}).http_client(),
        )
        client.tracker.register(NETWORK_ID, [keyed_url, B_URL])
        http = TestClient(_make_app(client))

        health = http.get(f"/networks/{NETWORK_ID}/health")
        order = http.get(f"/networks/{NETWORK_ID}/fallback-order")

        assert key not in health.text
        assert key not in order.text
        redacted = "https://eth-mainnet.example/v2/[REDACTED]"
        assert health.json()["data"]["endpoints"][0]["url"] == redacted
        assert order.json()["data"]["endpoints"] == [redacted, B_URL]
        assert order.json()["data"]["best"] == redacted

    def test_statistics(self):
        client, _ = _make_rpc_client({})
        response = TestClient(_make_app(client)).get(f"/networks/{NETWORK_ID}/statistics")
        data = response.json()["data"]
        assert data["network_id"] == NETWORK_ID
        assert data["total"] == 3
        assert data["healthy"] == 3

    def test_reset(self):
        client, _ = _make_rpc_client({})
        client.get_fallback_order(NETWORK_ID)
        client.tracker.record_outcome(NETWORK_ID, A_URL, False)
        client.tracker.mark_rate_limited(B_URL)

        response = TestClient(_make_app(client)).post(f"/networks/{NETWORK_ID}/reset")

        assert response.status_code == 200
        assert response.json()["data"] == {"network_id": NETWORK_ID, "reset": True}
        assert client.get_fallback_order(NETWORK_ID) == [A_URL, B_URL, C_URL]

    @pytest.mark.parametrize(
        "path",
        ["/networks/999/health", "/networks/999/fallback-order", "/networks/999/statistics"],
    )
    def test_unknown_network_is_404(self, path):
        client, _ = _make_rpc_client({})
        response = TestClient(_make_app(client)).get(path)
        assert response.status_code == 404
        assert response.json()["success"] is False
        assert response.json()["error"] == "Network 999 is not configured"


class TestRpcRouter:
    def test_relays_result(self):
        client, transport = _make_rpc_client({A_URL: [ok("0x1")]})
        response = TestClient(_make_app(client)).post(
            f"/rpc/{NETWORK_ID}",
            json={"jsonrpc": "2.0", "method": "eth_chainId", "params": [], "id": 7},
        )
        assert response.status_code == 200
        data = response.json()["data"]
        assert data == {"network_id": NETWORK_ID, "method": "eth_chainId", "id": 7, "result": "0x1"}
        assert transport.payloads[0]["id"] == 7

    def test_query_options(self):
        client, transport = _make_rpc_client(
            {A_URL: [connect_error()], B_URL: [ok("0x2")]},
            retry_attempts=3,
        )
        response = TestClient(_make_app(client)).post(
            f"/rpc/{NETWORK_ID}?retry_attempts=1",
            json={"jsonrpc": "2.0", "method": "eth_blockNumber"},
        )
        assert response.status_code == 200
        assert transport.calls == [A_URL, B_URL]

    def test_exhausted_maps_to_502(self):
        client, _ = _make_rpc_client(
            {url: [rpc_error(-32000, "header not found")] for url in (A_URL, B_URL, C_URL)}
        )
        response = TestClient(_make_app(client)).post(
            f"/rpc/{NETWORK_ID}",
            json={"jsonrpc": "2.0", "method": "eth_getBlockByNumber", "params": ["0x1", False]},
        )
        assert response.status_code == 502
        body = response.json()
        assert body["success"] is False
        assert "header not found" in body["error"]
        assert body["meta"]["attempts"] == 3

    def test_fatal_error_is_caller_fault(self):
        client, transport = _make_rpc_client({A_URL: [rpc_error(-32602, "invalid argument 0")]})
        response = TestClient(_make_app(client)).post(
            f"/rpc/{NETWORK_ID}",
            json={"jsonrpc": "2.0", "method": "eth_getBalance", "params": ["nope"]},
        )
        assert response.status_code == 400
        assert response.json()["meta"]["code"] == -32602
        assert transport.calls == [A_URL]

    def test_invalid_body_is_422(self):
        client, transport = _make_rpc_client({A_URL: [ok()]})
        response = TestClient(_make_app(client)).post(f"/rpc/{NETWORK_ID}", json={"params": []})
        assert response.status_code == 422
        assert transport.calls == []

    def test_unknown_network_is_404(self):
        client, transport = _make_rpc_client({A_URL: [ok()]})
        response = TestClient(_make_app(client)).post(
            "/rpc/999", json={"jsonrpc": "2.0", "method": "eth_chainId"}
        )
        assert response.status_code == 404
        assert transport.calls == []


class TestCreateApp:
    def test_lifespan_closes_client(self):
        client, _ = _make_rpc_client({A_URL: [ok("0x1")]})
        app = create_app(RpcSettings(health_check_enabled=False), client=client)

        with TestClient(app) as http:
            response = http.get("/health")
            assert response.status_code == 200
            assert response.headers["X-Request-ID"]

            relayed = http.post(
                f"/rpc/{NETWORK_ID}",
                json={"jsonrpc": "2.0", "method": "eth_chainId"},
                headers={"X-Request-ID": "req-123"},
            )
            assert relayed.headers["X-Request-ID"] == "req-123"
            assert relayed.json()["data"]["result"] == "0x1"

        assert client.closed
