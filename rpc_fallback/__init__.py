"""Multi-endpoint JSON-RPC client with health-ranked fallback."""

from rpc_fallback.client import RPCClient

__all__ = ["RPCClient"]
