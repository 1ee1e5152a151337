"""Configuration module: settings and chain definitions."""

from rpc_fallback.config.chains import (
    ChainConfig,
    ChainConfigSource,
    ChainDefinition,
    TimeoutSettings,
    load_chain_definitions,
)
from rpc_fallback.config.settings import ConcurrencyPolicy, RpcSettings

__all__ = [
    "ChainConfig",
    "ChainConfigSource",
    "ChainDefinition",
    "ConcurrencyPolicy",
    "RpcSettings",
    "TimeoutSettings",
    "load_chain_definitions",
]
