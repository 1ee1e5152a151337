"""Unit tests for JSON logging and endpoint URL redaction."""

from __future__ import annotations

import json
import logging

from rpc_fallback.logging_config import JsonFormatter, configure_logging, redact_url, request_id_var


def _record(message: str, **extra: object) -> logging.LogRecord:
    record = logging.LogRecord(
        name="rpc_fallback.dispatch.dispatcher",
        level=logging.WARNING,
        pathname="dispatcher.py",
        lineno=1,
        msg=message,
        args=(),
        exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestRedactUrl:
    def test_path_key(self):
        url = "https://eth-mainnet.g.alchemy.com/v2/AbCdEfGhIjKlMnOpQrStUvWx"
        assert redact_url(url) == "https://eth-mainnet.g.alchemy.com/v2/[REDACTED]"

    def test_query_key(self):
        assert "s3cr3t" not in redact_url("https://rpc.example/?apikey=s3cr3t")

    def test_plain_url_untouched(self):
        assert redact_url("https://eth.llamarpc.com") == "https://eth.llamarpc.com"
        assert redact_url("https://rpc.ankr.com/eth") == "https://rpc.ankr.com/eth"


class TestJsonFormatter:
    def test_required_fields(self):
        entry = json.loads(JsonFormatter().format(_record("RPC attempt failed")))
        assert entry["level"] == "WARNING"
        assert entry["logger"] == "rpc_fallback.dispatch.dispatcher"
        assert entry["message"] == "RPC attempt failed"
        assert "timestamp" in entry
        assert entry["request_id"] is None

    def test_structured_extras(self):
        entry = json.loads(
            JsonFormatter().format(
                _record(
                    "RPC attempt 1/3 failed",
                    network_id=1,
                    endpoint="https://node.example/v3/0123456789abcdef0123456789",
                    attempt=1,
                    max_attempts=3,
                    error_reason="transport",
                )
            )
        )
        assert entry["network_id"] == 1
        assert entry["attempt"] == 1
        assert entry["max_attempts"] == 3
        assert entry["error_reason"] == "transport"
        assert entry["endpoint"] == "https://node.example/v3/[REDACTED]"

    def test_request_id_from_context(self):
        token = request_id_var.set("req-42")
        try:
            entry = json.loads(JsonFormatter().format(_record("relaying")))
        finally:
            request_id_var.reset(token)
        assert entry["request_id"] == "req-42"

    def test_message_secrets_redacted(self):
        entry = json.loads(JsonFormatter().format(_record("calling with token=abc123")))
        assert "abc123" not in entry["message"]


class TestConfigureLogging:
    def test_installs_single_json_handler(self):
        root = logging.getLogger()
        saved_handlers, saved_level = list(root.handlers), root.level
        try:
            configure_logging("debug")
            configure_logging("debug")
            assert root.level == logging.DEBUG
            assert len(root.handlers) == 1
            assert isinstance(root.handlers[0].formatter, JsonFormatter)
        finally:
            root.handlers[:] = saved_handlers
            root.setLevel(saved_level)
