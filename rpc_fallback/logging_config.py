"""JSON log output for the client and the relay service.

Every entry is one JSON object carrying ``timestamp``, ``level``, ``logger``,
``message`` and ``request_id``. Dispatch code attaches its context through
``extra=`` (network, endpoint, attempt counters, failure reason, timings) and
those keys are copied into the entry when present.

Provider API keys are routinely embedded in RPC URLs
(``https://eth-mainnet.example/v2/<key>``, ``?apikey=<key>``), so messages,
endpoint fields and tracebacks all pass through ``redact_url`` first.
"""

from __future__ import annotations

import contextvars
import json
import logging
import re
from datetime import datetime, timezone

# Set by RequestIdMiddleware for the duration of one relay request.
request_id_var: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "request_id", default=None
)

_SECRET_ASSIGNMENT = re.compile(
    r"(api.?key|secret|password|token|authorization)\s*[=:]\s*[^\s&]+",
    re.IGNORECASE,
)

# /v2/<key>, /v3/<key> and similar opaque trailing path segments
_URL_KEY_SEGMENT = re.compile(r"(https?://[^/\s]+(?:/[^/\s]*)*?/)([A-Za-z0-9_\-]{20,})")

# extra= keys copied verbatim into the entry
_PASSTHROUGH_FIELDS = (
    "network_id",
    "rpc_method",
    "attempt",
    "max_attempts",
    "duration_ms",
    "delay_seconds",
    "status_code",
)


def redact_url(url: str) -> str:
    """Mask API-key-like path segments and query secrets in an endpoint URL."""
    return _SECRET_ASSIGNMENT.sub("[REDACTED]", _URL_KEY_SEGMENT.sub(r"\1[REDACTED]", url))


class JsonFormatter(logging.Formatter):
    """Render a LogRecord as a single JSON line."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": redact_url(record.getMessage()),
            "request_id": getattr(record, "request_id", None) or request_id_var.get(),
        }
        entry.update(self._context_fields(record))

        if record.exc_info and record.exc_info[1]:
            entry["exception"] = redact_url(self.formatException(record.exc_info))

        return json.dumps(entry, default=str)

    @staticmethod
    def _context_fields(record: logging.LogRecord) -> dict:
        fields = {name: getattr(record, name) for name in _PASSTHROUGH_FIELDS if hasattr(record, name)}
        # free-text fields may embed URLs
        for name in ("endpoint", "error_reason"):
            if hasattr(record, name):
                fields[name] = redact_url(str(getattr(record, name)))
        return fields


def configure_logging(level: str = "INFO") -> None:
    """Route all logging through one stderr handler using ``JsonFormatter``.

    Calling it again replaces the handler rather than stacking a second one.
    """
    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter())

    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(getattr(logging, level.upper(), logging.INFO))
