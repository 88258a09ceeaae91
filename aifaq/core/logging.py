"""
Logging setup for the aifaq service.

Every record is correlated by request_id and, when the caller named one,
by shop domain. Production writes one JSON object per line; other
environments get a single-line console format.

Extra fields are scrubbed on output: keys that look like credentials are
masked and long values are truncated, so provider error bodies and
merchant API keys can be passed to a logger as-is.
"""

import json
import logging
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional

request_id_ctx_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)
shop_ctx_var: ContextVar[Optional[str]] = ContextVar("shop", default=None)

_STANDARD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime"}
_CONTEXT_ATTRS = ("request_id", "shop")
_SECRET_MARKERS = ("api_key", "access_token", "authorization", "password", "secret")

MAX_FIELD_CHARS = 500
MASK = "***"

LATENCY_BUCKETS = (
    (10, "<10ms"),
    (100, "10-100ms"),
    (500, "100-500ms"),
    (1000, "500-1000ms"),
)


def get_request_id(default: Optional[str] = None) -> Optional[str]:
    rid = request_id_ctx_var.get()
    return rid if rid is not None else default


def latency_bucket_ms(latency_ms: Optional[float]) -> str:
    if latency_ms is None:
        return "unknown"
    for ceiling, label in LATENCY_BUCKETS:
        if latency_ms < ceiling:
            return label
    return ">=1000ms"


def scrub(fields: Mapping[str, Any]) -> Dict[str, Any]:
    """Copy of fields safe to write: credential-like keys masked, long strings truncated."""
    clean: Dict[str, Any] = {}
    for key, value in fields.items():
        if value and any(marker in key.lower() for marker in _SECRET_MARKERS):
            clean[key] = MASK
        elif isinstance(value, str) and len(value) > MAX_FIELD_CHARS:
            clean[key] = value[:MAX_FIELD_CHARS] + "...<truncated>"
        else:
            clean[key] = value
    return clean


class ContextFilter(logging.Filter):
    """Fill request_id and shop from the current context unless passed explicitly."""

    def filter(self, record: logging.LogRecord) -> bool:
        if getattr(record, "request_id", None) is None:
            record.request_id = request_id_ctx_var.get()
        if getattr(record, "shop", None) is None:
            record.shop = shop_ctx_var.get()
        return True


def _timestamp(record: logging.LogRecord) -> str:
    return datetime.fromtimestamp(record.created, timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _fields(record: logging.LogRecord) -> Dict[str, Any]:
    return scrub({
        k: v for k, v in record.__dict__.items()
        if k not in _STANDARD_ATTRS and k not in _CONTEXT_ATTRS and not k.startswith("_")
    })


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "ts": _timestamp(record),
            "level": record.levelname,
            "logger": record.name,
            "event": record.getMessage(),
            "request_id": getattr(record, "request_id", None),
            "shop": getattr(record, "shop", None),
        }
        payload.update(_fields(record))
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


class ConsoleFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        context = {k: getattr(record, k, None) for k in _CONTEXT_ATTRS}
        context.update(_fields(record))
        pairs = " ".join(f"{k}={v}" for k, v in context.items() if v is not None)
        line = f"{_timestamp(record)} {record.levelname:<7} {record.name} {record.getMessage()}"
        if pairs:
            line = f"{line} {pairs}"
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def configure_logging(env: str = "development", level: int = logging.INFO) -> None:
    """Install the aifaq handler. Safe to call more than once."""
    logger = logging.getLogger("aifaq")
    logger.setLevel(level)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter() if env.lower() == "production" else ConsoleFormatter())
    handler.addFilter(ContextFilter())

    logger.handlers = [handler]
    logger.propagate = True

    # httpx logs every outbound request at INFO; Admin API and AI calls are logged by their callers
    logging.getLogger("httpx").setLevel(logging.WARNING)
