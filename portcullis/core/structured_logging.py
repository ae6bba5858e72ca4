"""
Structured Logging with Correlation IDs

Context-aware logging for the sync pipeline. Every record emitted while a
request is being handled carries the request's correlation id and, once the
job record exists, its sync id.

Usage:
    from portcullis.core.structured_logging import with_sync_id

    logger = logging.getLogger(__name__)

    with with_sync_id(sync_id):
        logger.info("Dispatching", extra={"event": "dispatch_start"})
"""
from __future__ import annotations

import contextvars
import json
import logging
import sys
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Optional

correlation_id_var: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "correlation_id",
    default=None,
)

sync_id_var: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "sync_id",
    default=None,
)


# =============================================================================
# Correlation ID Management
# =============================================================================

def generate_correlation_id() -> str:
    return str(uuid.uuid4())


def get_correlation_id() -> Optional[str]:
    return correlation_id_var.get()


def get_sync_id() -> Optional[str]:
    return sync_id_var.get()


@contextmanager
def with_correlation_id(correlation_id: Optional[str] = None):
    """Set the correlation id for a block, generating one when not given."""
    if correlation_id is None:
        correlation_id = generate_correlation_id()
    token = correlation_id_var.set(correlation_id)
    try:
        yield correlation_id
    finally:
        correlation_id_var.reset(token)


@contextmanager
def with_sync_id(sync_id: str):
    token = sync_id_var.set(sync_id)
    try:
        yield sync_id
    finally:
        sync_id_var.reset(token)


# =============================================================================
# Formatters
# =============================================================================

class ContextFilter(logging.Filter):
    """Copies the context variables onto each record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.correlation_id = get_correlation_id() or "-"
        record.sync_id = get_sync_id() or "-"
        record.timestamp = datetime.now(timezone.utc).isoformat()
        return True


# Format: [timestamp] [level] [correlation_id] [sync_id] [logger] message
STRUCTURED_FORMAT = (
    "[%(timestamp)s] [%(levelname)s] "
    "[corr:%(correlation_id)s] [sync:%(sync_id)s] "
    "[%(name)s] %(message)s"
)

_RESERVED_ATTRS = set(vars(logging.makeLogRecord({}))) | {
    "message", "asctime", "correlation_id", "sync_id", "timestamp",
}


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        base: Dict[str, Any] = {
            "timestamp": getattr(record, "timestamp", None),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "correlation_id": getattr(record, "correlation_id", "-"),
            "sync_id": getattr(record, "sync_id", "-"),
        }
        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS and not key.startswith("_"):
                base[key] = value
        if record.exc_info:
            base["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(base, ensure_ascii=False, default=str)


def configure_logging(level: str = "INFO", json_output: bool = False) -> None:
    """Install a single stdout handler on the root logger."""
    root = logging.getLogger()
    root.setLevel(level.upper())
    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(ContextFilter())
    if json_output:
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter(STRUCTURED_FORMAT))
    root.handlers = [handler]


# =============================================================================
# Security Helpers
# =============================================================================

SENSITIVE_FIELD_NAMES = {
    "password", "secret", "token", "api_key", "apikey", "auth",
    "credential", "private_key", "access_token", "refresh_token",
}

REDACTED = "***REDACTED***"


def filter_sensitive_fields(data: Dict[str, Any]) -> Dict[str, Any]:
    """
    Redact values whose key looks like a secret before logging or returning.

    Args:
        data: Dictionary to filter

    Returns:
        Filtered copy with sensitive values replaced
    """
    filtered: Dict[str, Any] = {}
    for key, value in data.items():
        key_lower = str(key).lower()
        if any(sensitive in key_lower for sensitive in SENSITIVE_FIELD_NAMES):
            filtered[key] = REDACTED
        elif isinstance(value, dict):
            filtered[key] = filter_sensitive_fields(value)
        else:
            filtered[key] = value
    return filtered
