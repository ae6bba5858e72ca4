"""
API Middleware

Request ID and tenant context handling.
"""
from __future__ import annotations

import logging
import time
import uuid
from contextvars import ContextVar
from typing import Callable

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from portcullis.core.structured_logging import with_correlation_id

logger = logging.getLogger("portcullis.http")

tenant_id_var: ContextVar[str] = ContextVar("tenant_id", default="")

API_VERSION = "v1"


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Propagates X-Request-ID into the logging context and the response."""

    async def dispatch(self, request: Request, call_next: Callable):  # type: ignore[override]
        start = time.time()
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id
        with with_correlation_id(request_id):
            response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        logger.info(
            "%s %s -> %d",
            request.method,
            request.url.path,
            response.status_code,
            extra={"event": "request_end", "duration_ms": int((time.time() - start) * 1000)},
        )
        return response


class TenantMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: Callable):  # type: ignore[override]
        token = tenant_id_var.set(request.headers.get("X-Tenant-ID", ""))
        try:
            return await call_next(request)
        finally:
            tenant_id_var.reset(token)


def get_tenant_id() -> str:
    return tenant_id_var.get()


def get_version_info() -> dict:
    return {
        "current_version": API_VERSION,
        "supported_versions": [API_VERSION],
    }
