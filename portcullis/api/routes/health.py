"""
Health check endpoints.

Liveness does not touch dependencies; readiness checks the job store.
"""
from datetime import datetime, timezone
import logging
from typing import Any, Dict

from fastapi import APIRouter, Request, Response, status

from portcullis import __version__

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/health")
async def health():
    """Liveness probe."""
    return {
        "status": "healthy",
        "version": __version__,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@router.get("/ready")
async def ready(request: Request, response: Response):
    """Readiness probe: 200 when the job store answers, 503 otherwise."""
    checks: Dict[str, Any] = {}
    overall_ready = True

    try:
        await request.app.state.services.job_store.ping()
        checks["job_store"] = {"status": "up"}
    except Exception as e:  # noqa: BLE001
        logger.warning("Job store readiness check failed: %s", e)
        checks["job_store"] = {"status": "down", "error": str(e)}
        overall_ready = False

    checks["dispatch_token"] = {
        "status": "configured" if request.app.state.services.settings.github_token else "missing",
    }

    if not overall_ready:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    return {
        "status": "ready" if overall_ready else "not_ready",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "checks": checks,
    }
