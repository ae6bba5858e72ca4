"""
Pipeline API Routes

POST /api/pipeline: validate, extract, persist and dispatch one sync.
"""
from __future__ import annotations

import json
import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from portcullis.api.deps import get_orchestrator
from portcullis.sync.orchestrator import Orchestrator

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post("/pipeline")
async def run_pipeline(request: Request, orchestrator: Orchestrator = Depends(get_orchestrator)):
    """Trigger a one-shot sync of the source warehouse into the destination."""
    raw = await request.body()
    try:
        body = json.loads(raw) if raw else None
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        return JSONResponse(
            {
                "success": False,
                "error": "Validation failed",
                "details": [{"loc": [], "msg": f"Invalid JSON body: {exc}", "type": "json_invalid"}],
            },
            status_code=400,
        )

    outcome = await orchestrator.run(body)
    return JSONResponse(outcome.body, status_code=outcome.status_code)
