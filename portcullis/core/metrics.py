"""Prometheus metrics instrumentation."""
from __future__ import annotations

from fastapi import APIRouter, Response
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest

sync_requests = Counter(
    "portcullis_sync_requests_total",
    "Sync requests by terminal pipeline state",
    ["outcome"],
)
stage_duration = Histogram(
    "portcullis_sync_stage_seconds",
    "Duration of each sync pipeline stage",
    ["stage"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1, 2, 5, 15, 30, 60, 120, 300),
)
dispatch_retries = Counter(
    "portcullis_dispatch_retries_total",
    "Total provisioning dispatch retry attempts",
)
snapshot_rows = Histogram(
    "portcullis_snapshot_rows",
    "Rows extracted per sync snapshot",
    buckets=(0, 10, 100, 1000, 10_000, 100_000, 1_000_000),
)

router = APIRouter()


@router.get("/metrics")
async def metrics():  # pragma: no cover (exposed endpoint)
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)
