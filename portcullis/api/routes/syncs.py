"""
Sync API Routes

Lookup of sync records and forward-only status reconciliation.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, ConfigDict

from portcullis.api.deps import get_job_store
from portcullis.api.middleware import get_tenant_id
from portcullis.core.errors import PersistenceError, StatusTransitionError, SyncNotFoundError
from portcullis.sync.job_store import SyncJobStore

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/syncs")


class SyncResponse(BaseModel):
    id: str
    organization: str
    internal_warehouse: str
    link_type: str
    internal_credentials: Any
    destination_config: Dict[str, Any]
    status: str
    dispatch_attempts: int
    dispatch_error: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class StatusUpdateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    status: Literal["completed", "failed"]


@router.get("", response_model=List[SyncResponse])
async def list_syncs(
    organization: Optional[str] = None,
    limit: int = Query(default=50, ge=1, le=500),
    store: SyncJobStore = Depends(get_job_store),
):
    """List syncs for an organization, newest first."""
    organization = organization or get_tenant_id()
    if not organization:
        raise HTTPException(status_code=400, detail="Organization ID is required")
    try:
        records = await store.list_for_organization(organization, limit=limit)
    except PersistenceError as exc:
        raise HTTPException(status_code=exc.http_status, detail=exc.message) from exc
    return [SyncResponse(**r.to_public_dict()) for r in records]


@router.get("/{sync_id}", response_model=SyncResponse)
async def get_sync(sync_id: str, store: SyncJobStore = Depends(get_job_store)):
    try:
        record = await store.get(sync_id)
    except PersistenceError as exc:
        raise HTTPException(status_code=exc.http_status, detail=exc.message) from exc
    if record is None:
        raise HTTPException(status_code=404, detail="Sync not found")
    return SyncResponse(**record.to_public_dict())


@router.post("/{sync_id}/status", response_model=SyncResponse)
async def update_sync_status(
    sync_id: str,
    payload: StatusUpdateRequest,
    store: SyncJobStore = Depends(get_job_store),
):
    """Report the worker's final outcome for a sync."""
    try:
        record = await store.update_status(sync_id, payload.status)
    except (SyncNotFoundError, StatusTransitionError, PersistenceError) as exc:
        raise HTTPException(status_code=exc.http_status, detail=exc.message) from exc
    return SyncResponse(**record.to_public_dict())
