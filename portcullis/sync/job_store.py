"""
Sync job store.

Every accepted sync request produces exactly one new record; nothing here
upserts or deletes. Status only moves forward: ``active`` may become
``completed`` or ``failed`` and both of those are terminal.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from portcullis.core.errors import PersistenceError, StatusTransitionError, SyncNotFoundError
from portcullis.core.structured_logging import filter_sensitive_fields
from portcullis.db.models import SyncJob

logger = logging.getLogger(__name__)


class SyncStatus(str, Enum):
    ACTIVE = "active"
    FAILED = "failed"
    COMPLETED = "completed"


STATUS_RANK = {
    SyncStatus.ACTIVE: 0,
    SyncStatus.FAILED: 1,
    SyncStatus.COMPLETED: 1,
}


def can_transition(current: SyncStatus, requested: SyncStatus) -> bool:
    if current == requested:
        return True
    return STATUS_RANK[requested] > STATUS_RANK[current]


@dataclass(frozen=True)
class SyncJobRecord:
    id: str
    organization: str
    internal_warehouse: str
    link_type: str
    internal_credentials: Dict[str, Any]
    destination_config: Dict[str, Any]
    status: SyncStatus
    dispatch_attempts: int
    dispatch_error: Optional[str]
    created_at: datetime
    updated_at: Optional[datetime]

    @classmethod
    def from_row(cls, row: SyncJob) -> "SyncJobRecord":
        return cls(
            id=row.id,
            organization=row.organization,
            internal_warehouse=row.internal_warehouse,
            link_type=row.link_type,
            internal_credentials=dict(row.internal_credentials or {}),
            destination_config=dict(row.destination_config or {}),
            status=SyncStatus(row.status),
            dispatch_attempts=row.dispatch_attempts or 0,
            dispatch_error=row.dispatch_error,
            created_at=row.created_at,
            updated_at=row.updated_at,
        )

    def to_public_dict(self) -> Dict[str, Any]:
        """Serializable view with credentials redacted."""
        return {
            "id": self.id,
            "organization": self.organization,
            "internal_warehouse": self.internal_warehouse,
            "link_type": self.link_type,
            "internal_credentials": filter_sensitive_fields(self.internal_credentials),
            "destination_config": filter_sensitive_fields(self.destination_config),
            "status": self.status.value,
            "dispatch_attempts": self.dispatch_attempts,
            "dispatch_error": self.dispatch_error,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


class SyncJobStore:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def create(self, fields: Dict[str, Any]) -> str:
        """Insert one new active SyncJob and return its generated id."""
        try:
            async with self._session_factory() as session:
                job = SyncJob(
                    organization=fields["organization"],
                    internal_warehouse=fields["internal_warehouse"],
                    link_type=fields["link_type"],
                    internal_credentials=fields["internal_credentials"],
                    destination_config=fields["destination_config"],
                    status=SyncStatus.ACTIVE.value,
                    dispatch_attempts=0,
                )
                session.add(job)
                await session.commit()
                sync_id = job.id
        except SQLAlchemyError as exc:
            logger.error("Sync create failed: %s", exc)
            raise PersistenceError(message=str(exc)) from exc
        if not sync_id:
            raise PersistenceError(message="Failed to create sync record: No data returned")
        logger.info(
            "Created sync %s for organization %s",
            sync_id,
            fields["organization"],
            extra={"event": "sync_created", "link_type": fields["link_type"]},
        )
        return sync_id

    async def get(self, sync_id: str) -> Optional[SyncJobRecord]:
        try:
            async with self._session_factory() as session:
                row = await session.get(SyncJob, sync_id)
                return SyncJobRecord.from_row(row) if row else None
        except SQLAlchemyError as exc:
            raise PersistenceError(message=str(exc)) from exc

    async def list_for_organization(self, organization: str, limit: int = 50) -> List[SyncJobRecord]:
        stmt = (
            select(SyncJob)
            .where(SyncJob.organization == organization)
            .order_by(SyncJob.created_at.desc())
            .limit(limit)
        )
        try:
            async with self._session_factory() as session:
                rows = (await session.execute(stmt)).scalars().all()
        except SQLAlchemyError as exc:
            raise PersistenceError(message=str(exc)) from exc
        return [SyncJobRecord.from_row(row) for row in rows]

    async def update_status(self, sync_id: str, status: SyncStatus | str) -> SyncJobRecord:
        """Move a sync forward; raises StatusTransitionError on regression."""
        requested = SyncStatus(status)
        try:
            async with self._session_factory() as session:
                row = await session.get(SyncJob, sync_id, with_for_update=True)
                if row is None:
                    raise SyncNotFoundError(sync_id)
                current = SyncStatus(row.status)
                if not can_transition(current, requested):
                    raise StatusTransitionError(current.value, requested.value)
                if current != requested:
                    row.status = requested.value
                    await session.commit()
                    await session.refresh(row)
                    logger.info("Sync %s moved %s -> %s", sync_id, current.value, requested.value)
                return SyncJobRecord.from_row(row)
        except SQLAlchemyError as exc:
            raise PersistenceError(message=str(exc)) from exc

    async def record_dispatch(self, sync_id: str, attempts: int, error: Optional[str] = None) -> None:
        """Remember how dispatch went; status is left untouched."""
        try:
            async with self._session_factory() as session:
                row = await session.get(SyncJob, sync_id)
                if row is None:
                    raise SyncNotFoundError(sync_id)
                row.dispatch_attempts = (row.dispatch_attempts or 0) + attempts
                row.dispatch_error = error
                await session.commit()
        except SQLAlchemyError as exc:
            raise PersistenceError(message=str(exc)) from exc

    async def ping(self) -> bool:
        async with self._session_factory() as session:
            await session.execute(select(1))
        return True
