"""ORM models."""
from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy import JSON, DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from portcullis.db.session import Base


def _uuid() -> str:
    return str(uuid.uuid4())


def _now() -> datetime:
    return datetime.now(timezone.utc)


class SyncJob(Base):
    """One attempted replication from a source warehouse to a destination."""

    __tablename__ = "syncs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid)
    organization: Mapped[str] = mapped_column(String(128), index=True)
    internal_warehouse: Mapped[str] = mapped_column(String(255))
    link_type: Mapped[str] = mapped_column(String(64))
    internal_credentials: Mapped[Dict[str, Any]] = mapped_column(JSON)
    destination_config: Mapped[Dict[str, Any]] = mapped_column(JSON)
    status: Mapped[str] = mapped_column(String(32), default="active")
    dispatch_attempts: Mapped[int] = mapped_column(Integer, default=0)
    dispatch_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_now)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_now, onupdate=_now)
