"""Process-lifetime collaborators and their FastAPI dependency accessors."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

import httpx
from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncEngine

from portcullis.core.config import Settings
from portcullis.core.connectors import ConnectorRegistry, get_registry
from portcullis.db import create_engine, create_session_factory
from portcullis.ingestion.introspection import SourceIntrospector
from portcullis.ingestion.snapshot import SnapshotExtractor
from portcullis.sync.dispatcher import ProvisionDispatcher
from portcullis.sync.job_store import SyncJobStore
from portcullis.sync.orchestrator import Orchestrator
from portcullis.sync.validation import RequestValidator

logger = logging.getLogger(__name__)


@dataclass
class Services:
    settings: Settings
    engine: AsyncEngine
    job_store: SyncJobStore
    dispatcher: ProvisionDispatcher
    orchestrator: Orchestrator

    async def close(self) -> None:
        await self.dispatcher.close()
        await self.engine.dispose()


def build_services(
    settings: Settings,
    registry: Optional[ConnectorRegistry] = None,
    dispatch_transport: Optional[httpx.AsyncBaseTransport] = None,
    engine: Optional[AsyncEngine] = None,
) -> Services:
    """Wire the pipeline once per process."""
    registry = registry or get_registry()
    engine = engine or create_engine(settings)
    job_store = SyncJobStore(create_session_factory(engine))
    dispatcher = ProvisionDispatcher.from_settings(settings, transport=dispatch_transport)
    orchestrator = Orchestrator(
        validator=RequestValidator(),
        introspector=SourceIntrospector(registry, source_timeout=settings.source_timeout_seconds),
        extractor=SnapshotExtractor(
            registry,
            max_concurrency=settings.extract_max_concurrency,
            source_timeout=settings.source_timeout_seconds,
        ),
        job_store=job_store,
        dispatcher=dispatcher,
        settings=settings,
    )
    return Services(
        settings=settings,
        engine=engine,
        job_store=job_store,
        dispatcher=dispatcher,
        orchestrator=orchestrator,
    )


def get_services(request: Request) -> Services:
    return request.app.state.services


def get_orchestrator(request: Request) -> Orchestrator:
    return get_services(request).orchestrator


def get_job_store(request: Request) -> SyncJobStore:
    return get_services(request).job_store
