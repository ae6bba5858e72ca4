"""
Portcullis API - FastAPI Application

Control plane for one-shot warehouse syncs.
"""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from portcullis import __version__
from portcullis.api.deps import Services, build_services
from portcullis.api.middleware import RequestIdMiddleware, TenantMiddleware, get_version_info
from portcullis.api.routes import health, pipeline, syncs
from portcullis.core.config import Settings, get_settings
from portcullis.core.metrics import router as metrics_router
from portcullis.core.structured_logging import configure_logging
from portcullis.db import init_db

logger = logging.getLogger(__name__)


def create_app(settings: Optional[Settings] = None, services: Optional[Services] = None) -> FastAPI:
    """Create and configure FastAPI application.

    ``services`` lets callers hand in pre-wired collaborators; otherwise they
    are built from ``settings`` when the app starts and closed when it stops.
    """
    settings = settings or get_settings()
    configure_logging(settings.log_level, json_output=settings.log_json)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = services is None
        app.state.services = services or build_services(settings)
        await init_db(app.state.services.engine)
        logger.info("Portcullis API starting up (env=%s)", settings.env)
        try:
            yield
        finally:
            if owned:
                await app.state.services.close()
            logger.info("Portcullis API shutting down")

    app = FastAPI(
        title="Portcullis API",
        description="Warehouse sync dispatch control plane",
        version=__version__,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins.split(","),
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    # last added runs first
    app.add_middleware(TenantMiddleware)
    app.add_middleware(RequestIdMiddleware)

    app.include_router(health.router, tags=["health"])
    app.include_router(metrics_router, tags=["meta"])
    app.include_router(pipeline.router, prefix="/api", tags=["pipeline"])
    app.include_router(syncs.router, prefix="/api", tags=["syncs"])

    @app.get("/version", tags=["meta"])
    async def version():
        return {"version": __version__, **get_version_info()}

    return app
