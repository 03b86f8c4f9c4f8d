"""FastAPI application factory for the Odin sync API."""

from __future__ import annotations

from fastapi import FastAPI

from odin.scheduler import SyncScheduler
from odin.web.routes import health_router, router


def create_app(database_path: str, scheduler: SyncScheduler, lifespan=None) -> FastAPI:
    """Build and return a configured FastAPI application."""
    app = FastAPI(title="Odin", docs_url="/api/docs", lifespan=lifespan)
    app.state.database_path = database_path
    app.state.scheduler = scheduler
    app.include_router(health_router)
    app.include_router(router, prefix="/api/v1")
    return app
