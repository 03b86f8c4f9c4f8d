"""API route handlers for sync control, sync history and settings."""

from __future__ import annotations

import logging
import sqlite3

from fastapi import APIRouter, HTTPException, Query, Request
from fastapi.responses import JSONResponse

from odin.errors import SettingsError, UnknownAdapterError
from odin.scheduler import SyncScheduler
from odin.storage.connection import get_connection
from odin.storage.settings import get_settings, public_settings, update_settings
from odin.storage.sync_log import clear_sync_log, get_sync_log
from odin.web.models import (
    ClearLogResponse,
    PublicSettingsResponse,
    SettingsUpdateRequest,
    SyncLogEntryModel,
    SyncLogResponse,
    SyncRunResponse,
    SyncStatusModel,
    SyncStatusResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter()
health_router = APIRouter()


def _scheduler(request: Request) -> SyncScheduler:
    return request.app.state.scheduler


@health_router.get("/health")
def health(request: Request) -> JSONResponse:
    """Check database connectivity and return health status."""
    database_path = request.app.state.database_path
    try:
        with get_connection(database_path) as conn:
            conn.execute("SELECT 1")
        return JSONResponse({"status": "healthy", "database": "ok"})
    except (sqlite3.Error, OSError) as exc:
        logger.warning("Health check failed: %s", exc)
        return JSONResponse(
            {"status": "unhealthy", "database": "error", "detail": str(exc)},
            status_code=503,
        )


# ---------------------------------------------------------------------------
# Sync
# ---------------------------------------------------------------------------
@router.get("/sync/status", response_model=SyncStatusResponse)
def sync_status(request: Request) -> SyncStatusResponse:
    scheduler = _scheduler(request)
    return SyncStatusResponse(
        adapters=[SyncStatusModel(**s.to_dict()) for s in scheduler.status()],
        syncing=scheduler.is_syncing,
    )


@router.post("/sync", response_model=SyncRunResponse)
def sync_all(request: Request) -> SyncRunResponse:
    return SyncRunResponse(ran=_scheduler(request).sync_all())


@router.post("/sync/{adapter}", response_model=SyncRunResponse)
def sync_one(request: Request, adapter: str) -> SyncRunResponse:
    try:
        ran = _scheduler(request).sync_one(adapter)
    except UnknownAdapterError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return SyncRunResponse(ran=ran)


@router.get("/sync/log", response_model=SyncLogResponse)
def sync_log(
    request: Request,
    limit: int = Query(100, ge=1, le=1000),
) -> SyncLogResponse:
    entries = get_sync_log(request.app.state.database_path, limit=limit)
    return SyncLogResponse(entries=[SyncLogEntryModel(**e.to_dict()) for e in entries])


@router.delete("/sync/log", response_model=ClearLogResponse)
def delete_sync_log(request: Request) -> ClearLogResponse:
    return ClearLogResponse(deleted=clear_sync_log(request.app.state.database_path))


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------
@router.get("/settings", response_model=PublicSettingsResponse)
def read_settings(request: Request) -> PublicSettingsResponse:
    settings = get_settings(request.app.state.database_path)
    return PublicSettingsResponse(**public_settings(settings))


@router.put("/settings", response_model=PublicSettingsResponse)
def write_settings(request: Request, body: SettingsUpdateRequest) -> PublicSettingsResponse:
    database_path = request.app.state.database_path
    partial = body.model_dump(exclude_unset=True, exclude_none=True)
    try:
        update_settings(database_path, partial)
    except SettingsError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc

    scheduler = _scheduler(request)
    if "sync_interval_minutes" in partial and scheduler.is_armed:
        scheduler.start(partial["sync_interval_minutes"])

    return PublicSettingsResponse(**public_settings(get_settings(database_path)))
