"""Pydantic v2 request/response models for the sync API."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, StrictInt, StrictStr


# ---------------------------------------------------------------------------
# Sync status and runs
# ---------------------------------------------------------------------------
class SyncStatusModel(BaseModel):
    adapter: str
    status: str
    last_sync: str | None
    record_count: int
    error_message: str | None = None


class SyncStatusResponse(BaseModel):
    adapters: list[SyncStatusModel]
    syncing: bool


class SyncRunResponse(BaseModel):
    ran: bool


# ---------------------------------------------------------------------------
# Sync log
# ---------------------------------------------------------------------------
class SyncLogEntryModel(BaseModel):
    id: int
    adapter: str
    started_at: str
    completed_at: str | None
    status: str
    records_fetched: int
    records_upserted: int
    error_message: str | None


class SyncLogResponse(BaseModel):
    entries: list[SyncLogEntryModel]


class ClearLogResponse(BaseModel):
    deleted: int


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------
class PublicSettingsResponse(BaseModel):
    acled_email: str
    acled_has_password: bool
    sync_interval_minutes: int
    ucdp_has_api_key: bool
    sipri_csv_path: str
    natural_earth_path: str


class SettingsUpdateRequest(BaseModel):
    """Partial settings write. Unknown keys are rejected, not ignored."""

    model_config = ConfigDict(extra="forbid")

    acled_email: StrictStr | None = None
    acled_password: StrictStr | None = None
    sync_interval_minutes: StrictInt | None = Field(default=None, gt=0)
    ucdp_api_key: StrictStr | None = None
    sipri_csv_path: StrictStr | None = None
    natural_earth_path: StrictStr | None = None
