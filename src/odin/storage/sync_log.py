"""Append-only sync history, derived status and the incremental watermark."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable

from odin.storage.connection import get_connection

logger = logging.getLogger(__name__)

_STATUS_FOR_CONSUMERS = {
    "running": "syncing",
    "completed": "idle",
    "error": "error",
}


@dataclass(frozen=True)
class SyncLogEntry:
    """One adapter run as recorded in sync_log."""

    id: int
    adapter: str
    started_at: str
    completed_at: str | None
    status: str
    records_fetched: int
    records_upserted: int
    error_message: str | None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "adapter": self.adapter,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
            "status": self.status,
            "records_fetched": self.records_fetched,
            "records_upserted": self.records_upserted,
            "error_message": self.error_message,
        }


@dataclass(frozen=True)
class SyncStatus:
    """Latest known state of one adapter, computed on demand."""

    adapter: str
    status: str
    last_sync: str | None
    record_count: int
    error_message: str | None = None

    def to_dict(self) -> dict:
        return {
            "adapter": self.adapter,
            "status": self.status,
            "last_sync": self.last_sync,
            "record_count": self.record_count,
            "error_message": self.error_message,
        }


def _now_iso(now: datetime | None) -> str:
    return (now or datetime.now(timezone.utc)).isoformat()


def _entry_from_row(row) -> SyncLogEntry:
    return SyncLogEntry(
        id=row["id"],
        adapter=row["adapter"],
        started_at=row["started_at"],
        completed_at=row["completed_at"],
        status=row["status"],
        records_fetched=row["records_fetched"],
        records_upserted=row["records_upserted"],
        error_message=row["error_message"],
    )


def log_sync_start(database_path: str, adapter: str, now: datetime | None = None) -> int:
    """Insert a `running` entry for an adapter run. Returns the entry id."""
    with get_connection(database_path) as conn:
        cursor = conn.execute(
            "INSERT INTO sync_log (adapter, started_at, status) VALUES (?, ?, 'running')",
            (adapter, _now_iso(now)),
        )
        return cursor.lastrowid


def _finish(
    database_path: str,
    log_id: int,
    status: str,
    fetched: int,
    upserted: int,
    error_message: str | None,
    now: datetime | None,
) -> None:
    with get_connection(database_path) as conn:
        cursor = conn.execute(
            "UPDATE sync_log SET completed_at = ?, status = ?, records_fetched = ?, "
            "records_upserted = ?, error_message = ? "
            "WHERE id = ? AND status = 'running'",
            (_now_iso(now), status, fetched, upserted, error_message, log_id),
        )
    if cursor.rowcount == 0:
        logger.warning("Sync log entry %d is not running; terminal state not written", log_id)


def log_sync_complete(
    database_path: str,
    log_id: int,
    fetched: int,
    upserted: int,
    now: datetime | None = None,
) -> None:
    """Mark a running entry `completed` with its record counts."""
    _finish(database_path, log_id, "completed", fetched, upserted, None, now)


def log_sync_error(
    database_path: str,
    log_id: int,
    error_message: str,
    fetched: int = 0,
    upserted: int = 0,
    now: datetime | None = None,
) -> None:
    """Mark a running entry `error`, keeping any counts already committed."""
    _finish(database_path, log_id, "error", fetched, upserted, error_message, now)


def get_sync_log(database_path: str, limit: int = 100) -> list[SyncLogEntry]:
    """Return the most recent log entries, newest first."""
    with get_connection(database_path) as conn:
        rows = conn.execute(
            "SELECT * FROM sync_log ORDER BY started_at DESC, id DESC LIMIT ?",
            (limit,),
        ).fetchall()
    return [_entry_from_row(row) for row in rows]


def clear_sync_log(database_path: str) -> int:
    """Delete every log entry. Returns the number removed."""
    with get_connection(database_path) as conn:
        cursor = conn.execute("DELETE FROM sync_log")
    logger.info("Cleared %d sync log entries", cursor.rowcount)
    return cursor.rowcount


def last_successful_sync(database_path: str, adapter: str) -> datetime | None:
    """Return completed_at of the adapter's latest `completed` run, or None."""
    with get_connection(database_path) as conn:
        row = conn.execute(
            "SELECT completed_at FROM sync_log "
            "WHERE adapter = ? AND status = 'completed' AND completed_at IS NOT NULL "
            "ORDER BY completed_at DESC, id DESC LIMIT 1",
            (adapter,),
        ).fetchone()
    if row is None:
        return None
    parsed = datetime.fromisoformat(row["completed_at"])
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def get_sync_status(database_path: str, adapters: Iterable[str]) -> list[SyncStatus]:
    """Derive the current status of each named adapter from its latest log entry."""
    statuses: list[SyncStatus] = []
    with get_connection(database_path) as conn:
        for adapter in adapters:
            latest = conn.execute(
                "SELECT * FROM sync_log WHERE adapter = ? "
                "ORDER BY started_at DESC, id DESC LIMIT 1",
                (adapter,),
            ).fetchone()
            last_completed = conn.execute(
                "SELECT completed_at FROM sync_log "
                "WHERE adapter = ? AND status = 'completed' "
                "ORDER BY completed_at DESC, id DESC LIMIT 1",
                (adapter,),
            ).fetchone()
            last_sync = last_completed["completed_at"] if last_completed else None
            if latest is None:
                statuses.append(SyncStatus(adapter=adapter, status="idle", last_sync=None, record_count=0))
                continue
            statuses.append(
                SyncStatus(
                    adapter=adapter,
                    status=_STATUS_FOR_CONSUMERS.get(latest["status"], "idle"),
                    last_sync=last_sync,
                    record_count=latest["records_upserted"],
                    error_message=latest["error_message"],
                )
            )
    return statuses
