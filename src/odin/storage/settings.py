"""Durable settings store: a typed view over the key/value settings table."""

from __future__ import annotations

import json
import logging
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from odin.errors import SettingsError
from odin.storage.connection import get_connection

logger = logging.getLogger(__name__)

DEFAULT_SYNC_INTERVAL_MINUTES = 360

_DEFAULTS: dict[str, Any] = {
    "acled_email": "",
    "acled_password": "",
    "acled_access_token": "",
    "acled_refresh_token": "",
    "acled_token_expiry": "",
    "acled_refresh_token_expiry": "",
    "sync_interval_minutes": DEFAULT_SYNC_INTERVAL_MINUTES,
    "ucdp_api_key": "",
    "sipri_csv_path": "",
    "natural_earth_path": "",
}

# Keys a settings form may write. Token keys are owned by the sync engine.
WRITABLE_KEYS = frozenset({
    "acled_email",
    "acled_password",
    "sync_interval_minutes",
    "ucdp_api_key",
    "sipri_csv_path",
    "natural_earth_path",
})

_TOKEN_KEYS = (
    "acled_access_token",
    "acled_refresh_token",
    "acled_token_expiry",
    "acled_refresh_token_expiry",
)


@dataclass(frozen=True)
class AcledToken:
    """OAuth2 token pair for the credentialed source.

    Expiries are timezone-aware UTC datetimes; access_expires_at is never
    later than refresh_expires_at.
    """

    access_token: str
    refresh_token: str
    access_expires_at: datetime
    refresh_expires_at: datetime

    def __post_init__(self) -> None:
        if self.access_expires_at > self.refresh_expires_at:
            object.__setattr__(self, "access_expires_at", self.refresh_expires_at)

    def is_expired(self, now: datetime) -> bool:
        """True once the refresh token has lapsed; the pair is then unusable."""
        return now >= self.refresh_expires_at


@dataclass(frozen=True)
class Settings:
    """Typed snapshot of the settings table."""

    acled_email: str = ""
    acled_password: str = ""
    acled_token: AcledToken | None = None
    sync_interval_minutes: int = DEFAULT_SYNC_INTERVAL_MINUTES
    ucdp_api_key: str = ""
    sipri_csv_path: str = ""
    natural_earth_path: str = ""


def seed_default_settings(
    conn: sqlite3.Connection,
    sync_interval_minutes: int = DEFAULT_SYNC_INTERVAL_MINUTES,
) -> None:
    """Insert any default setting that is not yet present."""
    defaults = {**_DEFAULTS, "sync_interval_minutes": sync_interval_minutes}
    conn.executemany(
        "INSERT OR IGNORE INTO settings (key, value) VALUES (?, ?)",
        [(key, json.dumps(value)) for key, value in defaults.items()],
    )


def _parse_datetime(value: Any) -> datetime | None:
    if not value or not isinstance(value, str):
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _token_from_raw(raw: dict[str, Any]) -> AcledToken | None:
    access = raw.get("acled_access_token") or ""
    access_expiry = _parse_datetime(raw.get("acled_token_expiry"))
    refresh_expiry = _parse_datetime(raw.get("acled_refresh_token_expiry"))
    if not access or access_expiry is None or refresh_expiry is None:
        return None
    return AcledToken(
        access_token=access,
        refresh_token=raw.get("acled_refresh_token") or "",
        access_expires_at=access_expiry,
        refresh_expires_at=refresh_expiry,
    )


def _load_raw(database_path: str) -> dict[str, Any]:
    raw: dict[str, Any] = dict(_DEFAULTS)
    with get_connection(database_path) as conn:
        rows = conn.execute("SELECT key, value FROM settings").fetchall()
    for row in rows:
        try:
            raw[row["key"]] = json.loads(row["value"])
        except ValueError:
            raw[row["key"]] = row["value"]
    return raw


def get_settings(database_path: str) -> Settings:
    """Read all settings into a typed Settings value."""
    raw = _load_raw(database_path)
    try:
        interval = int(raw.get("sync_interval_minutes") or DEFAULT_SYNC_INTERVAL_MINUTES)
    except (TypeError, ValueError):
        logger.warning("Invalid stored sync interval %r; using default", raw.get("sync_interval_minutes"))
        interval = DEFAULT_SYNC_INTERVAL_MINUTES
    return Settings(
        acled_email=raw.get("acled_email") or "",
        acled_password=raw.get("acled_password") or "",
        acled_token=_token_from_raw(raw),
        sync_interval_minutes=interval,
        ucdp_api_key=raw.get("ucdp_api_key") or "",
        sipri_csv_path=raw.get("sipri_csv_path") or "",
        natural_earth_path=raw.get("natural_earth_path") or "",
    )


def _validate(partial: dict[str, Any]) -> None:
    unknown = sorted(key for key in partial if key not in WRITABLE_KEYS)
    if unknown:
        raise SettingsError(f"Unknown or read-only settings keys: {', '.join(unknown)}")
    for key, value in partial.items():
        if key == "sync_interval_minutes":
            if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
                raise SettingsError("sync_interval_minutes must be a positive integer")
        elif not isinstance(value, str):
            raise SettingsError(f"{key} must be a string")


def update_settings(database_path: str, partial: dict[str, Any]) -> None:
    """Write a subset of the user-editable settings.

    The whole write is validated before anything is stored: one unknown key
    or invalid value rejects the entire update with SettingsError.
    """
    _validate(partial)
    with get_connection(database_path) as conn:
        conn.executemany(
            "INSERT INTO settings (key, value) VALUES (?, ?) "
            "ON CONFLICT(key) DO UPDATE SET value = excluded.value",
            [(key, json.dumps(value)) for key, value in partial.items()],
        )
    logger.info("Settings updated: %s", ", ".join(sorted(partial)))


def save_acled_token(database_path: str, token: AcledToken | None) -> None:
    """Persist (or clear) the credentialed source's token pair."""
    if token is None:
        values = {key: "" for key in _TOKEN_KEYS}
    else:
        values = {
            "acled_access_token": token.access_token,
            "acled_refresh_token": token.refresh_token,
            "acled_token_expiry": token.access_expires_at.isoformat(),
            "acled_refresh_token_expiry": token.refresh_expires_at.isoformat(),
        }
    with get_connection(database_path) as conn:
        conn.executemany(
            "INSERT INTO settings (key, value) VALUES (?, ?) "
            "ON CONFLICT(key) DO UPDATE SET value = excluded.value",
            [(key, json.dumps(value)) for key, value in values.items()],
        )


def public_settings(settings: Settings) -> dict[str, Any]:
    """Return the subset of settings safe to show outside the engine."""
    return {
        "acled_email": settings.acled_email,
        "acled_has_password": bool(settings.acled_password),
        "sync_interval_minutes": settings.sync_interval_minutes,
        "ucdp_has_api_key": bool(settings.ucdp_api_key),
        "sipri_csv_path": settings.sipri_csv_path,
        "natural_earth_path": settings.natural_earth_path,
    }
