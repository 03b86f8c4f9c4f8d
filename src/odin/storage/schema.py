"""Database schema definition and initialization."""

from __future__ import annotations

import logging
import sqlite3
from typing import Callable

from odin.storage.connection import get_connection
from odin.storage.settings import DEFAULT_SYNC_INTERVAL_MINUTES, seed_default_settings

logger = logging.getLogger(__name__)

_SCHEMA_SQL = """\
CREATE TABLE IF NOT EXISTS schema_version (
    version     INTEGER PRIMARY KEY,
    applied_at  TEXT NOT NULL DEFAULT (datetime('now'))
);

-- Entities: one row per country or territory
CREATE TABLE IF NOT EXISTS countries (
    iso3                            TEXT PRIMARY KEY,
    iso2                            TEXT NOT NULL,
    name                            TEXT NOT NULL,
    region                          TEXT,
    subregion                       TEXT,
    population                      INTEGER,
    gdp                             REAL,
    area_sq_km                      REAL,
    capital                         TEXT,
    government_type                 TEXT,
    military_expenditure_pct_gdp    REAL,
    active_personnel                INTEGER,
    reserve_personnel               INTEGER,
    last_updated                    TEXT NOT NULL DEFAULT (datetime('now'))
);

-- Conflict events. No FK on iso3: disputed territories (XKX, TWN, PSE)
-- appear in event data but may be missing from countries.
CREATE TABLE IF NOT EXISTS conflict_events (
    id              TEXT PRIMARY KEY,
    iso3            TEXT NOT NULL,
    event_date      TEXT NOT NULL,
    event_type      TEXT NOT NULL,
    sub_event_type  TEXT,
    actor1          TEXT,
    actor2          TEXT,
    location        TEXT,
    latitude        REAL NOT NULL,
    longitude       REAL NOT NULL,
    fatalities      INTEGER DEFAULT 0,
    notes           TEXT,
    source          TEXT,
    source_scale    TEXT
);

-- Arms transfers between two known countries
CREATE TABLE IF NOT EXISTS arms_transfers (
    id                  TEXT PRIMARY KEY,
    supplier_iso3       TEXT NOT NULL REFERENCES countries(iso3),
    recipient_iso3      TEXT NOT NULL REFERENCES countries(iso3),
    year                INTEGER NOT NULL,
    weapon_category     TEXT,
    weapon_description  TEXT,
    quantity            INTEGER,
    tiv_delivered       REAL,
    order_date          TEXT,
    delivery_date       TEXT,
    status              TEXT,
    comments            TEXT
);

-- Military installations from OpenStreetMap
CREATE TABLE IF NOT EXISTS military_installations (
    id          TEXT PRIMARY KEY,
    iso3        TEXT NOT NULL REFERENCES countries(iso3),
    name        TEXT,
    type        TEXT,
    latitude    REAL NOT NULL,
    longitude   REAL NOT NULL,
    operator    TEXT,
    osm_tags    TEXT                            -- JSON object
);

-- Development indicators, one value per country/indicator/year
CREATE TABLE IF NOT EXISTS wb_indicators (
    iso3            TEXT NOT NULL REFERENCES countries(iso3),
    indicator_code  TEXT NOT NULL,
    indicator_name  TEXT,
    year            INTEGER NOT NULL,
    value           REAL,
    PRIMARY KEY (iso3, indicator_code, year)
);

-- Append-only history of adapter runs
CREATE TABLE IF NOT EXISTS sync_log (
    id                  INTEGER PRIMARY KEY AUTOINCREMENT,
    adapter             TEXT NOT NULL,
    started_at          TEXT NOT NULL,
    completed_at        TEXT,
    status              TEXT NOT NULL DEFAULT 'running' CHECK (status IN (
                            'running', 'completed', 'error'
                        )),
    records_fetched     INTEGER NOT NULL DEFAULT 0,
    records_upserted    INTEGER NOT NULL DEFAULT 0,
    error_message       TEXT
);

-- Durable key/value settings (values are JSON)
CREATE TABLE IF NOT EXISTS settings (
    key     TEXT PRIMARY KEY,
    value   TEXT NOT NULL
);

-- Indexes: countries
CREATE INDEX IF NOT EXISTS idx_countries_region ON countries(region);
CREATE INDEX IF NOT EXISTS idx_countries_name ON countries(name);

-- Indexes: conflict_events
CREATE INDEX IF NOT EXISTS idx_conflicts_iso3 ON conflict_events(iso3);
CREATE INDEX IF NOT EXISTS idx_conflicts_date ON conflict_events(event_date);
CREATE INDEX IF NOT EXISTS idx_conflicts_type ON conflict_events(event_type);
CREATE INDEX IF NOT EXISTS idx_conflicts_geo ON conflict_events(latitude, longitude);

-- Indexes: arms_transfers
CREATE INDEX IF NOT EXISTS idx_arms_supplier ON arms_transfers(supplier_iso3);
CREATE INDEX IF NOT EXISTS idx_arms_recipient ON arms_transfers(recipient_iso3);
CREATE INDEX IF NOT EXISTS idx_arms_year ON arms_transfers(year);

-- Indexes: military_installations
CREATE INDEX IF NOT EXISTS idx_installations_iso3 ON military_installations(iso3);
CREATE INDEX IF NOT EXISTS idx_installations_geo ON military_installations(latitude, longitude);

-- Indexes: wb_indicators
CREATE INDEX IF NOT EXISTS idx_wb_iso3 ON wb_indicators(iso3);
CREATE INDEX IF NOT EXISTS idx_wb_indicator ON wb_indicators(indicator_code);

-- Indexes: sync_log
CREATE INDEX IF NOT EXISTS idx_sync_adapter ON sync_log(adapter);
CREATE INDEX IF NOT EXISTS idx_sync_started_at ON sync_log(started_at);
"""


def _migrate_initial(conn: sqlite3.Connection) -> None:
    """Initial schema, created by _SCHEMA_SQL."""


def _migrate_conflict_events_drop_fk(conn: sqlite3.Connection) -> None:
    """Recreate conflict_events without the iso3 foreign key on older databases."""
    fks = conn.execute("PRAGMA foreign_key_list(conflict_events)").fetchall()
    if not fks:
        return  # Already FK-free
    conn.execute("""
        CREATE TABLE conflict_events_new (
            id              TEXT PRIMARY KEY,
            iso3            TEXT NOT NULL,
            event_date      TEXT NOT NULL,
            event_type      TEXT NOT NULL,
            sub_event_type  TEXT,
            actor1          TEXT,
            actor2          TEXT,
            location        TEXT,
            latitude        REAL NOT NULL,
            longitude       REAL NOT NULL,
            fatalities      INTEGER DEFAULT 0,
            notes           TEXT,
            source          TEXT,
            source_scale    TEXT
        )
    """)
    conn.execute(
        "INSERT OR IGNORE INTO conflict_events_new "
        "SELECT id, iso3, event_date, event_type, sub_event_type, actor1, actor2, "
        "location, latitude, longitude, fatalities, notes, source, source_scale "
        "FROM conflict_events"
    )
    conn.execute("DROP TABLE conflict_events")
    conn.execute("ALTER TABLE conflict_events_new RENAME TO conflict_events")
    for column, name in (
        ("iso3", "idx_conflicts_iso3"),
        ("event_date", "idx_conflicts_date"),
        ("event_type", "idx_conflicts_type"),
        ("latitude, longitude", "idx_conflicts_geo"),
    ):
        conn.execute(f"CREATE INDEX IF NOT EXISTS {name} ON conflict_events({column})")  # noqa: S608


MIGRATIONS: list[tuple[int, str, Callable[[sqlite3.Connection], None]]] = [
    (1, "Initial schema", _migrate_initial),
    (2, "Remove FK constraint from conflict_events.iso3", _migrate_conflict_events_drop_fk),
]


def current_version(conn: sqlite3.Connection) -> int:
    """Return the highest applied migration version, or 0 if none."""
    row = conn.execute("SELECT MAX(version) FROM schema_version").fetchone()
    return row[0] or 0


def _run_migrations(conn: sqlite3.Connection) -> None:
    version = current_version(conn)
    for number, description, migrate in MIGRATIONS:
        if number <= version:
            continue
        migrate(conn)
        conn.execute(
            "INSERT OR REPLACE INTO schema_version (version) VALUES (?)", (number,)
        )
        logger.info("Applied migration v%d: %s", number, description)


def init_db(
    database_path: str,
    sync_interval_minutes: int = DEFAULT_SYNC_INTERVAL_MINUTES,
) -> None:
    """Create all tables and indexes, apply migrations, and seed default settings.

    sync_interval_minutes only seeds a fresh database; a stored value wins.
    """
    with get_connection(database_path) as conn:
        conn.executescript(_SCHEMA_SQL)
        _run_migrations(conn)
        seed_default_settings(conn, sync_interval_minutes)
    logger.info("Database initialized at %s", database_path)
