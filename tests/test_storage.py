"""Tests for odin.storage — schema, connection, migrations and constraints."""

from __future__ import annotations

import sqlite3

import pytest

from odin.storage.connection import begin, get_connection, savepoint
from odin.storage.schema import MIGRATIONS, current_version, init_db

EXPECTED_TABLES = {
    "schema_version",
    "countries",
    "conflict_events",
    "arms_transfers",
    "military_installations",
    "wb_indicators",
    "sync_log",
    "settings",
}

EXPECTED_INDEXES = {
    "idx_countries_region",
    "idx_countries_name",
    "idx_conflicts_iso3",
    "idx_conflicts_date",
    "idx_conflicts_type",
    "idx_conflicts_geo",
    "idx_arms_supplier",
    "idx_arms_recipient",
    "idx_arms_year",
    "idx_installations_iso3",
    "idx_installations_geo",
    "idx_wb_iso3",
    "idx_wb_indicator",
    "idx_sync_adapter",
    "idx_sync_started_at",
}


@pytest.fixture()
def db_path(tmp_path):
    """Return a database path inside a temporary directory."""
    return str(tmp_path / "test.db")


@pytest.fixture()
def initialized_db(db_path):
    """Initialize the database and return the path."""
    init_db(db_path)
    return db_path


def _insert_country(conn: sqlite3.Connection, iso3: str = "FRA") -> None:
    conn.execute(
        "INSERT INTO countries (iso3, iso2, name) VALUES (?, ?, ?)",
        (iso3, iso3[:2], f"Country {iso3}"),
    )


# --- Table and index existence ---


def test_init_db_creates_all_tables(initialized_db):
    with get_connection(initialized_db) as conn:
        rows = conn.execute(
            "SELECT name FROM sqlite_master WHERE type='table' AND name NOT LIKE 'sqlite_%'"
        ).fetchall()
        table_names = {row["name"] for row in rows}
    assert EXPECTED_TABLES == table_names


def test_init_db_is_idempotent(db_path):
    init_db(db_path)
    init_db(db_path)  # Should not raise


def test_init_db_creates_indexes(initialized_db):
    with get_connection(initialized_db) as conn:
        rows = conn.execute("SELECT name FROM sqlite_master WHERE type='index' AND name LIKE 'idx_%'").fetchall()
        index_names = {row["name"] for row in rows}
    assert EXPECTED_INDEXES == index_names


def test_init_db_records_all_migrations(initialized_db):
    with get_connection(initialized_db) as conn:
        assert current_version(conn) == MIGRATIONS[-1][0]


# --- Pragmas ---


def test_wal_mode_enabled(initialized_db):
    with get_connection(initialized_db) as conn:
        mode = conn.execute("PRAGMA journal_mode").fetchone()[0]
    assert mode == "wal"


def test_foreign_keys_enabled(initialized_db):
    with get_connection(initialized_db) as conn:
        fk = conn.execute("PRAGMA foreign_keys").fetchone()[0]
    assert fk == 1


# --- Constraint enforcement ---


def test_arms_transfer_requires_known_countries(initialized_db):
    with pytest.raises(sqlite3.IntegrityError):
        with get_connection(initialized_db) as conn:
            conn.execute(
                "INSERT INTO arms_transfers (id, supplier_iso3, recipient_iso3, year) "
                "VALUES (?, ?, ?, ?)",
                ("t-1", "XXX", "YYY", 2020),
            )


def test_conflict_event_accepts_unknown_country(initialized_db):
    with get_connection(initialized_db) as conn:
        conn.execute(
            "INSERT INTO conflict_events (id, iso3, event_date, event_type, latitude, longitude) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            ("e-1", "XKX", "2024-01-01", "Battles", 42.6, 21.1),
        )
        count = conn.execute("SELECT COUNT(*) FROM conflict_events").fetchone()[0]
    assert count == 1


def test_sync_log_status_check_constraint(initialized_db):
    with pytest.raises(sqlite3.IntegrityError):
        with get_connection(initialized_db) as conn:
            conn.execute(
                "INSERT INTO sync_log (adapter, started_at, status) VALUES (?, ?, ?)",
                ("acled", "2025-01-01T00:00:00+00:00", "paused"),
            )


# --- Transactions ---


def test_connection_rolls_back_on_error(initialized_db):
    with pytest.raises(RuntimeError):
        with get_connection(initialized_db) as conn:
            _insert_country(conn, "FRA")
            raise RuntimeError("boom")
    with get_connection(initialized_db) as conn:
        assert conn.execute("SELECT COUNT(*) FROM countries").fetchone()[0] == 0


def test_savepoint_undoes_only_its_own_work(initialized_db):
    with get_connection(initialized_db) as conn:
        begin(conn)
        _insert_country(conn, "FRA")
        with pytest.raises(sqlite3.IntegrityError):
            with savepoint(conn):
                _insert_country(conn, "DEU")
                _insert_country(conn, "FRA")  # duplicate primary key
        _insert_country(conn, "ITA")
    with get_connection(initialized_db) as conn:
        rows = conn.execute("SELECT iso3 FROM countries ORDER BY iso3").fetchall()
    assert [row["iso3"] for row in rows] == ["FRA", "ITA"]


# --- Migrations ---


def test_migration_drops_conflict_events_foreign_key(db_path):
    """A database created with the older FK-constrained table is migrated in place."""
    init_db(db_path)
    conn = sqlite3.connect(db_path)
    conn.executescript(
        """
        DELETE FROM schema_version WHERE version > 1;
        DROP TABLE conflict_events;
        CREATE TABLE conflict_events (
            id TEXT PRIMARY KEY,
            iso3 TEXT NOT NULL REFERENCES countries(iso3),
            event_date TEXT NOT NULL,
            event_type TEXT NOT NULL,
            sub_event_type TEXT, actor1 TEXT, actor2 TEXT, location TEXT,
            latitude REAL NOT NULL, longitude REAL NOT NULL,
            fatalities INTEGER DEFAULT 0, notes TEXT, source TEXT, source_scale TEXT
        );
        INSERT INTO countries (iso3, iso2, name) VALUES ('FRA', 'FR', 'France');
        INSERT INTO conflict_events (id, iso3, event_date, event_type, latitude, longitude)
            VALUES ('e-1', 'FRA', '2024-01-01', 'Protests', 48.8, 2.3);
        """
    )
    conn.commit()
    conn.close()

    init_db(db_path)

    with get_connection(db_path) as conn:
        assert conn.execute("PRAGMA foreign_key_list(conflict_events)").fetchall() == []
        assert conn.execute("SELECT COUNT(*) FROM conflict_events").fetchone()[0] == 1
        assert current_version(conn) == 2
