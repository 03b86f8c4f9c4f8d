"""Idempotent batch upserts for normalized records.

Every batch runs inside one transaction. Each record is applied on its own:
a constraint violation on one record is logged, counted as skipped, and the
rest of the batch continues. Operational errors (locked or unreadable
database) still abort the whole batch.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Iterable, TypeVar

from odin.ingestion.records import (
    ArmsTransfer,
    ConflictEvent,
    Country,
    CountryProfile,
    Indicator,
    MilitaryInstallation,
)
from odin.storage.connection import begin, get_connection, savepoint

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Errors caused by the record itself, as opposed to the database.
_RECORD_ERRORS = (sqlite3.IntegrityError, sqlite3.InterfaceError, ValueError)


@dataclass(frozen=True)
class UpsertResult:
    """Outcome of one batch upsert."""

    upserted: int
    skipped: int

    @property
    def total(self) -> int:
        return self.upserted + self.skipped


def _apply_batch(
    database_path: str,
    category: str,
    records: Iterable[T],
    key: Callable[[T], str],
    apply: Callable[[sqlite3.Connection, T], bool],
) -> UpsertResult:
    """Apply each record in one transaction, isolating per-record failures.

    `apply` returns False when the record was deliberately not written.
    """
    upserted = 0
    skipped = 0
    with get_connection(database_path) as conn:
        begin(conn)
        for record in records:
            try:
                if apply(conn, record):
                    upserted += 1
                else:
                    skipped += 1
            except _RECORD_ERRORS as exc:
                skipped += 1
                logger.debug("Skipping %s %s: %s", category, key(record), exc)
    if skipped:
        logger.warning("Upserted %d %s, skipped %d invalid record(s)", upserted, category, skipped)
    else:
        logger.info("Upserted %d %s", upserted, category)
    return UpsertResult(upserted=upserted, skipped=skipped)


def _require(value: str | None, field_name: str) -> None:
    if not value or not str(value).strip():
        raise ValueError(f"{field_name} is required and must be non-empty")


# --- Entities ---


def _write_country(conn: sqlite3.Connection, country: Country) -> bool:
    _require(country.iso3, "iso3")
    # Update in place: a REPLACE would delete a row other tables reference.
    conn.execute(
        "INSERT INTO countries "
        "(iso3, iso2, name, region, subregion, population, gdp, area_sq_km, "
        "capital, government_type, military_expenditure_pct_gdp, "
        "active_personnel, reserve_personnel, last_updated) "
        "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?) "
        "ON CONFLICT(iso3) DO UPDATE SET "
        "iso2 = excluded.iso2, name = excluded.name, "
        "region = excluded.region, subregion = excluded.subregion, "
        "population = COALESCE(excluded.population, population), "
        "gdp = COALESCE(excluded.gdp, gdp), "
        "area_sq_km = COALESCE(excluded.area_sq_km, area_sq_km), "
        "capital = COALESCE(excluded.capital, capital), "
        "government_type = COALESCE(excluded.government_type, government_type), "
        "military_expenditure_pct_gdp = "
        "COALESCE(excluded.military_expenditure_pct_gdp, military_expenditure_pct_gdp), "
        "active_personnel = COALESCE(excluded.active_personnel, active_personnel), "
        "reserve_personnel = COALESCE(excluded.reserve_personnel, reserve_personnel), "
        "last_updated = excluded.last_updated",
        (
            country.iso3,
            country.iso2,
            country.name,
            country.region,
            country.subregion,
            country.population,
            country.gdp,
            country.area_sq_km,
            country.capital,
            country.government_type,
            country.military_expenditure_pct_gdp,
            country.active_personnel,
            country.reserve_personnel,
            country.last_updated or datetime.now(timezone.utc).isoformat(),
        ),
    )
    return True


def upsert_countries(database_path: str, countries: Iterable[Country]) -> UpsertResult:
    """Insert or update entity rows keyed by ISO3.

    Null optional fields keep the stored value, so profile data merged from
    other sources survives a re-seed.
    """
    return _apply_batch(database_path, "countries", countries, lambda c: c.iso3, _write_country)


def _merge_profile(conn: sqlite3.Connection, profile: CountryProfile) -> bool:
    _require(profile.iso3, "iso3")
    last_updated = profile.last_updated or datetime.now(timezone.utc).isoformat()
    with savepoint(conn, "profile"):
        existing = conn.execute(
            "SELECT iso3 FROM countries WHERE iso3 = ?", (profile.iso3,)
        ).fetchone()
        if existing is not None:
            conn.execute(
                "UPDATE countries SET "
                "area_sq_km = COALESCE(?, area_sq_km), "
                "capital = COALESCE(?, capital), "
                "government_type = COALESCE(?, government_type), "
                "last_updated = ? "
                "WHERE iso3 = ?",
                (
                    profile.area_sq_km,
                    profile.capital,
                    profile.government_type,
                    last_updated,
                    profile.iso3,
                ),
            )
        else:
            conn.execute(
                "INSERT INTO countries "
                "(iso3, iso2, name, region, subregion, area_sq_km, capital, "
                "government_type, last_updated) "
                "VALUES (?, '', ?, '', '', ?, ?, ?, ?)",
                (
                    profile.iso3,
                    profile.iso3,
                    profile.area_sq_km,
                    profile.capital,
                    profile.government_type,
                    last_updated,
                ),
            )
    return True


def merge_country_profiles(
    database_path: str, profiles: Iterable[CountryProfile]
) -> UpsertResult:
    """Merge partial profile fields into entity rows, creating minimal rows if absent.

    Non-null profile fields overwrite; null fields keep the stored value.
    """
    return _apply_batch(database_path, "country profiles", profiles, lambda p: p.iso3, _merge_profile)


# --- Events ---


def _write_conflict(conn: sqlite3.Connection, event: ConflictEvent) -> bool:
    _require(event.id, "id")
    # iso3 must be present but need not match a countries row.
    _require(event.iso3, "iso3")
    conn.execute(
        "INSERT OR REPLACE INTO conflict_events "
        "(id, iso3, event_date, event_type, sub_event_type, actor1, actor2, "
        "location, latitude, longitude, fatalities, notes, source, source_scale) "
        "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
        (
            event.id,
            event.iso3,
            event.event_date,
            event.event_type,
            event.sub_event_type,
            event.actor1,
            event.actor2,
            event.location,
            event.latitude,
            event.longitude,
            event.fatalities,
            event.notes,
            event.source,
            event.source_scale,
        ),
    )
    return True


def upsert_conflicts(database_path: str, events: Iterable[ConflictEvent]) -> UpsertResult:
    """Insert or replace conflict events keyed by event id."""
    return _apply_batch(database_path, "conflict events", events, lambda e: e.id, _write_conflict)


# --- Transfers ---


def _write_transfer(conn: sqlite3.Connection, transfer: ArmsTransfer) -> bool:
    _require(transfer.id, "id")
    _require(transfer.supplier_iso3, "supplier_iso3")
    _require(transfer.recipient_iso3, "recipient_iso3")
    conn.execute(
        "INSERT OR REPLACE INTO arms_transfers "
        "(id, supplier_iso3, recipient_iso3, year, weapon_category, weapon_description, "
        "quantity, tiv_delivered, order_date, delivery_date, status, comments) "
        "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
        (
            transfer.id,
            transfer.supplier_iso3,
            transfer.recipient_iso3,
            transfer.year,
            transfer.weapon_category,
            transfer.weapon_description,
            transfer.quantity,
            transfer.tiv_delivered,
            transfer.order_date,
            transfer.delivery_date,
            transfer.status,
            transfer.comments,
        ),
    )
    return True


def upsert_arms_transfers(database_path: str, transfers: Iterable[ArmsTransfer]) -> UpsertResult:
    """Insert or replace arms transfers; both parties must be known countries."""
    return _apply_batch(database_path, "arms transfers", transfers, lambda t: t.id, _write_transfer)


# --- Installations ---


def _write_installation(conn: sqlite3.Connection, inst: MilitaryInstallation) -> bool:
    _require(inst.id, "id")
    _require(inst.iso3, "iso3")
    conn.execute(
        "INSERT OR REPLACE INTO military_installations "
        "(id, iso3, name, type, latitude, longitude, operator, osm_tags) "
        "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
        (
            inst.id,
            inst.iso3,
            inst.name,
            inst.type,
            inst.latitude,
            inst.longitude,
            inst.operator,
            json.dumps(inst.osm_tags or {}),
        ),
    )
    return True


def upsert_installations(
    database_path: str, installations: Iterable[MilitaryInstallation]
) -> UpsertResult:
    """Insert or replace military installations keyed by OSM id."""
    return _apply_batch(
        database_path, "installations", installations, lambda i: i.id, _write_installation
    )


# --- Indicators ---


def _write_indicator(conn: sqlite3.Connection, ind: Indicator) -> bool:
    _require(ind.iso3, "iso3")
    _require(ind.indicator_code, "indicator_code")
    # Aggregate codes (WLD, EAP, SSA, ...) have no countries row and are dropped.
    cursor = conn.execute(
        "INSERT OR REPLACE INTO wb_indicators "
        "(iso3, indicator_code, indicator_name, year, value) "
        "SELECT ?, ?, ?, ?, ? "
        "WHERE EXISTS (SELECT 1 FROM countries WHERE iso3 = ?)",
        (ind.iso3, ind.indicator_code, ind.indicator_name, ind.year, ind.value, ind.iso3),
    )
    return cursor.rowcount > 0


def upsert_indicators(database_path: str, indicators: Iterable[Indicator]) -> UpsertResult:
    """Insert or replace indicator values for known countries only."""
    return _apply_batch(
        database_path,
        "indicators",
        indicators,
        lambda i: f"{i.iso3}/{i.indicator_code}/{i.year}",
        _write_indicator,
    )


# --- Lookups used by adapters ---


def country_name_index(database_path: str) -> dict[str, str]:
    """Map lower-cased country names to ISO3 codes."""
    with get_connection(database_path) as conn:
        rows = conn.execute("SELECT iso3, name FROM countries").fetchall()
    return {row["name"].strip().lower(): row["iso3"] for row in rows if row["name"]}


def count_rows(database_path: str, table: str) -> int:
    """Return the row count of one of the record tables."""
    if table not in {
        "countries", "conflict_events", "arms_transfers",
        "military_installations", "wb_indicators",
    }:
        raise ValueError(f"Unknown table: {table}")
    with get_connection(database_path) as conn:
        return conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]  # noqa: S608
