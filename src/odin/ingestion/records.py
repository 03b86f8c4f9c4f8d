"""Normalized record shapes produced by source adapters."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class Country:
    """Entity record, keyed by ISO3."""

    iso3: str
    iso2: str
    name: str
    region: str = ""
    subregion: str = ""
    population: int | None = None
    gdp: float | None = None
    area_sq_km: float | None = None
    capital: str | None = None
    government_type: str | None = None
    military_expenditure_pct_gdp: float | None = None
    active_personnel: int | None = None
    reserve_personnel: int | None = None
    last_updated: str = ""


@dataclass(frozen=True)
class CountryProfile:
    """Partial entity data merged into an existing country row."""

    iso3: str
    area_sq_km: float | None = None
    capital: str | None = None
    government_type: str | None = None
    last_updated: str = ""


@dataclass(frozen=True)
class ConflictEvent:
    """Event record, keyed by a source-prefixed event id."""

    id: str
    iso3: str
    event_date: str
    event_type: str
    sub_event_type: str | None
    actor1: str | None
    actor2: str | None
    location: str | None
    latitude: float
    longitude: float
    fatalities: int = 0
    notes: str | None = None
    source: str | None = None
    source_scale: str | None = None


@dataclass(frozen=True)
class ArmsTransfer:
    """Transfer record, keyed by a deterministic content hash."""

    id: str
    supplier_iso3: str
    recipient_iso3: str
    year: int
    weapon_category: str = ""
    weapon_description: str = ""
    quantity: float | None = None
    tiv_delivered: float | None = None
    order_date: str | None = None
    delivery_date: str | None = None
    status: str = ""
    comments: str | None = None


@dataclass(frozen=True)
class MilitaryInstallation:
    """Installation record, keyed by OSM element type and id."""

    id: str
    iso3: str
    name: str | None
    type: str
    latitude: float
    longitude: float
    operator: str | None = None
    osm_tags: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class Indicator:
    """Indicator record, keyed by (iso3, indicator_code, year)."""

    iso3: str
    indicator_code: str
    indicator_name: str
    year: int
    value: float | None


# --- Lenient numeric coercion for raw source fields ---


def float_or_none(value: Any) -> float | None:
    """Parse a number, returning None for blanks, junk and non-finite values."""
    if value is None or isinstance(value, bool):
        return None
    try:
        parsed = float(value)
    except (TypeError, ValueError):
        return None
    return parsed if math.isfinite(parsed) else None


def float_or_zero(value: Any) -> float:
    parsed = float_or_none(value)
    return 0.0 if parsed is None else parsed


def int_or_zero(value: Any) -> int:
    parsed = float_or_none(value)
    return 0 if parsed is None else int(parsed)
