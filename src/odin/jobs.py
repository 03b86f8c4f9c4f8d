"""Adapter runners: fetch one source and upsert its records.

A runner takes the database path and returns the counts of records fetched
and upserted. Runners are rebuilt from current settings before every sync so
credential or path changes apply without a restart. Adapter classes are
looked up in the registry by kind.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Callable

import httpx

from odin.config import Config
from odin.errors import PartialSyncError
import odin.ingestion  # noqa: F401  (registers adapter classes)
from odin.ingestion.acled_auth import utcnow
from odin.ingestion.overpass_adapter import overpass_client
from odin.ingestion.registry import AdapterKind, get_adapter_class
from odin.ingestion.worldbank_adapter import INDICATOR_CODES
from odin.storage.settings import Settings, save_acled_token
from odin.storage.sync_log import last_successful_sync
from odin.storage.upsert import (
    country_name_index,
    merge_country_profiles,
    upsert_arms_transfers,
    upsert_conflicts,
    upsert_countries,
    upsert_indicators,
    upsert_installations,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SyncResult:
    """Counts reported by one adapter run."""

    fetched: int
    upserted: int


Runner = Callable[[str], SyncResult]
ClientFactory = Callable[[], httpx.Client]


@dataclass(frozen=True)
class RunnerDeps:
    """Collaborators shared by every runner; tests replace them."""

    client_factory: ClientFactory
    overpass_client_factory: ClientFactory
    sleep: Callable[[float], None] = time.sleep
    monotonic: Callable[[], float] = time.monotonic
    clock: Callable[[], datetime] = utcnow


def effective_acled_credentials(config: Config, settings: Settings) -> tuple[str, str]:
    """Environment credentials take precedence over stored ones."""
    return (
        config.acled_email or settings.acled_email,
        config.acled_password or settings.acled_password,
    )


def run_natural_earth(database_path: str, geojson_path: str) -> SyncResult:
    """Seed the countries table from the bundled boundaries file."""
    adapter = get_adapter_class(AdapterKind.NATURAL_EARTH)(geojson_path)
    countries = adapter.fetch_countries()
    result = upsert_countries(database_path, countries)
    return SyncResult(fetched=len(countries), upserted=result.upserted)


def run_acled(
    database_path: str,
    config: Config,
    settings: Settings,
    deps: RunnerDeps,
) -> SyncResult:
    """Incremental ACLED sync from the last completed run's date.

    The token pair is persisted after the run whether or not it succeeded.
    """
    email, password = effective_acled_credentials(config, settings)
    watermark = last_successful_sync(database_path, AdapterKind.ACLED.value)
    with deps.client_factory() as client:
        adapter = get_adapter_class(AdapterKind.ACLED)(
            email,
            password,
            settings.acled_token,
            client,
            sleep=deps.sleep,
            monotonic=deps.monotonic,
            clock=deps.clock,
        )
        try:
            events = adapter.fetch_all_events(since=watermark.date() if watermark else None)
        finally:
            save_acled_token(database_path, adapter.token)
    result = upsert_conflicts(database_path, events)
    return SyncResult(fetched=len(events), upserted=result.upserted)


def run_ucdp(database_path: str, settings: Settings, deps: RunnerDeps) -> SyncResult:
    with deps.client_factory() as client:
        adapter = get_adapter_class(AdapterKind.UCDP)(
            country_name_index(database_path),
            settings.ucdp_api_key,
            client,
            sleep=deps.sleep,
            monotonic=deps.monotonic,
        )
        events = adapter.fetch_all_events()
    result = upsert_conflicts(database_path, events)
    return SyncResult(fetched=len(events), upserted=result.upserted)


def run_worldbank(database_path: str, deps: RunnerDeps) -> SyncResult:
    """Fetch and commit each indicator in turn.

    A failure part-way raises PartialSyncError carrying the counts of the
    indicators already committed.
    """
    fetched = 0
    upserted = 0
    with deps.client_factory() as client:
        adapter = get_adapter_class(AdapterKind.WORLDBANK)(
            client, sleep=deps.sleep, monotonic=deps.monotonic, clock=deps.clock
        )
        for code in INDICATOR_CODES:
            try:
                records = adapter.fetch_indicator(code)
            except Exception as exc:
                raise PartialSyncError(
                    f"World Bank indicator {code} failed: {exc}", fetched, upserted
                ) from exc
            result = upsert_indicators(database_path, records)
            fetched += len(records)
            upserted += result.upserted
    return SyncResult(fetched=fetched, upserted=upserted)


def run_overpass(database_path: str, geojson_path: str, deps: RunnerDeps) -> SyncResult:
    geocoder = get_adapter_class(AdapterKind.NATURAL_EARTH)(geojson_path)
    geocoder.load_boundaries()
    with deps.overpass_client_factory() as client:
        adapter = get_adapter_class(AdapterKind.OVERPASS)(
            geocoder.reverse_geocode, client, sleep=deps.sleep, monotonic=deps.monotonic
        )
        installations = adapter.fetch_all_installations()
    result = upsert_installations(database_path, installations)
    return SyncResult(fetched=len(installations), upserted=result.upserted)


def run_factbook(database_path: str, deps: RunnerDeps) -> SyncResult:
    with deps.client_factory() as client:
        adapter = get_adapter_class(AdapterKind.CIA_FACTBOOK)(
            client, sleep=deps.sleep, monotonic=deps.monotonic, clock=deps.clock
        )
        profiles = adapter.fetch_all_countries()
    result = merge_country_profiles(database_path, profiles)
    return SyncResult(fetched=len(profiles), upserted=result.upserted)


def run_sipri(database_path: str, settings: Settings, deps: RunnerDeps) -> SyncResult:
    """Import from the configured local CSV, or download the export if none is set."""
    with deps.client_factory() as client:
        adapter = get_adapter_class(AdapterKind.SIPRI)(
            country_name_index(database_path),
            client,
            sleep=deps.sleep,
            monotonic=deps.monotonic,
        )
        if settings.sipri_csv_path:
            transfers = adapter.import_from_file(settings.sipri_csv_path)
        else:
            transfers = adapter.fetch_from_url()
    result = upsert_arms_transfers(database_path, transfers)
    return SyncResult(fetched=len(transfers), upserted=result.upserted)


def default_deps(config: Config) -> RunnerDeps:
    return RunnerDeps(
        client_factory=lambda: httpx.Client(timeout=config.http_timeout_seconds),
        overpass_client_factory=overpass_client,
    )


def build_runners(
    config: Config,
    settings: Settings,
    deps: RunnerDeps | None = None,
) -> dict[AdapterKind, Runner]:
    """Build one runner per adapter kind from the current settings."""
    deps = deps or default_deps(config)
    geojson_path = settings.natural_earth_path or config.natural_earth_path
    return {
        AdapterKind.NATURAL_EARTH: lambda db: run_natural_earth(db, geojson_path),
        AdapterKind.ACLED: lambda db: run_acled(db, config, settings, deps),
        AdapterKind.UCDP: lambda db: run_ucdp(db, settings, deps),
        AdapterKind.WORLDBANK: lambda db: run_worldbank(db, deps),
        AdapterKind.OVERPASS: lambda db: run_overpass(db, geojson_path, deps),
        AdapterKind.CIA_FACTBOOK: lambda db: run_factbook(db, deps),
        AdapterKind.SIPRI: lambda db: run_sipri(db, settings, deps),
    }
