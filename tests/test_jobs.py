"""Tests for odin.jobs — adapter runners."""

from __future__ import annotations

import json
from datetime import datetime, timezone

import httpx
import pytest

from odin.config import Config
from odin.errors import FetchError, PartialSyncError
from odin.ingestion.records import ConflictEvent, Country
from odin.ingestion.registry import AdapterKind, get_adapter_class, register_adapter
from odin.ingestion.ucdp_adapter import UcdpAdapter
from odin.ingestion.worldbank_adapter import INDICATOR_CODES
from odin.jobs import (
    RunnerDeps,
    build_runners,
    effective_acled_credentials,
    run_acled,
    run_natural_earth,
    run_overpass,
    run_sipri,
    run_worldbank,
)
from odin.storage.schema import init_db
from odin.storage.settings import Settings, get_settings
from odin.storage.sync_log import log_sync_complete, log_sync_start
from odin.storage.upsert import count_rows, upsert_countries

NOW = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture()
def db_path(tmp_path):
    path = str(tmp_path / "test.db")
    init_db(path)
    upsert_countries(
        path,
        [
            Country(iso3="FRA", iso2="FR", name="France"),
            Country(iso3="IND", iso2="IN", name="India"),
        ],
    )
    return path


@pytest.fixture()
def geojson_path(tmp_path):
    collection = {
        "type": "FeatureCollection",
        "features": [
            {
                "type": "Feature",
                "properties": {"ISO_A3": "FRA", "ISO_A2": "FR", "NAME": "France", "POP_EST": 68e6},
                "geometry": {
                    "type": "Polygon",
                    "coordinates": [[[-5, 42], [8, 42], [8, 51], [-5, 51], [-5, 42]]],
                },
            }
        ],
    }
    path = tmp_path / "ne.geojson"
    path.write_text(json.dumps(collection), encoding="utf-8")
    return str(path)


def _deps(handler) -> RunnerDeps:
    def factory():
        return httpx.Client(transport=httpx.MockTransport(handler))

    return RunnerDeps(
        client_factory=factory,
        overpass_client_factory=factory,
        sleep=lambda s: None,
        monotonic=lambda: 0.0,
        clock=lambda: NOW,
    )


def _config(db_path, **overrides) -> Config:
    return Config(database_path=db_path, **overrides)


class FakeAcled:
    def __init__(self, data_status=200):
        self.data_status = data_status
        self.data_requests: list[httpx.Request] = []

    def __call__(self, request):
        if request.url.path.endswith("/oauth/token"):
            return httpx.Response(
                200, json={"access_token": "fresh", "refresh_token": "r", "expires_in": 86400}
            )
        self.data_requests.append(request)
        if self.data_status != 200:
            return httpx.Response(self.data_status)
        event = {
            "event_id_cnty": "FRA100",
            "iso3": "FRA",
            "event_date": "2025-05-30",
            "event_type": "Protests",
            "latitude": "48.8",
            "longitude": "2.3",
            "fatalities": "0",
        }
        return httpx.Response(200, json={"success": True, "data": [event]})


class TestRunAcled:
    def test_persists_token_and_upserts(self, db_path):
        server = FakeAcled()
        settings = Settings(acled_email="a@example.com", acled_password="secret")

        result = run_acled(db_path, _config(db_path), settings, _deps(server))

        assert (result.fetched, result.upserted) == (1, 1)
        assert get_settings(db_path).acled_token.access_token == "fresh"
        assert count_rows(db_path, "conflict_events") == 1

    def test_token_persisted_even_when_fetch_fails(self, db_path):
        server = FakeAcled(data_status=500)
        settings = Settings(acled_email="a@example.com", acled_password="secret")

        with pytest.raises(FetchError):
            run_acled(db_path, _config(db_path), settings, _deps(server))

        assert get_settings(db_path).acled_token.access_token == "fresh"

    def test_watermark_from_last_completed_run(self, db_path):
        log_id = log_sync_start(db_path, "acled", now=datetime(2025, 5, 20, 6, 0, tzinfo=timezone.utc))
        log_sync_complete(db_path, log_id, 1, 1, now=datetime(2025, 5, 20, 6, 5, tzinfo=timezone.utc))
        server = FakeAcled()
        settings = Settings(acled_email="a@example.com", acled_password="secret")

        run_acled(db_path, _config(db_path), settings, _deps(server))

        assert server.data_requests[0].url.params["event_date"] == "2025-05-20"

    def test_environment_credentials_win(self, db_path):
        config = _config(db_path, acled_email="env@example.com", acled_password="env-secret")
        settings = Settings(acled_email="stored@example.com", acled_password="stored-secret")
        assert effective_acled_credentials(config, settings) == ("env@example.com", "env-secret")

    def test_stored_credentials_used_when_environment_empty(self, db_path):
        settings = Settings(acled_email="stored@example.com", acled_password="stored-secret")
        assert effective_acled_credentials(_config(db_path), settings) == (
            "stored@example.com",
            "stored-secret",
        )


class TestRunWorldBank:
    def test_failure_part_way_reports_committed_counts(self, db_path):
        def handler(request):
            code = request.url.path.rsplit("/", 1)[-1]
            if code != INDICATOR_CODES[0]:
                return httpx.Response(500)
            row = {
                "countryiso3code": "FRA",
                "indicator": {"id": code, "value": "Military expenditure"},
                "date": "2020",
                "value": 1.9,
            }
            aggregate = {**row, "countryiso3code": "WLD"}
            return httpx.Response(200, json=[{"page": 1, "pages": 1}, [row, aggregate]])

        with pytest.raises(PartialSyncError) as exc_info:
            run_worldbank(db_path, _deps(handler))

        assert exc_info.value.fetched == 2
        assert exc_info.value.upserted == 1
        assert count_rows(db_path, "wb_indicators") == 1

    def test_all_indicators_succeed(self, db_path):
        def handler(request):
            return httpx.Response(200, json=[{"page": 1, "pages": 0}, None])

        result = run_worldbank(db_path, _deps(handler))
        assert (result.fetched, result.upserted) == (0, 0)


def test_run_natural_earth_seeds_countries(tmp_path, geojson_path):
    path = str(tmp_path / "fresh.db")
    init_db(path)
    result = run_natural_earth(path, geojson_path)
    assert (result.fetched, result.upserted) == (1, 1)
    assert count_rows(path, "countries") == 1


def test_run_overpass_geocodes_installations(db_path, geojson_path):
    elements = [
        {"type": "node", "id": 1, "lat": 48.0, "lon": 2.0, "tags": {"military": "base"}},
        {"type": "node", "id": 2, "lat": -30.0, "lon": -30.0, "tags": {"military": "base"}},
    ]
    deps = _deps(lambda r: httpx.Response(200, json={"elements": elements}))

    result = run_overpass(db_path, geojson_path, deps)

    assert result.fetched == 2
    assert result.upserted == 1
    assert count_rows(db_path, "military_installations") == 1


def test_run_sipri_from_local_file(db_path, tmp_path):
    csv_path = tmp_path / "sipri.csv"
    csv_path.write_text(
        "Supplier,Recipient,Year(s) of deliveries,Weapon designation,Weapon description\n"
        "France,India,2020,Rafale,FGA aircraft\n",
        encoding="utf-8",
    )
    deps = _deps(lambda r: pytest.fail("no HTTP expected for a local import"))

    result = run_sipri(db_path, Settings(sipri_csv_path=str(csv_path)), deps)

    assert (result.fetched, result.upserted) == (1, 1)


def test_build_runners_covers_every_kind(db_path):
    runners = build_runners(_config(db_path), Settings(), _deps(lambda r: httpx.Response(500)))
    assert list(runners) == list(AdapterKind)


def test_build_runners_prefers_stored_boundaries_path(tmp_path, geojson_path):
    path = str(tmp_path / "fresh.db")
    init_db(path)
    config = _config(path, natural_earth_path=str(tmp_path / "missing.geojson"))
    runners = build_runners(config, Settings(natural_earth_path=geojson_path), _deps(lambda r: None))

    result = runners[AdapterKind.NATURAL_EARTH](path)

    assert result.upserted == 1


class _CannedUcdp(UcdpAdapter):
    """Registered in place of the real UCDP class; never touches HTTP."""

    def fetch_all_events(self):
        return [
            ConflictEvent(id="ucdp_1", iso3=self.resolve_iso3("France"), event_date="2025-01-01",
                          event_type="State-based conflict", sub_event_type=None, actor1=None,
                          actor2=None, location=None, latitude=0.0, longitude=0.0),
        ]


def test_runner_builds_adapter_from_registry(db_path):
    original = get_adapter_class(AdapterKind.UCDP)
    register_adapter(AdapterKind.UCDP, _CannedUcdp)
    try:
        runners = build_runners(
            _config(db_path), Settings(), _deps(lambda r: pytest.fail("no HTTP expected"))
        )
        result = runners[AdapterKind.UCDP](db_path)
    finally:
        register_adapter(AdapterKind.UCDP, original)

    assert (result.fetched, result.upserted) == (1, 1)
    assert count_rows(db_path, "conflict_events") == 1
