"""Tests for odin.ingestion.worldbank_adapter — World Bank indicators adapter."""

from __future__ import annotations

from datetime import datetime, timezone

import httpx
import pytest

from odin.errors import FetchError
from odin.ingestion.worldbank_adapter import WorldBankAdapter


def _row(iso3="FRA", year="2020", value=1.9):
    return {
        "countryiso3code": iso3,
        "indicator": {"id": "MS.MIL.XPND.GD.ZS", "value": "Military expenditure (% of GDP)"},
        "date": year,
        "value": value,
    }


def _adapter(handler):
    client = httpx.Client(transport=httpx.MockTransport(handler))
    return WorldBankAdapter(
        client,
        sleep=lambda s: None,
        monotonic=lambda: 0.0,
        clock=lambda: datetime(2025, 6, 1, tzinfo=timezone.utc),
    )


class TestWorldBankAdapter:
    def test_fetch_indicator_pages_through_meta(self):
        requests = []

        def handler(request):
            requests.append(request)
            page = int(request.url.params["page"])
            meta = {"page": page, "pages": 2, "total": 2}
            return httpx.Response(200, json=[meta, [_row(year=str(2018 + page))]])

        records = _adapter(handler).fetch_indicator("MS.MIL.XPND.GD.ZS")

        assert [r.year for r in records] == [2019, 2020]
        assert requests[0].url.path.endswith("/country/all/indicator/MS.MIL.XPND.GD.ZS")
        assert requests[0].url.params["date"] == "2010:2025"
        assert requests[1].url.params["page"] == "2"

    def test_empty_data_block_ends_pagination(self):
        adapter = _adapter(lambda r: httpx.Response(200, json=[{"page": 1, "pages": 0}, None]))
        assert adapter.fetch_indicator("SP.POP.TOTL") == []

    def test_error_message_payload_is_fetch_error(self):
        adapter = _adapter(
            lambda r: httpx.Response(200, json=[{"message": [{"id": "120", "value": "Invalid value"}]}])
        )
        with pytest.raises(FetchError):
            adapter.fetch_page({"indicator": "BAD.CODE"})

    def test_normalize(self):
        adapter = _adapter(lambda r: httpx.Response(200))
        indicator = adapter.normalize(_row(value=None))
        assert indicator.iso3 == "FRA"
        assert indicator.indicator_code == "MS.MIL.XPND.GD.ZS"
        assert indicator.year == 2020
        assert indicator.value is None

    def test_normalize_drops_non_numeric_year(self):
        adapter = _adapter(lambda r: httpx.Response(200))
        assert adapter.normalize(_row(year="2020Q1")) is None

    @pytest.mark.parametrize("value", ["", "n/a", "NaN", {"nested": 1}])
    def test_normalize_blank_or_junk_value_is_none(self, value):
        adapter = _adapter(lambda r: httpx.Response(200))
        assert adapter.normalize(_row(value=value)).value is None

    def test_string_value_is_parsed(self):
        adapter = _adapter(lambda r: httpx.Response(200))
        assert adapter.normalize(_row(value="2.5")).value == pytest.approx(2.5)

    def test_junk_value_does_not_abort_indicator(self):
        def handler(request):
            meta = {"page": 1, "pages": 1}
            return httpx.Response(200, json=[meta, [_row("FRA", value=""), _row("DEU", value=1.3)]])

        records = _adapter(handler).fetch_indicator("MS.MIL.XPND.GD.ZS")
        assert [(r.iso3, r.value) for r in records] == [("FRA", None), ("DEU", 1.3)]
