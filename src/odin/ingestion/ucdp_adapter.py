"""UCDP GED source adapter: georeferenced conflict events, no auth required."""

from __future__ import annotations

import logging
import time
from typing import Callable, Mapping

import httpx

from odin.errors import FetchError
from odin.ingestion.adapter import AdapterDescriptor, Cursor, FetchPageResult, SourceAdapter
from odin.ingestion.records import ConflictEvent, float_or_zero, int_or_zero

logger = logging.getLogger(__name__)

UCDP_API_BASE = "https://ucdpapi.pcr.uu.se/api/gedevents/25.1"
PAGE_SIZE = 1000

_VIOLENCE_TYPES = {
    1: "State-based conflict",
    2: "Non-state conflict",
    3: "One-sided violence",
}


class UcdpAdapter(SourceAdapter[dict, ConflictEvent]):
    """Adapter for the UCDP Georeferenced Event Dataset API.

    UCDP reports countries by name only; `country_index` maps lower-cased
    names to ISO3 and is normally built from the countries table.
    """

    descriptor = AdapterDescriptor(name="ucdp", base_url=UCDP_API_BASE, min_interval=0.5)

    def __init__(
        self,
        country_index: Mapping[str, str] | None = None,
        api_key: str = "",
        client: httpx.Client | None = None,
        *,
        sleep: Callable[[float], None] = time.sleep,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        super().__init__(client, sleep=sleep, monotonic=monotonic)
        self._country_index = {k.lower(): v for k, v in (country_index or {}).items()}
        self._api_key = api_key

    def fetch_page(self, cursor: Cursor) -> FetchPageResult[dict]:
        page = int(cursor.get("page", 1))
        params: dict[str, object] = {"pagesize": PAGE_SIZE, "page": page}
        if self._api_key:
            params["key"] = self._api_key

        body = self._get_json(self.descriptor.base_url, params=params)
        if not isinstance(body, dict):
            raise FetchError(f"UCDP returned an unexpected payload on page {page}")
        data = body.get("Result") or []
        total_pages = int_or_zero(body.get("totalpages")) or 1
        return FetchPageResult(
            data=data,
            has_more=page < total_pages,
            next_cursor={"page": page + 1},
        )

    def resolve_iso3(self, country: str | None) -> str:
        if not country:
            return ""
        return self._country_index.get(country.strip().lower(), "")

    def normalize(self, raw: dict) -> ConflictEvent:
        country = raw.get("country") or ""
        return ConflictEvent(
            id=f"ucdp_{raw['id']}" if raw.get("id") is not None else "",
            iso3=self.resolve_iso3(country),
            event_date=raw.get("date_start") or "",
            event_type=_VIOLENCE_TYPES.get(raw.get("type_of_violence"), "Unknown"),
            sub_event_type=raw.get("conflict_name"),
            actor1=raw.get("side_a"),
            actor2=raw.get("side_b") or None,
            location=raw.get("where_description") or raw.get("adm_1") or country,
            latitude=float_or_zero(raw.get("latitude")),
            longitude=float_or_zero(raw.get("longitude")),
            fatalities=int_or_zero(raw.get("best")),
            notes=raw.get("source_headline") or None,
            source=raw.get("source_office") or "UCDP",
            source_scale=None,
        )

    def fetch_all_events(self) -> list[ConflictEvent]:
        logger.info("UCDP: starting conflict event sync")
        events = self.fetch_all({"page": 1})
        logger.info("UCDP: fetched %d conflict events", len(events))
        return events
