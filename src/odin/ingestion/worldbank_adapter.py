"""World Bank source adapter: development and military indicators for all countries."""

from __future__ import annotations

import logging
import time
from datetime import datetime
from typing import Callable

import httpx

from odin.errors import FetchError
from odin.ingestion.acled_auth import utcnow
from odin.ingestion.adapter import AdapterDescriptor, Cursor, FetchPageResult, SourceAdapter
from odin.ingestion.records import Indicator, float_or_none

logger = logging.getLogger(__name__)

WORLD_BANK_API_BASE = "https://api.worldbank.org/v2"
PER_PAGE = 1000
FIRST_YEAR = 2010

INDICATOR_CODES = (
    "MS.MIL.XPND.GD.ZS",  # Military expenditure (% of GDP)
    "MS.MIL.XPND.CD",  # Military expenditure (current USD)
    "MS.MIL.TOTL.P1",  # Armed forces personnel, total
    "SP.POP.TOTL",  # Population, total
    "NY.GDP.MKTP.CD",  # GDP (current USD)
    "SP.DYN.LE00.IN",  # Life expectancy at birth (years)
)


class WorldBankAdapter(SourceAdapter[dict, Indicator]):
    """Adapter for the World Bank Open Data API v2.

    Each indicator is paginated separately; the cursor carries the
    indicator code and date range along with the page number.
    """

    descriptor = AdapterDescriptor(
        name="worldbank", base_url=WORLD_BANK_API_BASE, min_interval=0.5
    )

    def __init__(
        self,
        client: httpx.Client | None = None,
        *,
        sleep: Callable[[float], None] = time.sleep,
        monotonic: Callable[[], float] = time.monotonic,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        super().__init__(client, sleep=sleep, monotonic=monotonic)
        self._clock = clock

    def default_date_range(self) -> str:
        return f"{FIRST_YEAR}:{self._clock().year}"

    def fetch_page(self, cursor: Cursor) -> FetchPageResult[dict]:
        page = int(cursor.get("page", 1))
        indicator = cursor.get("indicator") or INDICATOR_CODES[0]
        date_range = cursor.get("date") or self.default_date_range()

        body = self._get_json(
            f"{self.descriptor.base_url}/country/all/indicator/{indicator}",
            params={"format": "json", "per_page": PER_PAGE, "date": date_range, "page": page},
        )
        # Errors come back as a one-element list holding a "message" entry.
        if not isinstance(body, list) or len(body) < 2:
            raise FetchError(f"World Bank returned no data block for {indicator} page {page}")
        meta, data = body[0], body[1]
        if not data:
            return FetchPageResult(data=[], has_more=False)
        current = int(meta.get("page") or page)
        return FetchPageResult(
            data=data,
            has_more=current < int(meta.get("pages") or 1),
            next_cursor={"page": current + 1, "indicator": indicator, "date": date_range},
        )

    def normalize(self, raw: dict) -> Indicator | None:
        try:
            year = int(raw.get("date") or "")
        except (TypeError, ValueError):
            return None
        indicator = raw.get("indicator") or {}
        return Indicator(
            iso3=raw.get("countryiso3code") or "",
            indicator_code=indicator.get("id") or "",
            indicator_name=indicator.get("value") or "",
            year=year,
            value=float_or_none(raw.get("value")),
        )

    def fetch_indicator(self, code: str, date_range: str | None = None) -> list[Indicator]:
        """Fetch every page of one indicator."""
        records = self.fetch_all(
            {"page": 1, "indicator": code, "date": date_range or self.default_date_range()}
        )
        logger.info("World Bank: %s returned %d records", code, len(records))
        return records
