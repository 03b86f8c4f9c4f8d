"""CIA World Factbook adapter: country profile fields from the factbook.json mirror."""

from __future__ import annotations

import logging
import re
import time
from datetime import datetime
from typing import Any, Callable, NamedTuple

import httpx

from odin.errors import FetchError
from odin.ingestion.acled_auth import utcnow
from odin.ingestion.adapter import (
    AdapterDescriptor,
    Cursor,
    FetchPageResult,
    SourceAdapter,
    _decode_json,
)
from odin.ingestion.records import CountryProfile

logger = logging.getLogger(__name__)

FACTBOOK_BASE_URL = "https://raw.githubusercontent.com/factbook/factbook.json/master"

_AREA_RE = re.compile(r"([\d,]+)\s*sq\s*km", re.IGNORECASE)


class SlugEntry(NamedTuple):
    iso3: str
    region: str
    slug: str


# factbook.json lays files out as {region}/{slug}.json
ISO3_SLUG_MAP: tuple[SlugEntry, ...] = (
    SlugEntry("USA", "north-america", "us"),
    SlugEntry("CAN", "north-america", "ca"),
    SlugEntry("MEX", "north-america", "mx"),
    SlugEntry("GBR", "europe", "uk"),
    SlugEntry("FRA", "europe", "fr"),
    SlugEntry("DEU", "europe", "gm"),
    SlugEntry("ITA", "europe", "it"),
    SlugEntry("ESP", "europe", "sp"),
    SlugEntry("PRT", "europe", "po"),
    SlugEntry("NLD", "europe", "nl"),
    SlugEntry("BEL", "europe", "be"),
    SlugEntry("CHE", "europe", "sz"),
    SlugEntry("AUT", "europe", "au"),
    SlugEntry("POL", "europe", "pl"),
    SlugEntry("SWE", "europe", "sw"),
    SlugEntry("NOR", "europe", "no"),
    SlugEntry("DNK", "europe", "da"),
    SlugEntry("FIN", "europe", "fi"),
    SlugEntry("GRC", "europe", "gr"),
    SlugEntry("TUR", "middle-east", "tu"),
    SlugEntry("ROU", "europe", "ro"),
    SlugEntry("UKR", "europe", "up"),
    SlugEntry("RUS", "central-asia", "rs"),
    SlugEntry("CHN", "east-n-southeast-asia", "ch"),
    SlugEntry("JPN", "east-n-southeast-asia", "ja"),
    SlugEntry("KOR", "east-n-southeast-asia", "ks"),
    SlugEntry("PRK", "east-n-southeast-asia", "kn"),
    SlugEntry("IND", "south-asia", "in"),
    SlugEntry("PAK", "south-asia", "pk"),
    SlugEntry("BGD", "south-asia", "bg"),
    SlugEntry("LKA", "south-asia", "ce"),
    SlugEntry("IDN", "east-n-southeast-asia", "id"),
    SlugEntry("MYS", "east-n-southeast-asia", "my"),
    SlugEntry("THA", "east-n-southeast-asia", "th"),
    SlugEntry("VNM", "east-n-southeast-asia", "vm"),
    SlugEntry("PHL", "east-n-southeast-asia", "rp"),
    SlugEntry("MMR", "east-n-southeast-asia", "bm"),
    SlugEntry("TWN", "east-n-southeast-asia", "tw"),
    SlugEntry("SGP", "east-n-southeast-asia", "sn"),
    SlugEntry("AUS", "australia-oceania", "as"),
    SlugEntry("NZL", "australia-oceania", "nz"),
    SlugEntry("BRA", "south-america", "br"),
    SlugEntry("ARG", "south-america", "ar"),
    SlugEntry("COL", "south-america", "co"),
    SlugEntry("CHL", "south-america", "ci"),
    SlugEntry("PER", "south-america", "pe"),
    SlugEntry("VEN", "south-america", "ve"),
    SlugEntry("EGY", "africa", "eg"),
    SlugEntry("ZAF", "africa", "sf"),
    SlugEntry("NGA", "africa", "ni"),
    SlugEntry("KEN", "africa", "ke"),
    SlugEntry("ETH", "africa", "et"),
    SlugEntry("GHA", "africa", "gh"),
    SlugEntry("TZA", "africa", "tz"),
    SlugEntry("DZA", "africa", "ag"),
    SlugEntry("MAR", "africa", "mo"),
    SlugEntry("SAU", "middle-east", "sa"),
    SlugEntry("IRN", "middle-east", "ir"),
    SlugEntry("IRQ", "middle-east", "iz"),
    SlugEntry("ISR", "middle-east", "is"),
    SlugEntry("ARE", "middle-east", "ae"),
    SlugEntry("QAT", "middle-east", "qa"),
    SlugEntry("KWT", "middle-east", "ku"),
    SlugEntry("JOR", "middle-east", "jo"),
    SlugEntry("LBN", "middle-east", "le"),
    SlugEntry("SYR", "middle-east", "sy"),
    SlugEntry("AFG", "south-asia", "af"),
    SlugEntry("KAZ", "central-asia", "kz"),
    SlugEntry("UZB", "central-asia", "uz"),
)


def _text(section: Any, *path: str) -> str:
    node = section
    for key in path:
        if not isinstance(node, dict):
            return ""
        node = node.get(key)
    node = node.get("text") if isinstance(node, dict) else None
    return node.strip() if isinstance(node, str) else ""


def parse_area(text: str) -> float | None:
    """Extract square kilometres from text like "total: 9,833,517 sq km"."""
    match = _AREA_RE.search(text or "")
    if not match:
        return None
    return float(match.group(1).replace(",", ""))


def parse_capital(text: str) -> str | None:
    """First segment of the capital name, without annotations."""
    if not text:
        return None
    capital = text.split(";")[0].strip().split("\n")[0].strip()
    return capital or None


class FactbookAdapter(SourceAdapter[dict, CountryProfile]):
    """Adapter for country profiles from the factbook.json GitHub mirror.

    One country per page; the cursor's `index` walks ISO3_SLUG_MAP. A
    country whose file is missing (HTTP 404) is skipped.
    """

    descriptor = AdapterDescriptor(
        name="cia-factbook", base_url=FACTBOOK_BASE_URL, min_interval=0.5
    )

    def __init__(
        self,
        client: httpx.Client | None = None,
        *,
        entries: tuple[SlugEntry, ...] = ISO3_SLUG_MAP,
        sleep: Callable[[float], None] = time.sleep,
        monotonic: Callable[[], float] = time.monotonic,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        super().__init__(client, sleep=sleep, monotonic=monotonic)
        self._entries = entries
        self._clock = clock

    def fetch_page(self, cursor: Cursor) -> FetchPageResult[dict]:
        index = int(cursor.get("index", 0))
        if index >= len(self._entries):
            return FetchPageResult(data=[], has_more=False)

        entry = self._entries[index]
        url = f"{self.descriptor.base_url}/{entry.region}/{entry.slug}.json"
        has_more = index + 1 < len(self._entries)
        next_cursor = {"index": index + 1}

        response = self._request("GET", url, check=False)
        if response.status_code == 404:
            logger.warning("Factbook: no profile for %s at %s", entry.iso3, url)
            return FetchPageResult(data=[], has_more=has_more, next_cursor=next_cursor)
        self._check_status(response)
        body = _decode_json(self.name, response)
        if not isinstance(body, dict):
            raise FetchError(f"Factbook returned an unexpected payload for {entry.iso3} at {url}")
        raw = {
            "iso3": entry.iso3,
            "slug": entry.slug,
            "Government": body.get("Government"),
            "Geography": body.get("Geography"),
        }
        return FetchPageResult(data=[raw], has_more=has_more, next_cursor=next_cursor)

    def normalize(self, raw: dict) -> CountryProfile:
        gov = raw.get("Government")
        geo = raw.get("Geography")
        return CountryProfile(
            iso3=raw["iso3"],
            area_sq_km=parse_area(_text(geo, "Area", "total")),
            capital=parse_capital(_text(gov, "Capital", "name")),
            government_type=_text(gov, "Government type") or None,
            last_updated=self._clock().isoformat(),
        )

    def fetch_all_countries(self) -> list[CountryProfile]:
        logger.info("Factbook: fetching %d country profiles", len(self._entries))
        profiles = self.fetch_all({"index": 0})
        logger.info("Factbook: fetched %d profiles", len(profiles))
        return profiles
