"""SIPRI adapter: arms transfers from TIV CSV exports (local file or download)."""

from __future__ import annotations

import csv
import hashlib
import io
import logging
import re
import time
from pathlib import Path
from typing import Callable, Mapping

import httpx

from odin.errors import OdinError
from odin.ingestion.adapter import AdapterDescriptor, Cursor, FetchPageResult, SourceAdapter
from odin.ingestion.records import ArmsTransfer

logger = logging.getLogger(__name__)

SIPRI_EXPORT_URL = "https://armstransfers.sipri.org/armstransfers/html/export_values.php"
CHUNK_SIZE = 1000

_YEAR_RE = re.compile(r"(\d{4})")

# SIPRI spellings that differ from Natural Earth country names.
COUNTRY_ALIASES = {
    "united states": "USA",
    "usa": "USA",
    "united kingdom": "GBR",
    "uk": "GBR",
    "russia": "RUS",
    "soviet union": "RUS",
    "south korea": "KOR",
    "korea south": "KOR",
    "north korea": "PRK",
    "korea north": "PRK",
    "viet nam": "VNM",
    "vietnam": "VNM",
    "turkiye": "TUR",
    "turkey": "TUR",
    "czechia": "CZE",
    "czech republic": "CZE",
    "dr congo": "COD",
    "congo": "COG",
    "uae": "ARE",
    "united arab emirates": "ARE",
    "cote d'ivoire": "CIV",
    "bosnia-herzegovina": "BIH",
    "macedonia": "MKD",
    "north macedonia": "MKD",
    "eswatini": "SWZ",
    "swaziland": "SWZ",
    "myanmar": "MMR",
    "iran": "IRN",
    "syria": "SYR",
    "laos": "LAO",
    "taiwan": "TWN",
}

# Accepted header spellings per field, in priority order.
_COLUMNS = {
    "supplier": ("supplier",),
    "recipient": ("recipient",),
    "year": ("year", "year(s) of deliveries", "order year"),
    "weapon_category": ("weapon category", "weapon designation"),
    "weapon_description": ("weapon description", "description"),
    "quantity": ("quantity", "no. delivered", "no. ordered"),
    "tiv_delivered": ("tiv delivered", "tiv deal", "tiv of delivered weapons"),
    "order_date": ("order date",),
    "delivery_date": ("delivery date",),
    "status": ("status",),
    "comments": ("comments",),
}


def transfer_id(supplier: str, recipient: str, year: int, category: str, description: str) -> str:
    """Deterministic id so re-importing the same export does not duplicate rows."""
    raw = f"{supplier}|{recipient}|{year}|{category}|{description}".lower()
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()[:36]


def parse_number(value: str | None) -> float | None:
    """Parse "1,234" style numbers; blanks and ".." are missing values."""
    if value is None:
        return None
    cleaned = value.replace(",", "").strip()
    if not cleaned or cleaned == "..":
        return None
    try:
        return float(cleaned)
    except ValueError:
        return None


def parse_csv(text: str) -> list[dict[str, str]]:
    """Parse a SIPRI export into rows keyed by lower-cased header.

    Exports carry preamble lines before the header; the header is the first
    line mentioning a supplier or recipient column.
    """
    lines = text.splitlines()
    start = 0
    for i, line in enumerate(lines):
        lowered = line.lower()
        if "supplier" in lowered or "recipient" in lowered:
            start = i
            break
    body = "\n".join(line for line in lines[start:] if line.strip())
    reader = csv.reader(io.StringIO(body), skipinitialspace=True)
    try:
        header = next(reader)
    except StopIteration:
        return []
    except csv.Error as exc:
        raise OdinError(f"SIPRI CSV header could not be parsed: {exc}") from exc
    keys = [h.strip().lower() for h in header]
    rows: list[dict[str, str]] = []
    try:
        for values in reader:
            row = {key: value.strip() for key, value in zip(keys, values) if key}
            if any(row.values()):
                rows.append(row)
    except csv.Error as exc:
        raise OdinError(f"SIPRI CSV is malformed near line {reader.line_num}: {exc}") from exc
    return rows


def _column(row: Mapping[str, str], field: str) -> str:
    for name in _COLUMNS[field]:
        value = row.get(name)
        if value is not None:
            return value.strip()
    return ""


class SipriAdapter(SourceAdapter[dict, ArmsTransfer]):
    """Adapter for SIPRI arms transfer CSV exports.

    The export is read in full into a buffer and then paged out in chunks
    so normalization goes through the same engine as the HTTP adapters.
    Country names resolve via `country_index` (lower-cased name -> ISO3)
    plus COUNTRY_ALIASES; unresolved names leave the code empty.
    """

    descriptor = AdapterDescriptor(name="sipri", base_url=SIPRI_EXPORT_URL, min_interval=2.0)

    def __init__(
        self,
        country_index: Mapping[str, str] | None = None,
        client: httpx.Client | None = None,
        *,
        sleep: Callable[[float], None] = time.sleep,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        super().__init__(client, sleep=sleep, monotonic=monotonic)
        self._country_index = {k.lower(): v for k, v in (country_index or {}).items()}
        self._rows: list[dict[str, str]] = []

    def resolve_iso3(self, name: str) -> str:
        key = name.strip().lower()
        if not key:
            return ""
        return self._country_index.get(key) or COUNTRY_ALIASES.get(key, "")

    def load_rows(self, rows: list[dict[str, str]]) -> None:
        self._rows = rows

    def fetch_page(self, cursor: Cursor) -> FetchPageResult[dict]:
        page = int(cursor.get("page", 1))
        start = (page - 1) * CHUNK_SIZE
        end = start + CHUNK_SIZE
        return FetchPageResult(
            data=self._rows[start:end],
            has_more=end < len(self._rows),
            next_cursor={"page": page + 1},
        )

    def normalize(self, raw: dict) -> ArmsTransfer:
        supplier = _column(raw, "supplier")
        recipient = _column(raw, "recipient")
        match = _YEAR_RE.search(_column(raw, "year"))
        year = int(match.group(1)) if match else 0
        category = _column(raw, "weapon_category")
        description = _column(raw, "weapon_description")
        return ArmsTransfer(
            id=transfer_id(supplier, recipient, year, category, description),
            supplier_iso3=self.resolve_iso3(supplier),
            recipient_iso3=self.resolve_iso3(recipient),
            year=year,
            weapon_category=category,
            weapon_description=description,
            quantity=parse_number(_column(raw, "quantity")),
            tiv_delivered=parse_number(_column(raw, "tiv_delivered")),
            order_date=_column(raw, "order_date") or None,
            delivery_date=_column(raw, "delivery_date") or None,
            status=_column(raw, "status"),
            comments=_column(raw, "comments") or None,
        )

    def import_from_file(self, path: str | Path) -> list[ArmsTransfer]:
        """Import transfers from a local CSV export."""
        logger.info("SIPRI: importing CSV from %s", path)
        try:
            text = Path(path).read_text(encoding="utf-8-sig")
        except OSError as exc:
            raise OdinError(f"SIPRI CSV could not be read from {path}: {exc}") from exc
        self.load_rows(parse_csv(text))
        logger.info("SIPRI: parsed %d rows from local file", len(self._rows))
        return self.fetch_all({"page": 1})

    def fetch_from_url(self, url: str | None = None) -> list[ArmsTransfer]:
        """Download a CSV export and import it."""
        target = url or self.descriptor.base_url
        logger.info("SIPRI: downloading CSV from %s", target)
        response = self._with_retry(lambda: self._request("GET", target), what="CSV download")
        self.load_rows(parse_csv(response.text))
        logger.info("SIPRI: parsed %d rows from remote CSV", len(self._rows))
        return self.fetch_all({"page": 1})
