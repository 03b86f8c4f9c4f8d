"""Overpass (OpenStreetMap) adapter: military installations from one global query."""

from __future__ import annotations

import logging
import time
from typing import Callable

import httpx

from odin.errors import FetchError
from odin.ingestion.adapter import (
    AdapterDescriptor,
    Cursor,
    FetchPageResult,
    RetryPolicy,
    SourceAdapter,
    _decode_json,
)
from odin.ingestion.records import MilitaryInstallation

logger = logging.getLogger(__name__)

OVERPASS_URL = "https://overpass-api.de/api/interpreter"

# Must exceed the server-side [timeout:300].
CLIENT_TIMEOUT_SECONDS = 360.0
OVERLOAD_COOLDOWN_SECONDS = 60.0

GLOBAL_MILITARY_QUERY = """[out:json][timeout:300][maxsize:536870912];
(
  node["military"~"^(base|airfield|naval_base|barracks|training_area|range|checkpoint|fort|camp|bunker|launchpad|storage)$"];
  way["military"~"^(base|airfield|naval_base|barracks|training_area|range|fort|camp)$"];
  relation["military"~"^(base|airfield|naval_base|training_area)$"];
);
out center tags;"""


def overpass_client() -> httpx.Client:
    """HTTP/1.1-only client with a long read timeout.

    overpass-api.de misbehaves when clients negotiate HTTP/2.
    """
    return httpx.Client(http2=False, timeout=httpx.Timeout(CLIENT_TIMEOUT_SECONDS))


class OverpassAdapter(SourceAdapter[dict, MilitaryInstallation]):
    """Adapter for military elements from the Overpass API.

    Not paginated: one long-running POST returns every element. HTTP
    429/504 from the server mean it is overloaded and are retried after
    a cooldown rather than the ordinary backoff.
    """

    descriptor = AdapterDescriptor(
        name="overpass",
        base_url=OVERPASS_URL,
        min_interval=0.0,
        retry=RetryPolicy(overload_cooldown=OVERLOAD_COOLDOWN_SECONDS),
    )

    def __init__(
        self,
        reverse_geocode: Callable[[float, float], str] | None = None,
        client: httpx.Client | None = None,
        *,
        sleep: Callable[[float], None] = time.sleep,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        super().__init__(client, sleep=sleep, monotonic=monotonic)
        self._reverse_geocode = reverse_geocode

    @property
    def client(self) -> httpx.Client:
        if self._client is None:
            self._client = overpass_client()
        return self._client

    def fetch_page(self, cursor: Cursor) -> FetchPageResult[dict]:
        logger.info(
            "Overpass: issuing global military query (timeout %ds)",
            int(CLIENT_TIMEOUT_SECONDS),
        )
        response = self._request(
            "POST",
            self.descriptor.base_url,
            data={"data": GLOBAL_MILITARY_QUERY},
            timeout=CLIENT_TIMEOUT_SECONDS,
        )
        body = _decode_json(self.name, response)
        if not isinstance(body, dict):
            raise FetchError("Overpass returned an unexpected payload")
        elements = body.get("elements") or []
        logger.info("Overpass: received %d elements", len(elements))
        return FetchPageResult(data=elements, has_more=False)

    def normalize(self, raw: dict) -> MilitaryInstallation | None:
        center = raw.get("center") or {}
        lat = raw.get("lat", center.get("lat"))
        lon = raw.get("lon", center.get("lon"))
        if lat is None or lon is None or raw.get("id") is None:
            return None
        tags = raw.get("tags") or {}
        iso3 = self._reverse_geocode(lat, lon) if self._reverse_geocode else ""
        return MilitaryInstallation(
            id=f"osm_{raw.get('type', 'node')}_{raw['id']}",
            iso3=iso3,
            name=tags.get("name"),
            type=tags.get("military") or "unknown",
            latitude=float(lat),
            longitude=float(lon),
            operator=tags.get("operator"),
            osm_tags=dict(tags),
        )

    def fetch_all_installations(self) -> list[MilitaryInstallation]:
        """Run the global query and return installations deduplicated by id."""
        seen: set[str] = set()
        unique: list[MilitaryInstallation] = []
        for installation in self.fetch_all():
            if installation.id in seen:
                continue
            seen.add(installation.id)
            unique.append(installation)
        logger.info("Overpass: %d unique installations", len(unique))
        return unique
