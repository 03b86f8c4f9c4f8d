"""Natural Earth adapter: bundled country boundaries, entity seeding and reverse geocoding."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Iterable

import shapely
from shapely.errors import ShapelyError
from shapely.geometry import Point, shape
from shapely.strtree import STRtree

from odin.errors import OdinError
from odin.ingestion.adapter import AdapterDescriptor, Cursor, FetchPageResult, SourceAdapter
from odin.ingestion.records import Country, float_or_none

logger = logging.getLogger(__name__)

DEFAULT_GEOJSON_PATH = "./assets/geojson/ne_countries.geojson"
_INVALID_ISO3 = frozenset({"-99", "-1", ""})
_AREA_TYPES = frozenset({"Polygon", "MultiPolygon"})


class NaturalEarthAdapter(SourceAdapter[dict, Country]):
    """Reads the bundled Natural Earth GeoJSON file.

    The file is parsed once and cached. As a sync source it yields one
    Country per feature with a valid ISO3 code; it also answers
    point-to-country lookups for other adapters through an STRtree of the
    country shapes. A point on a border belongs to the first feature in
    file order that touches it.
    """

    descriptor = AdapterDescriptor(name="natural-earth", base_url="file://")

    def __init__(self, geojson_path: str | Path = DEFAULT_GEOJSON_PATH) -> None:
        super().__init__()
        self._path = Path(geojson_path)
        self._features: list[dict[str, Any]] | None = None
        self._iso3s: list[str] = []
        self._tree: STRtree | None = None

    def load_boundaries(self) -> list[dict[str, Any]]:
        if self._features is not None:
            return self._features
        logger.info("Loading Natural Earth boundaries from %s", self._path)
        try:
            with open(self._path, encoding="utf-8") as f:
                collection = json.load(f)
        except FileNotFoundError as exc:
            raise OdinError(f"Natural Earth boundaries not found at {self._path}") from exc
        except ValueError as exc:
            raise OdinError(f"Natural Earth file {self._path} is not valid GeoJSON") from exc

        features = [
            feature for feature in collection.get("features") or []
            if (feature.get("properties") or {}).get("ISO_A3", "") not in _INVALID_ISO3
        ]
        self._build_index(features)
        self._features = features
        logger.info(
            "Loaded %d Natural Earth features with valid ISO3 codes",
            len(features),
        )
        return features

    def _build_index(self, features: list[dict[str, Any]]) -> None:
        geometries = []
        self._iso3s = []
        for feature in features:
            iso3 = feature["properties"]["ISO_A3"]
            geometry = feature.get("geometry") or {}
            if geometry.get("type") not in _AREA_TYPES:
                continue
            try:
                geom = shape(geometry)
            except (ShapelyError, ValueError, TypeError) as exc:
                logger.warning("Natural Earth: skipping unreadable geometry for %s: %s", iso3, exc)
                continue
            if geom.is_empty:
                continue
            geometries.append(geom)
            self._iso3s.append(iso3)
        self._tree = STRtree(geometries)

    def all_iso3_codes(self) -> list[str]:
        return sorted({f["properties"]["ISO_A3"] for f in self.load_boundaries()})

    # --- Sync source ---

    def fetch_page(self, cursor: Cursor) -> FetchPageResult[dict]:
        return FetchPageResult(data=list(self.load_boundaries()), has_more=False)

    def normalize(self, raw: dict) -> Country:
        props = raw.get("properties") or {}
        gdp_md = float_or_none(props.get("GDP_MD"))
        population = float_or_none(props.get("POP_EST"))
        return Country(
            iso3=props.get("ISO_A3") or "",
            iso2=props.get("ISO_A2") or "",
            name=props.get("NAME") or props.get("NAME_LONG") or "",
            region=props.get("REGION_UN") or props.get("CONTINENT") or "",
            subregion=props.get("SUBREGION") or "",
            population=int(population) if population is not None else None,
            gdp=gdp_md * 1_000_000 if gdp_md is not None else None,
        )

    def fetch_countries(self) -> list[Country]:
        return self.fetch_all()

    # --- Reverse geocoding ---

    def reverse_geocode(self, lat: float, lon: float) -> str:
        """Return the ISO3 code of the country containing the point, or ""."""
        self.load_boundaries()
        hits = self._tree.query(Point(lon, lat), predicate="intersects")
        if len(hits) == 0:
            return ""
        return self._iso3s[int(hits.min())]

    def batch_reverse_geocode(self, points: Iterable[tuple[float, float]]) -> list[str]:
        """Reverse-geocode (lat, lon) pairs, preserving order."""
        coords = [(lon, lat) for lat, lon in points]
        if not coords:
            return []
        self.load_boundaries()
        point_idx, tree_idx = self._tree.query(shapely.points(coords), predicate="intersects")
        first: dict[int, int] = {}
        for p, t in zip(point_idx.tolist(), tree_idx.tolist()):
            if p not in first or t < first[p]:
                first[p] = t
        return [self._iso3s[first[i]] if i in first else "" for i in range(len(coords))]
