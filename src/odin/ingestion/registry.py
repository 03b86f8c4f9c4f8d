"""Adapter registry: the closed set of adapter kinds and their classes."""

from __future__ import annotations

import enum
from typing import TYPE_CHECKING

from odin.errors import UnknownAdapterError

if TYPE_CHECKING:
    from odin.ingestion.adapter import SourceAdapter


class AdapterKind(str, enum.Enum):
    """Every source the engine knows, in the order a full sync runs them.

    Entity seeding comes first so later adapters can resolve country names.
    """

    NATURAL_EARTH = "natural-earth"
    ACLED = "acled"
    UCDP = "ucdp"
    WORLDBANK = "worldbank"
    OVERPASS = "overpass"
    CIA_FACTBOOK = "cia-factbook"
    SIPRI = "sipri"


_REGISTRY: dict[AdapterKind, type[SourceAdapter]] = {}


def register_adapter(kind: AdapterKind, cls: type[SourceAdapter]) -> None:
    """Register the adapter class for a given kind."""
    if cls.descriptor.name != kind.value:
        raise ValueError(f"{cls.__name__} is named {cls.descriptor.name!r}, not {kind.value!r}")
    _REGISTRY[kind] = cls


def get_adapter_class(kind: AdapterKind) -> type[SourceAdapter]:
    """Look up the adapter class for a kind."""
    return _REGISTRY[kind]


def parse_kind(name: str) -> AdapterKind:
    """Map an adapter name to its kind. Raises UnknownAdapterError if not known."""
    try:
        return AdapterKind(name)
    except ValueError:
        known = ", ".join(adapter_names())
        raise UnknownAdapterError(f"Unknown adapter '{name}' (known: {known})") from None


def adapter_names() -> list[str]:
    """All adapter names in run order."""
    return [kind.value for kind in AdapterKind]
