"""Ingestion: source adapters, the pagination engine, and normalized records."""

from odin.ingestion.acled_adapter import AcledAdapter
from odin.ingestion.factbook_adapter import FactbookAdapter
from odin.ingestion.natural_earth_adapter import NaturalEarthAdapter
from odin.ingestion.overpass_adapter import OverpassAdapter
from odin.ingestion.registry import AdapterKind, register_adapter
from odin.ingestion.sipri_adapter import SipriAdapter
from odin.ingestion.ucdp_adapter import UcdpAdapter
from odin.ingestion.worldbank_adapter import WorldBankAdapter

register_adapter(AdapterKind.NATURAL_EARTH, NaturalEarthAdapter)
register_adapter(AdapterKind.ACLED, AcledAdapter)
register_adapter(AdapterKind.UCDP, UcdpAdapter)
register_adapter(AdapterKind.WORLDBANK, WorldBankAdapter)
register_adapter(AdapterKind.OVERPASS, OverpassAdapter)
register_adapter(AdapterKind.CIA_FACTBOOK, FactbookAdapter)
register_adapter(AdapterKind.SIPRI, SipriAdapter)
