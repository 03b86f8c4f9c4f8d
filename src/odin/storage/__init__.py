"""Storage layer: SQLite access, schema, upserts, settings and sync history."""

from odin.storage.connection import get_connection
from odin.storage.schema import init_db

__all__ = ["get_connection", "init_db"]
