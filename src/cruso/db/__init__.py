"""Database layer for Cruso.

SQLite access with async operations (aiosqlite).

Usage:
    from cruso.db import DatabaseStore

    store = DatabaseStore("data/cruso.db")
    await store.initialize()
    await store.set_allowed_entries(["ada@example.com"])
"""

from cruso.db.models import SCHEMA_VERSION, init_database, verify_schema
from cruso.db.store import DatabaseStore, StoredMessage

__all__ = [
    "SCHEMA_VERSION",
    "DatabaseStore",
    "StoredMessage",
    "init_database",
    "verify_schema",
]
