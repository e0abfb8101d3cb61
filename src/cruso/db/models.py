"""SQLite database schema and initialization for Cruso.

Tables:
- users: People who have onboarded with Cruso
- exchange_messages: Every inbound/outbound message, grouped by exchange
- allowed_list: Addresses Cruso may engage with

Usage:
    from cruso.db.models import init_database

    await init_database("data/cruso.db")
"""

import stat
from pathlib import Path

import aiosqlite

from cruso.core.errors import DatabaseError
from cruso.core.logging import get_logger

logger = get_logger(__name__)

SCHEMA_VERSION = 1

REQUIRED_TABLES = ("users", "exchange_messages", "allowed_list")

SCHEMA_SQL = """
PRAGMA journal_mode=WAL;

CREATE TABLE IF NOT EXISTS users (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    email TEXT NOT NULL UNIQUE,             -- normalized (lowercase) address
    created_at DATETIME DEFAULT CURRENT_TIMESTAMP
);

-- One row per message in an exchange (thread)
CREATE TABLE IF NOT EXISTS exchange_messages (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    message_id TEXT NOT NULL UNIQUE,        -- provider message id
    exchange_id TEXT NOT NULL,              -- thread id shared by the exchange
    owner_id INTEGER REFERENCES users(id),  -- user the exchange acts for, if known
    previous_message_id TEXT,
    sender TEXT NOT NULL,
    recipients_json TEXT NOT NULL DEFAULT '[]',
    subject TEXT,
    body TEXT,
    direction TEXT NOT NULL DEFAULT 'inbound',  -- 'inbound' or 'outbound'
    received_at DATETIME NOT NULL
);

-- Exchange history is always read in chronological order
CREATE INDEX IF NOT EXISTS idx_exchange_messages_exchange
    ON exchange_messages(exchange_id, received_at ASC, id ASC);

CREATE INDEX IF NOT EXISTS idx_exchange_messages_sender ON exchange_messages(sender);

CREATE TABLE IF NOT EXISTS allowed_list (
    email TEXT PRIMARY KEY,                 -- normalized (lowercase) address
    allowed INTEGER NOT NULL DEFAULT 1,
    updated_at DATETIME DEFAULT CURRENT_TIMESTAMP
);
"""


async def init_database(db_path: str | Path) -> None:
    """Initialize the SQLite database with schema and WAL mode.

    Raises:
        DatabaseError: If database initialization fails
    """
    db_path = Path(db_path)
    db_path.parent.mkdir(parents=True, exist_ok=True)

    try:
        async with aiosqlite.connect(db_path) as db:
            await db.execute("PRAGMA journal_mode=WAL")
            cursor = await db.execute("PRAGMA journal_mode")
            mode = await cursor.fetchone()
            if mode and mode[0].lower() != "wal":
                logger.warning("wal_mode_not_enabled", actual=mode[0], db_path=str(db_path))

            await db.executescript(SCHEMA_SQL)
            await db.commit()

        # The store holds email bodies; owner read/write only
        db_path.chmod(stat.S_IRUSR | stat.S_IWUSR)
        for suffix in ("-wal", "-shm"):
            wal_file = db_path.with_suffix(db_path.suffix + suffix)
            if wal_file.exists():
                wal_file.chmod(stat.S_IRUSR | stat.S_IWUSR)

        logger.info("database_initialized", db_path=str(db_path), schema_version=SCHEMA_VERSION)

    except aiosqlite.Error as e:
        logger.error("database_init_failed", db_path=str(db_path), error=str(e))
        raise DatabaseError(
            f"Failed to initialize database at {db_path}: {e}. "
            "Check that the directory is writable and the database file is not corrupted."
        ) from e


async def verify_schema(db_path: str | Path) -> bool:
    """Check that every required table exists."""
    try:
        async with aiosqlite.connect(db_path) as db:
            cursor = await db.execute("SELECT name FROM sqlite_master WHERE type='table'")
            existing = {row[0] for row in await cursor.fetchall()}
    except aiosqlite.Error as e:
        logger.error("schema_verification_failed", db_path=str(db_path), error=str(e))
        return False

    missing = set(REQUIRED_TABLES) - existing
    if missing:
        logger.warning("missing_database_tables", missing=sorted(missing), db_path=str(db_path))
        return False
    return True
