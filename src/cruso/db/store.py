"""Database store for users, exchange messages and the allow-list.

Usage:
    from cruso.db.store import DatabaseStore

    store = DatabaseStore("data/cruso.db")
    await store.initialize()

    user = await store.get_user_by_email("ada@example.com")
    history = await store.get_exchange_messages("thread-123")
"""

from __future__ import annotations

import json
from collections.abc import AsyncIterator, Iterable
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path

import aiosqlite

from cruso.core.errors import DatabaseError
from cruso.core.logging import get_logger
from cruso.db.models import init_database
from cruso.exchange.models import Direction, InboundMessage, User, normalize_address

logger = get_logger(__name__)


@dataclass
class StoredMessage:
    """A message row of an exchange."""

    id: int
    message: InboundMessage
    owner_id: int | None = None

    @property
    def message_id(self) -> str:
        return self.message.message_id

    @property
    def received_at(self) -> datetime:
        return self.message.received_at  # type: ignore[return-value]


def _parse_timestamp(value: str | None) -> datetime | None:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        # CURRENT_TIMESTAMP defaults are UTC without an offset
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


class DatabaseStore:
    """Async CRUD operations over the Cruso SQLite database.

    Attributes:
        db_path: Path to the SQLite database file
    """

    def __init__(self, db_path: str | Path):
        self.db_path = Path(db_path)
        self._initialized = False

    async def initialize(self) -> None:
        """Create tables if needed. Must be called before any other operation."""
        await init_database(self.db_path)
        self._initialized = True

    @asynccontextmanager
    async def _db(self) -> AsyncIterator[aiosqlite.Connection]:
        """Configured connection: busy timeout, foreign keys, WAL-friendly sync mode."""
        async with aiosqlite.connect(self.db_path) as db:
            await db.execute("PRAGMA busy_timeout = 10000")
            await db.execute("PRAGMA foreign_keys = ON")
            await db.execute("PRAGMA synchronous = NORMAL")
            await db.execute("PRAGMA temp_store = MEMORY")
            db.row_factory = aiosqlite.Row
            yield db

    # =========================================================================
    # Users
    # =========================================================================

    async def get_user_by_email(self, email: str) -> User | None:
        address = normalize_address(email)
        try:
            async with self._db() as db:
                cursor = await db.execute("SELECT * FROM users WHERE email = ?", (address,))
                row = await cursor.fetchone()
        except aiosqlite.Error as e:
            logger.error("user_lookup_failed", error=str(e))
            raise DatabaseError(f"Failed to look up user {address}: {e}") from e
        return self._row_to_user(row) if row else None

    async def get_user_by_id(self, user_id: int) -> User | None:
        try:
            async with self._db() as db:
                cursor = await db.execute("SELECT * FROM users WHERE id = ?", (user_id,))
                row = await cursor.fetchone()
        except aiosqlite.Error as e:
            logger.error("user_lookup_failed", user_id=user_id, error=str(e))
            raise DatabaseError(f"Failed to look up user {user_id}: {e}") from e
        return self._row_to_user(row) if row else None

    async def create_user(self, email: str) -> User:
        """Create a user, or return the existing one for the same address.

        Raises:
            DatabaseError: If the operation fails
        """
        address = normalize_address(email)
        try:
            async with self._db() as db:
                await db.execute(
                    "INSERT INTO users (email) VALUES (?) ON CONFLICT(email) DO NOTHING",
                    (address,),
                )
                await db.commit()
                cursor = await db.execute("SELECT * FROM users WHERE email = ?", (address,))
                row = await cursor.fetchone()
        except aiosqlite.Error as e:
            logger.error("user_create_failed", error=str(e))
            raise DatabaseError(f"Failed to create user {address}: {e}") from e

        if row is None:
            raise DatabaseError(f"User {address} was not found after insert")
        logger.info("user_created", user_id=row["id"])
        return self._row_to_user(row)

    @staticmethod
    def _row_to_user(row: aiosqlite.Row) -> User:
        return User(
            id=row["id"],
            email=row["email"],
            created_at=_parse_timestamp(row["created_at"]),
        )

    # =========================================================================
    # Exchange messages
    # =========================================================================

    async def save_message(self, message: InboundMessage, owner_id: int | None = None) -> None:
        """Insert or update a message of an exchange.

        ``owner_id`` defaults to ``message.owner_id``. Re-saving without an owner
        keeps the stored one.

        Raises:
            DatabaseError: If the operation fails
        """
        try:
            async with self._db() as db:
                await db.execute(
                    """
                    INSERT INTO exchange_messages (
                        message_id, exchange_id, owner_id, previous_message_id,
                        sender, recipients_json, subject, body, direction, received_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(message_id) DO UPDATE SET
                        owner_id = COALESCE(excluded.owner_id, exchange_messages.owner_id),
                        subject = excluded.subject,
                        body = excluded.body
                    """,
                    (
                        message.message_id,
                        message.exchange_id,
                        owner_id if owner_id is not None else message.owner_id,
                        message.previous_message_id,
                        message.sender_address,
                        json.dumps(message.recipients),
                        message.subject,
                        message.body,
                        str(message.direction),
                        message.received_at.isoformat(),  # type: ignore[union-attr]
                    ),
                )
                await db.commit()
        except aiosqlite.Error as e:
            logger.error("message_save_failed", message_id=message.message_id, error=str(e))
            raise DatabaseError(f"Failed to save message {message.message_id}: {e}") from e

    async def get_exchange_messages(self, exchange_id: str) -> list[StoredMessage]:
        """All messages of an exchange, oldest first."""
        try:
            async with self._db() as db:
                cursor = await db.execute(
                    """
                    SELECT * FROM exchange_messages
                    WHERE exchange_id = ?
                    ORDER BY received_at ASC, id ASC
                    """,
                    (exchange_id,),
                )
                rows = await cursor.fetchall()
        except aiosqlite.Error as e:
            logger.error("exchange_lookup_failed", exchange_id=exchange_id, error=str(e))
            raise DatabaseError(f"Failed to load exchange {exchange_id}: {e}") from e
        return [self._row_to_message(row) for row in rows]

    async def get_message(self, message_id: str) -> StoredMessage | None:
        try:
            async with self._db() as db:
                cursor = await db.execute(
                    "SELECT * FROM exchange_messages WHERE message_id = ?", (message_id,)
                )
                row = await cursor.fetchone()
        except aiosqlite.Error as e:
            logger.error("message_lookup_failed", message_id=message_id, error=str(e))
            raise DatabaseError(f"Failed to load message {message_id}: {e}") from e
        return self._row_to_message(row) if row else None

    @staticmethod
    def _row_to_message(row: aiosqlite.Row) -> StoredMessage:
        message = InboundMessage(
            message_id=row["message_id"],
            exchange_id=row["exchange_id"],
            sender=row["sender"],
            recipients=json.loads(row["recipients_json"] or "[]"),
            subject=row["subject"] or "",
            body=row["body"] or "",
            received_at=_parse_timestamp(row["received_at"]),
            previous_message_id=row["previous_message_id"],
            direction=Direction(row["direction"]),
            owner_id=row["owner_id"],
        )
        return StoredMessage(id=row["id"], message=message, owner_id=row["owner_id"])

    # =========================================================================
    # Allow-list
    # =========================================================================

    async def is_allowed(self, email: str) -> bool:
        address = normalize_address(email)
        try:
            async with self._db() as db:
                cursor = await db.execute(
                    "SELECT allowed FROM allowed_list WHERE email = ?", (address,)
                )
                row = await cursor.fetchone()
        except aiosqlite.Error as e:
            logger.error("allow_list_lookup_failed", error=str(e))
            raise DatabaseError(f"Failed to check allow-list for {address}: {e}") from e
        return bool(row and row["allowed"])

    async def set_allowed_entries(self, emails: Iterable[str], allowed: bool = True) -> int:
        """Upsert allow-list entries.

        Returns:
            Number of distinct addresses written
        """
        addresses = sorted({normalize_address(e) for e in emails if e and e.strip()})
        if not addresses:
            return 0
        try:
            async with self._db() as db:
                await db.executemany(
                    """
                    INSERT INTO allowed_list (email, allowed) VALUES (?, ?)
                    ON CONFLICT(email) DO UPDATE SET
                        allowed = excluded.allowed,
                        updated_at = CURRENT_TIMESTAMP
                    """,
                    [(address, int(allowed)) for address in addresses],
                )
                await db.commit()
        except aiosqlite.Error as e:
            logger.error("allow_list_update_failed", count=len(addresses), error=str(e))
            raise DatabaseError(f"Failed to update allow-list: {e}") from e
        return len(addresses)
