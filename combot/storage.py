"""Database storage layer for Combot."""

import logging
from contextlib import asynccontextmanager
from typing import List, Optional
import aiosqlite
from .config import DATABASE_PATH
from .errors import StaleEncounterError, StorageError
from .models import Encounter
from .timeutils import now_timestamp

logger = logging.getLogger(__name__)


class EncounterStorage:
    """Persists one encounter snapshot per channel, plus players' sheet links."""

    def __init__(self, db_path: str = DATABASE_PATH):
        self.db_path = db_path

    @asynccontextmanager
    async def _connect(self):
        try:
            async with aiosqlite.connect(self.db_path) as db:
                yield db
        except aiosqlite.Error as e:
            logger.error(f"Database error on {self.db_path}: {e}")
            raise StorageError(str(e)) from e

    async def initialize(self):
        """Initialize the database with required tables."""
        async with self._connect() as db:
            await db.execute("""
                CREATE TABLE IF NOT EXISTS encounters (
                    channel_id TEXT PRIMARY KEY,
                    encounter_id TEXT NOT NULL,
                    version INTEGER NOT NULL,
                    state TEXT NOT NULL,
                    updated_at INTEGER NOT NULL
                )
            """)

            await db.execute("""
                CREATE TABLE IF NOT EXISTS characters (
                    user_id TEXT NOT NULL,
                    channel_id TEXT NOT NULL,
                    url TEXT NOT NULL,
                    PRIMARY KEY(user_id, channel_id)
                )
            """)

            await db.commit()

    async def get_encounter(self, channel_id: str) -> Optional[Encounter]:
        """Get the active encounter in a channel."""
        async with self._connect() as db:
            async with db.execute(
                "SELECT state, version FROM encounters WHERE channel_id = ?", (channel_id,)
            ) as cursor:
                row = await cursor.fetchone()
        if not row:
            return None
        encounter = Encounter.from_json(row[0])
        encounter.version = row[1]
        return encounter

    async def save_encounter(self, encounter: Encounter):
        """Write a snapshot, failing if someone else wrote since it was read.

        The stored version must equal ``encounter.version``; on success both are
        bumped by one. A version of 0 means the encounter has never been stored.
        """
        expected = encounter.version
        encounter.version = expected + 1
        state = encounter.to_json()

        try:
            async with self._connect() as db:
                if expected == 0:
                    try:
                        await db.execute("""
                            INSERT INTO encounters (channel_id, encounter_id, version, state, updated_at)
                            VALUES (?, ?, ?, ?, ?)
                        """, (encounter.channel_id, encounter.id, encounter.version, state, now_timestamp()))
                    except aiosqlite.IntegrityError:
                        raise StaleEncounterError(encounter.channel_id, expected)
                else:
                    cursor = await db.execute("""
                        UPDATE encounters
                        SET encounter_id = ?, version = ?, state = ?, updated_at = ?
                        WHERE channel_id = ? AND version = ?
                    """, (encounter.id, encounter.version, state, now_timestamp(), encounter.channel_id, expected))
                    if cursor.rowcount == 0:
                        raise StaleEncounterError(encounter.channel_id, expected)
                await db.commit()
        except StorageError:
            encounter.version = expected
            raise

    async def delete_encounter(self, channel_id: str):
        """Remove the encounter in a channel, if any."""
        async with self._connect() as db:
            await db.execute("DELETE FROM encounters WHERE channel_id = ?", (channel_id,))
            await db.commit()

    async def list_encounters(self) -> List[Encounter]:
        """Get every stored encounter."""
        async with self._connect() as db:
            async with db.execute("SELECT state, version FROM encounters") as cursor:
                rows = await cursor.fetchall()

        encounters = []
        for state, version in rows:
            encounter = Encounter.from_json(state)
            encounter.version = version
            encounters.append(encounter)
        return encounters

    async def save_character_url(self, user_id: str, channel_id: str, url: str):
        """Link a player's character sheet for a channel."""
        async with self._connect() as db:
            await db.execute("""
                INSERT OR REPLACE INTO characters (user_id, channel_id, url)
                VALUES (?, ?, ?)
            """, (user_id, channel_id, url))
            await db.commit()

    async def get_character_url(self, user_id: str, channel_id: str) -> Optional[str]:
        async with self._connect() as db:
            async with db.execute(
                "SELECT url FROM characters WHERE user_id = ? AND channel_id = ?", (user_id, channel_id)
            ) as cursor:
                row = await cursor.fetchone()
                return row[0] if row else None
