"""Database migration runner.

Migrations are numbered steps tracked in SQLite's ``user_version`` pragma.
"""

import logging
from pathlib import Path
from typing import Awaitable, Callable, List

import aiosqlite

logger = logging.getLogger(__name__)

SCHEMA_PATH = Path(__file__).parent / "schema.sql"

Migration = Callable[[aiosqlite.Connection], Awaitable[None]]


async def _create_schema(db: aiosqlite.Connection) -> None:
    with open(SCHEMA_PATH) as f:
        await db.executescript(f.read())


async def _index_open_occurrences(db: aiosqlite.Connection) -> None:
    # Reply lookups ask for a patient's newest open occurrence
    await db.execute(
        """
        CREATE INDEX IF NOT EXISTS idx_occurrences_open
        ON occurrences(user_id, status, scheduled_for)
        """
    )


# Index + 1 is the schema version after the step ran
MIGRATIONS: List[Migration] = [
    _create_schema,
    _index_open_occurrences,
]


async def get_schema_version(db: aiosqlite.Connection) -> int:
    async with db.execute("PRAGMA user_version") as cursor:
        row = await cursor.fetchone()
    return row[0] if row else 0


async def run_migrations(db_path: Path) -> int:
    """Apply pending migrations. Returns the resulting schema version."""
    async with aiosqlite.connect(db_path) as db:
        version = await get_schema_version(db)

        for number, migration in enumerate(MIGRATIONS[version:], start=version + 1):
            logger.info(f"Applying migration {number}: {migration.__name__}")
            await migration(db)
            await db.execute(f"PRAGMA user_version = {number}")
            await db.commit()

        if version == len(MIGRATIONS):
            logger.info(f"Database at {db_path} is up to date (version {version})")
        else:
            logger.info(f"Database at {db_path} migrated to version {len(MIGRATIONS)}")

        return len(MIGRATIONS)
