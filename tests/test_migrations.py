"""Tests for the migration runner."""

import aiosqlite
import pytest

from dosewatch.db.migrations import MIGRATIONS, get_schema_version, run_migrations


@pytest.mark.asyncio
async def test_migrations_are_idempotent(tmp_path):
    db_path = tmp_path / "fresh.db"

    assert await run_migrations(db_path) == len(MIGRATIONS)
    assert await run_migrations(db_path) == len(MIGRATIONS)

    async with aiosqlite.connect(db_path) as db:
        assert await get_schema_version(db) == len(MIGRATIONS)
        async with db.execute("SELECT name FROM sqlite_master WHERE type = 'table'") as cursor:
            tables = {row[0] for row in await cursor.fetchall()}

    assert {"users", "medicines", "caregivers", "reminders", "occurrences"} <= tables
