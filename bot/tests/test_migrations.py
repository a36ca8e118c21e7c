from __future__ import annotations

from pathlib import Path

import pytest

from database.base import Database
from database.migrations.runner import run_migrations


@pytest.mark.asyncio
async def test_migrations_apply_in_order_once(tmp_path: Path) -> None:
    database = Database(url=f"sqlite:///{tmp_path / 'fresh.db'}")
    await database.connect()
    try:
        assert await run_migrations(database) == [
            "0001_initial.sql",
            "0002_ticket_categories.sql",
            "0003_tags.sql",
        ]
        assert await run_migrations(database) == []

        columns = {row["name"] for row in await database.fetchall("PRAGMA table_info(tickets);")}
        assert "category_name" in columns
        tables = {
            row["name"] for row in await database.fetchall("SELECT name FROM sqlite_master WHERE type = 'table';")
        }
        assert {"ticket_categories", "tags", "schema_migrations"} <= tables
    finally:
        await database.close()
