from __future__ import annotations

import pytest
from sqlalchemy import inspect
from sqlalchemy.ext.asyncio import create_async_engine

from trinity_api.core.migrations import build_alembic_config, migrate_database, migration_heads
from trinity_api.models import Base


def test_single_migration_head() -> None:
    config = build_alembic_config("sqlite+aiosqlite:///:memory:")

    assert migration_heads(config) == ["20261017_0001"]


def test_config_escapes_percent_signs() -> None:
    url = "postgresql+asyncpg://growth:p%40ss@db/trinity"

    config = build_alembic_config(url)

    assert config.get_main_option("sqlalchemy.url") == url
    assert config.attributes["configure_logger"] is False


@pytest.mark.asyncio
async def test_upgrade_creates_every_mapped_table(tmp_path) -> None:
    url = f"sqlite+aiosqlite:///{tmp_path / 'growth.db'}"

    await migrate_database(database_url=url)

    engine = create_async_engine(url)
    async with engine.connect() as conn:
        tables = await conn.run_sync(lambda sync_conn: set(inspect(sync_conn).get_table_names()))
    await engine.dispose()

    assert set(Base.metadata.tables) <= tables
    assert "alembic_version" in tables
