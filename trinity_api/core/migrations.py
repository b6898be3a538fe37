from __future__ import annotations

import asyncio
import logging
from pathlib import Path

from alembic import command
from alembic.config import Config
from alembic.script import ScriptDirectory

from trinity_api.core.config import get_settings


logger = logging.getLogger(__name__)

PROJECT_ROOT = Path(__file__).resolve().parents[2]


def build_alembic_config(database_url: str | None = None) -> Config:
    """Alembic config pointing at the bundled scripts.

    ``database_url`` defaults to ``DATABASE_URL``; it is only required when a
    command actually connects.
    """
    alembic_ini = PROJECT_ROOT / "alembic.ini"
    if not alembic_ini.exists():
        raise RuntimeError(f"Alembic configuration not found at {alembic_ini}")

    config = Config(str(alembic_ini))
    config.set_main_option("script_location", str(PROJECT_ROOT / "alembic"))
    url = database_url or get_settings().database_url
    if url:
        # ConfigParser interpolation treats '%' as a marker.
        config.set_main_option("sqlalchemy.url", url.replace("%", "%%"))
    config.attributes["configure_logger"] = False
    return config


def migration_heads(config: Config | None = None) -> list[str]:
    """Revisions at the tip of the migration history."""
    script = ScriptDirectory.from_config(config or build_alembic_config())
    return list(script.get_heads())


async def migrate_database(revision: str = "head", *, database_url: str | None = None) -> None:
    """Upgrade the schema to ``revision`` without blocking the event loop."""
    config = build_alembic_config(database_url)
    if not config.get_main_option("sqlalchemy.url"):
        raise RuntimeError("DATABASE_URL must be configured to run migrations.")

    logger.info("Upgrading database schema to %s", revision)
    loop = asyncio.get_running_loop()
    await loop.run_in_executor(None, command.upgrade, config, revision)
