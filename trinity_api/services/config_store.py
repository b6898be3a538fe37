from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from trinity_api.core.errors import PersistenceError
from trinity_api.models import SystemConfig


logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ConfigEntry:
    """Snapshot of a stored configuration value."""

    key: str
    value: dict[str, Any]
    updated_at: datetime


class ConfigStore:
    """Key-addressed JSON documents stored in the ``system_config`` table."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def get(self, key: str) -> ConfigEntry | None:
        try:
            record = await self._session.get(SystemConfig, key)
        except SQLAlchemyError as exc:
            logger.exception("Failed to read configuration key %s", key)
            raise PersistenceError("Failed to read configuration") from exc
        if record is None:
            return None
        return self._to_entry(record)

    async def put(
        self,
        key: str,
        value: dict[str, Any],
        *,
        description: str | None = None,
        category: str | None = None,
    ) -> ConfigEntry:
        """Insert or overwrite the document stored under ``key``."""
        now = datetime.now(timezone.utc)
        try:
            record = await self._session.get(SystemConfig, key)
            if record is None:
                record = SystemConfig(
                    key=key,
                    value=dict(value),
                    description=description,
                    category=category,
                    created_at=now,
                    updated_at=now,
                )
                self._session.add(record)
            else:
                record.value = dict(value)
                record.updated_at = now
                if description is not None:
                    record.description = description
                if category is not None:
                    record.category = category
            await self._session.flush()
        except SQLAlchemyError as exc:
            logger.exception("Failed to write configuration key %s", key)
            raise PersistenceError("Failed to write configuration") from exc
        return self._to_entry(record)

    def _to_entry(self, record: SystemConfig) -> ConfigEntry:
        updated_at = record.updated_at or record.created_at
        if updated_at is not None and updated_at.tzinfo is None:
            updated_at = updated_at.replace(tzinfo=timezone.utc)
        return ConfigEntry(
            key=record.key,
            value=dict(record.value or {}),
            updated_at=updated_at,
        )
