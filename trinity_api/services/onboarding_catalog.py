from __future__ import annotations

import json
import logging
import uuid
from datetime import datetime, timezone
from importlib import resources
from pathlib import Path
from typing import Any, Sequence

from pydantic import ValidationError as SchemaValidationError
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from trinity_api.core.errors import NotFoundError, PersistenceError, ValidationError
from trinity_api.models import OnboardingStep
from trinity_api.schemas.onboarding import OnboardingStepCreate


logger = logging.getLogger(__name__)

_DATASET_FILENAME = "onboarding_steps.json"


def load_default_steps() -> list[OnboardingStepCreate]:
    """Return the packaged default onboarding catalog."""
    raw_text = None
    try:
        raw_text = (
            resources.files("trinity_api.data")
            .joinpath(_DATASET_FILENAME)
            .read_text(encoding="utf-8")
        )
    except ModuleNotFoundError as exc:
        logger.warning("Packaged onboarding catalog is unavailable: %s", exc)
    except OSError as exc:
        # Editable installs expose the data dir through a finder hook, not a directory.
        logger.warning("Failed to read packaged onboarding catalog: %s", exc)

    if raw_text is None:
        fallback_path = Path(__file__).resolve().parent.parent / "data" / _DATASET_FILENAME
        raw_text = fallback_path.read_text(encoding="utf-8")

    return [OnboardingStepCreate.model_validate(entry) for entry in json.loads(raw_text)]


def parse_step_ref(step_ref: str | uuid.UUID) -> uuid.UUID | None:
    if isinstance(step_ref, uuid.UUID):
        return step_ref
    try:
        return uuid.UUID(str(step_ref))
    except ValueError:
        return None


class OnboardingCatalogService:
    """Read and maintain the onboarding step catalog."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def list_steps(self, *, active_only: bool = True) -> list[OnboardingStep]:
        stmt = select(OnboardingStep).order_by(OnboardingStep.order.asc(), OnboardingStep.key)
        if active_only:
            stmt = stmt.where(OnboardingStep.active.is_(True))
        try:
            result = await self._session.execute(stmt)
        except SQLAlchemyError as exc:
            logger.exception("Failed to list onboarding steps")
            raise PersistenceError("Failed to fetch onboarding steps") from exc
        return list(result.scalars().all())

    async def get_step(self, step_ref: str | uuid.UUID) -> OnboardingStep:
        """Look up a step by UUID or by its key."""
        step_id = parse_step_ref(step_ref)
        if step_id is not None:
            stmt = select(OnboardingStep).where(OnboardingStep.id == step_id)
        else:
            stmt = select(OnboardingStep).where(OnboardingStep.key == str(step_ref))
        try:
            result = await self._session.execute(stmt)
        except SQLAlchemyError as exc:
            logger.exception("Failed to load onboarding step %s", step_ref)
            raise PersistenceError("Failed to fetch onboarding step") from exc

        step = result.scalar_one_or_none()
        if step is None:
            raise NotFoundError(f"Onboarding step '{step_ref}' not found")
        return step

    async def create_step(self, payload: OnboardingStepCreate) -> OnboardingStep:
        existing = await self._find_by_key(payload.key)
        if existing is not None:
            raise ValidationError(
                "Onboarding step key already exists",
                errors=[{"field": "key", "message": f"'{payload.key}' is already in use."}],
            )

        step = OnboardingStep(**self._column_values(payload))
        try:
            self._session.add(step)
            await self._session.flush()
        except IntegrityError as exc:
            raise ValidationError("Onboarding step key already exists") from exc
        except SQLAlchemyError as exc:
            logger.exception("Failed to create onboarding step %s", payload.key)
            raise PersistenceError("Failed to create onboarding step") from exc
        await self._session.refresh(step)
        return step

    async def seed_default_steps(
        self, steps: Sequence[OnboardingStepCreate] | None = None
    ) -> list[OnboardingStep]:
        """Insert or refresh the default catalog, keyed by step key."""
        try:
            definitions = list(steps) if steps is not None else load_default_steps()
        except (OSError, json.JSONDecodeError, SchemaValidationError) as exc:
            logger.error("Default onboarding catalog could not be loaded: %s", exc)
            raise PersistenceError("Default onboarding catalog is unreadable") from exc

        now = datetime.now(timezone.utc)
        seeded: list[OnboardingStep] = []
        for definition in definitions:
            values = self._column_values(definition)
            step = await self._find_by_key(definition.key)
            if step is None:
                step = OnboardingStep(**values)
                self._session.add(step)
            else:
                for column, value in values.items():
                    setattr(step, column, value)
                step.updated_at = now
            seeded.append(step)

        try:
            await self._session.flush()
        except SQLAlchemyError as exc:
            logger.exception("Failed to seed onboarding steps")
            raise PersistenceError("Failed to seed onboarding steps") from exc
        logger.info("Seeded %d onboarding steps", len(seeded))
        return seeded

    async def _find_by_key(self, key: str) -> OnboardingStep | None:
        try:
            result = await self._session.execute(
                select(OnboardingStep).where(OnboardingStep.key == key)
            )
        except SQLAlchemyError as exc:
            logger.exception("Failed to look up onboarding step %s", key)
            raise PersistenceError("Failed to fetch onboarding step") from exc
        return result.scalar_one_or_none()

    def _column_values(self, payload: OnboardingStepCreate) -> dict[str, Any]:
        values = payload.model_dump()
        values["type"] = payload.type.value
        return values
