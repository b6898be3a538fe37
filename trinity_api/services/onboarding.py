from __future__ import annotations

import logging
import math
import uuid
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from trinity_api.core.config import AppSettings, get_settings
from trinity_api.core.errors import PersistenceError, ValidationError
from trinity_api.models import OnboardingStep, UserOnboardingProgress
from trinity_api.schemas.onboarding import (
    OnboardingEventType,
    OnboardingStepStatus as Status,
    ProgressAction,
)
from trinity_api.services.onboarding_analytics import OnboardingAnalyticsService
from trinity_api.services.onboarding_catalog import OnboardingCatalogService


logger = logging.getLogger(__name__)

NON_TERMINAL_STATUSES = frozenset({Status.NOT_STARTED, Status.IN_PROGRESS, Status.FAILED})

# Statuses from which each action may be applied. A missing record counts as NOT_STARTED.
ALLOWED_TRANSITIONS: dict[ProgressAction, frozenset[Status]] = {
    ProgressAction.START: NON_TERMINAL_STATUSES,
    ProgressAction.COMPLETE: frozenset(Status),
    ProgressAction.SKIP: frozenset({Status.NOT_STARTED, Status.IN_PROGRESS}),
    ProgressAction.FAIL: frozenset({Status.IN_PROGRESS, Status.FAILED}),
    ProgressAction.ABANDON: frozenset({Status.IN_PROGRESS}),
    ProgressAction.HELP: NON_TERMINAL_STATUSES,
}


def completion_percentage(completed: int, total: int) -> int:
    """Whole-number percentage rounded half up; an empty catalog counts as done."""
    if total <= 0:
        return 100
    return math.floor(completed * 100 / total + 0.5)


class OnboardingProgressService:
    """Per-user onboarding state machine backed by ``user_onboarding_progress``."""

    def __init__(
        self,
        session: AsyncSession,
        *,
        settings: AppSettings | None = None,
        catalog: OnboardingCatalogService | None = None,
        analytics: OnboardingAnalyticsService | None = None,
    ):
        self._session = session
        self._settings = settings or get_settings()
        self._catalog = catalog or OnboardingCatalogService(session)
        self._analytics = analytics or OnboardingAnalyticsService(session)

    async def apply_action(
        self,
        user_id: str,
        step_ref: str | uuid.UUID,
        action: ProgressAction,
        *,
        data: dict[str, Any] | None = None,
        variant_id: str | None = None,
        error: str | None = None,
    ) -> UserOnboardingProgress:
        """Dispatch a progress action coming from the API."""
        if action is ProgressAction.START:
            return await self.start_step(user_id, step_ref, variant_id=variant_id)
        if action is ProgressAction.COMPLETE:
            return await self.complete_step(user_id, step_ref, data)
        if action is ProgressAction.SKIP:
            reason = error or (data or {}).get("reason") or "User skipped"
            return await self.skip_step(user_id, step_ref, reason=str(reason))
        if action is ProgressAction.FAIL:
            return await self.fail_step(user_id, step_ref, error or "")
        if action is ProgressAction.ABANDON:
            return await self.abandon_step(user_id, step_ref)
        return await self.mark_help_used(user_id, step_ref)

    async def start_step(
        self, user_id: str, step_ref: str | uuid.UUID, *, variant_id: str | None = None
    ) -> UserOnboardingProgress:
        step, record = await self._prepare(user_id, step_ref, ProgressAction.START)
        record.status = Status.IN_PROGRESS.value
        record.started_at = datetime.now(timezone.utc)
        record.attempts = (record.attempts or 0) + 1
        if variant_id:
            record.variant_id = variant_id
        await self._flush(record, "start")
        await self._analytics.track(
            OnboardingEventType.STEP_STARTED,
            user_id=user_id,
            step_id=step.id,
            variant_id=variant_id,
            event_data={"stepId": str(step.id), "variantId": variant_id},
        )
        return record

    async def complete_step(
        self,
        user_id: str,
        step_ref: str | uuid.UUID,
        completion_data: dict[str, Any] | None = None,
    ) -> UserOnboardingProgress:
        """Mark a step completed.

        Completing an already completed step re-stamps ``completed_at`` and
        replaces the stored completion data.
        """
        step, record = await self._prepare(user_id, step_ref, ProgressAction.COMPLETE)
        now = datetime.now(timezone.utc)
        time_spent = None
        if record.started_at is not None:
            elapsed = now - self._normalize_datetime(record.started_at)
            time_spent = max(int(elapsed.total_seconds()), 0)

        record.status = Status.COMPLETED.value
        record.completed_at = now
        record.completion_data = dict(completion_data) if completion_data is not None else None
        record.time_spent = time_spent
        await self._flush(record, "complete")
        await self._analytics.track(
            OnboardingEventType.STEP_COMPLETED,
            user_id=user_id,
            step_id=step.id,
            event_data={
                "stepId": str(step.id),
                "completionData": record.completion_data,
                "timeSpent": time_spent,
            },
        )
        return record

    async def skip_step(
        self, user_id: str, step_ref: str | uuid.UUID, *, reason: str | None = None
    ) -> UserOnboardingProgress:
        step = await self._catalog.get_step(step_ref)
        if not step.skip_allowed:
            raise ValidationError(
                "This onboarding step cannot be skipped",
                errors=[{"field": "stepId", "message": f"Step '{step.key}' is not skippable."}],
            )
        step, record = await self._prepare(user_id, step, ProgressAction.SKIP)
        record.status = Status.SKIPPED.value
        record.skipped_at = datetime.now(timezone.utc)
        await self._flush(record, "skip")
        await self._analytics.track(
            OnboardingEventType.STEP_SKIPPED,
            user_id=user_id,
            step_id=step.id,
            event_data={"stepId": str(step.id), "reason": reason},
        )
        return record

    async def fail_step(
        self, user_id: str, step_ref: str | uuid.UUID, error: str
    ) -> UserOnboardingProgress:
        if not error or not error.strip():
            raise ValidationError(
                "Error message is required for fail action",
                errors=[{"field": "error", "message": "Field required for action 'fail'."}],
            )
        step, record = await self._prepare(user_id, step_ref, ProgressAction.FAIL)
        now = datetime.now(timezone.utc)
        record.status = Status.FAILED.value
        record.last_error = error
        if record.errors is None:
            record.errors = []
        record.errors.append({"timestamp": now.isoformat(), "error": error})
        await self._flush(record, "fail")
        await self._analytics.track(
            OnboardingEventType.STEP_FAILED,
            user_id=user_id,
            step_id=step.id,
            event_data={"stepId": str(step.id), "error": error},
        )
        return record

    async def abandon_step(
        self, user_id: str, step_ref: str | uuid.UUID
    ) -> UserOnboardingProgress:
        step, record = await self._prepare(user_id, step_ref, ProgressAction.ABANDON)
        record.status = Status.ABANDONED.value
        await self._flush(record, "abandon")
        await self._analytics.track(
            OnboardingEventType.STEP_ABANDONED,
            user_id=user_id,
            step_id=step.id,
            event_data={"stepId": str(step.id)},
        )
        return record

    async def mark_help_used(
        self, user_id: str, step_ref: str | uuid.UUID
    ) -> UserOnboardingProgress:
        step, record = await self._prepare(user_id, step_ref, ProgressAction.HELP)
        record.help_used = True
        await self._flush(record, "help")
        await self._analytics.track(
            OnboardingEventType.HELP_USED,
            user_id=user_id,
            step_id=step.id,
            event_data={"stepId": str(step.id)},
        )
        return record

    async def get_progress(self, user_id: str) -> list[UserOnboardingProgress]:
        """Return the user's progress records in catalog order."""
        stmt = (
            select(UserOnboardingProgress)
            .join(OnboardingStep, UserOnboardingProgress.step_id == OnboardingStep.id)
            .where(UserOnboardingProgress.user_id == user_id)
            .order_by(OnboardingStep.order.asc(), OnboardingStep.key)
        )
        try:
            result = await self._session.execute(stmt)
        except SQLAlchemyError as exc:
            logger.exception("Failed to load onboarding progress for %s", user_id)
            raise PersistenceError("Failed to fetch onboarding progress") from exc
        return list(result.scalars().all())

    async def get_completion_percentage(self, user_id: str) -> int:
        required_only = self._settings.onboarding_completion_policy == "required_only"

        total_stmt = select(func.count(OnboardingStep.id)).where(OnboardingStep.active.is_(True))
        completed_stmt = (
            select(func.count(UserOnboardingProgress.id))
            .join(OnboardingStep, UserOnboardingProgress.step_id == OnboardingStep.id)
            .where(
                UserOnboardingProgress.user_id == user_id,
                UserOnboardingProgress.status == Status.COMPLETED.value,
                OnboardingStep.active.is_(True),
            )
        )
        if required_only:
            total_stmt = total_stmt.where(OnboardingStep.required.is_(True))
            completed_stmt = completed_stmt.where(OnboardingStep.required.is_(True))

        try:
            total = (await self._session.execute(total_stmt)).scalar_one()
            completed = (await self._session.execute(completed_stmt)).scalar_one()
        except SQLAlchemyError as exc:
            logger.exception("Failed to compute onboarding completion for %s", user_id)
            raise PersistenceError("Failed to fetch onboarding progress") from exc
        return completion_percentage(completed, total)

    async def get_next_step(self, user_id: str) -> OnboardingStep | None:
        """First active required step the user has not completed yet."""
        completed_ids = {
            record.step_id
            for record in await self.get_progress(user_id)
            if record.status == Status.COMPLETED.value
        }
        for step in await self._catalog.list_steps(active_only=True):
            if step.required and step.id not in completed_ids:
                return step
        return None

    async def reset(self, user_id: str) -> int:
        """Delete every progress record of the user and return how many were removed."""
        try:
            result = await self._session.execute(
                delete(UserOnboardingProgress).where(UserOnboardingProgress.user_id == user_id)
            )
            await self._session.flush()
        except SQLAlchemyError as exc:
            logger.exception("Failed to reset onboarding progress for %s", user_id)
            raise PersistenceError("Failed to reset onboarding progress") from exc
        logger.info("Reset %d onboarding progress records for %s", result.rowcount, user_id)
        return result.rowcount or 0

    async def _prepare(
        self,
        user_id: str,
        step_ref: str | uuid.UUID | OnboardingStep,
        action: ProgressAction,
    ) -> tuple[OnboardingStep, UserOnboardingProgress]:
        step = (
            step_ref
            if isinstance(step_ref, OnboardingStep)
            else await self._catalog.get_step(step_ref)
        )
        record = await self._find_record(user_id, step.id)
        current = Status(record.status) if record is not None else Status.NOT_STARTED
        if current not in ALLOWED_TRANSITIONS[action]:
            raise ValidationError(
                f"Cannot {action.value} a step that is {current.value}",
                errors=[
                    {
                        "field": "action",
                        "message": f"Action '{action.value}' is not allowed from {current.value}.",
                    }
                ],
            )

        if record is None:
            record = UserOnboardingProgress(
                user_id=user_id,
                step_id=step.id,
                status=Status.NOT_STARTED.value,
                attempts=0,
                help_used=False,
                errors=[],
            )
            record.step = step
            self._session.add(record)
        return step, record

    async def _find_record(
        self, user_id: str, step_id: uuid.UUID
    ) -> UserOnboardingProgress | None:
        stmt = select(UserOnboardingProgress).where(
            UserOnboardingProgress.user_id == user_id,
            UserOnboardingProgress.step_id == step_id,
        )
        try:
            result = await self._session.execute(stmt)
        except SQLAlchemyError as exc:
            logger.exception("Failed to load onboarding progress for %s", user_id)
            raise PersistenceError("Failed to fetch onboarding progress") from exc
        return result.scalar_one_or_none()

    async def _flush(self, record: UserOnboardingProgress, action: str) -> None:
        try:
            await self._session.flush()
        except SQLAlchemyError as exc:
            logger.exception(
                "Failed to %s onboarding step %s for %s", action, record.step_id, record.user_id
            )
            raise PersistenceError("Failed to update onboarding progress") from exc

    def _normalize_datetime(self, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)
