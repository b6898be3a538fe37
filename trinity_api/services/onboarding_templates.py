from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Sequence

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from trinity_api.core.errors import NotFoundError, PersistenceError
from trinity_api.models import OnboardingStep, OnboardingTemplate, UserOnboardingTemplate
from trinity_api.schemas.onboarding import (
    OnboardingEventType,
    OnboardingTemplateCreate,
    UserProfile,
)
from trinity_api.services.onboarding_analytics import OnboardingAnalyticsService


logger = logging.getLogger(__name__)

INDUSTRY_MATCH_BONUS = 20
COMPANY_SIZE_MATCH_BONUS = 15
ROLE_MATCH_BONUS = 10


@dataclass(slots=True)
class TemplateAssignment:
    template: OnboardingTemplate
    score: int


def template_step_keys(template: OnboardingTemplate | None) -> list[str] | None:
    """Return the template's step keys, or ``None`` when the list is unusable."""
    if template is None:
        return None
    keys = template.steps
    if not isinstance(keys, (list, tuple)) or not all(isinstance(key, str) for key in keys):
        return None
    return list(keys)


def order_steps(
    steps: Sequence[OnboardingStep], template: OnboardingTemplate | None
) -> list[OnboardingStep]:
    """Order catalog steps by a template.

    Steps named by the template come first in template order; unknown keys and
    repeats are ignored. The remaining steps follow in their original order, so
    every input step appears exactly once.
    """
    keys = template_step_keys(template)
    if not keys:
        return list(steps)

    by_key = {step.key: step for step in steps}
    ordered: list[OnboardingStep] = []
    placed: set[str] = set()
    for key in keys:
        step = by_key.get(key)
        if step is None or key in placed:
            continue
        ordered.append(step)
        placed.add(key)

    ordered.extend(step for step in steps if step.key not in placed)
    return ordered


def score_template(template: OnboardingTemplate, profile: UserProfile) -> int:
    score = template.weight or 0
    audience: dict[str, Any] = template.target_audience or {}

    industries = audience.get("industry") or []
    if profile.industry and profile.industry in industries:
        score += INDUSTRY_MATCH_BONUS

    sizes = audience.get("companySize") or []
    if profile.company_size and profile.company_size in sizes:
        score += COMPANY_SIZE_MATCH_BONUS

    roles = audience.get("role") or []
    if profile.job_title:
        title = profile.job_title.lower()
        if any(str(role).lower() in title for role in roles):
            score += ROLE_MATCH_BONUS

    return score


class OnboardingTemplateService:
    """Manage onboarding templates and the assignments made to users."""

    def __init__(
        self,
        session: AsyncSession,
        *,
        analytics: OnboardingAnalyticsService | None = None,
    ):
        self._session = session
        self._analytics = analytics or OnboardingAnalyticsService(session)

    async def list_templates(self, *, active_only: bool = True) -> list[OnboardingTemplate]:
        stmt = select(OnboardingTemplate).order_by(
            OnboardingTemplate.weight.desc(), OnboardingTemplate.name
        )
        if active_only:
            stmt = stmt.where(OnboardingTemplate.active.is_(True))
        try:
            result = await self._session.execute(stmt)
        except SQLAlchemyError as exc:
            logger.exception("Failed to list onboarding templates")
            raise PersistenceError("Failed to fetch onboarding templates") from exc
        return list(result.scalars().all())

    async def create_template(self, payload: OnboardingTemplateCreate) -> OnboardingTemplate:
        template = OnboardingTemplate(
            name=payload.name,
            description=payload.description,
            steps=list(payload.steps),
            target_audience=payload.target_audience.model_dump(by_alias=True),
            industry=payload.industry,
            company_size=payload.company_size,
            role=payload.role,
            weight=payload.weight,
            active=payload.active,
        )
        try:
            self._session.add(template)
            await self._session.flush()
        except SQLAlchemyError as exc:
            logger.exception("Failed to create onboarding template %s", payload.name)
            raise PersistenceError("Failed to create onboarding template") from exc
        return template

    async def get_template(self, template_id: uuid.UUID | str) -> OnboardingTemplate:
        try:
            identifier = template_id if isinstance(template_id, uuid.UUID) else uuid.UUID(str(template_id))
        except ValueError as exc:
            raise NotFoundError(f"Onboarding template '{template_id}' not found") from exc
        try:
            template = await self._session.get(OnboardingTemplate, identifier)
        except SQLAlchemyError as exc:
            logger.exception("Failed to load onboarding template %s", template_id)
            raise PersistenceError("Failed to fetch onboarding template") from exc
        if template is None:
            raise NotFoundError(f"Onboarding template '{template_id}' not found")
        return template

    async def get_user_template(self, user_id: str) -> OnboardingTemplate | None:
        """Template from the user's most recent assignment."""
        stmt = (
            select(UserOnboardingTemplate)
            .where(UserOnboardingTemplate.user_id == user_id)
            .order_by(UserOnboardingTemplate.assigned_at.desc())
            .limit(1)
        )
        try:
            result = await self._session.execute(stmt)
        except SQLAlchemyError as exc:
            logger.exception("Failed to load template assignment for %s", user_id)
            raise PersistenceError("Failed to fetch onboarding template") from exc
        assignment = result.scalar_one_or_none()
        return assignment.template if assignment else None

    async def resolve_template(
        self, user_id: str, template_id: uuid.UUID | str | None = None
    ) -> OnboardingTemplate | None:
        """Explicit template first, then the user's latest assignment."""
        if template_id:
            try:
                return await self.get_template(template_id)
            except NotFoundError:
                logger.warning(
                    "Template %s not found for %s; using assignment instead", template_id, user_id
                )
        return await self.get_user_template(user_id)

    async def assign_template(
        self, user_id: str, profile: UserProfile
    ) -> TemplateAssignment | None:
        """Score active templates against the profile and record the best match.

        Returns ``None`` when no template scores above zero.
        """
        best: TemplateAssignment | None = None
        for template in await self.list_templates(active_only=True):
            score = score_template(template, profile)
            if score > (best.score if best else 0):
                best = TemplateAssignment(template=template, score=score)

        if best is None:
            return None

        now = datetime.now(timezone.utc)
        profile_data = profile.model_dump(mode="json", by_alias=True)
        assignment = UserOnboardingTemplate(
            user_id=user_id,
            template_id=best.template.id,
            assignment_data={
                "profile": profile_data,
                "score": best.score,
                "timestamp": now.isoformat(),
            },
            assigned_at=now,
        )
        try:
            self._session.add(assignment)
            await self._session.flush()
        except SQLAlchemyError as exc:
            logger.exception("Failed to assign onboarding template to %s", user_id)
            raise PersistenceError("Failed to assign onboarding template") from exc

        await self._analytics.track(
            OnboardingEventType.TEMPLATE_ASSIGNED,
            user_id=user_id,
            event_data={
                "templateId": str(best.template.id),
                "templateName": best.template.name,
                "score": best.score,
                "profile": profile_data,
            },
        )
        return best
