from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Sequence

from trinity_api.core.errors import NotFoundError, ValidationError
from trinity_api.models import OnboardingStep, UserOnboardingProgress
from trinity_api.schemas.onboarding import (
    ChecklistItem,
    OnboardingChecklist,
    OnboardingStepStatus,
    TemplateSummary,
)
from trinity_api.services.onboarding import OnboardingProgressService
from trinity_api.services.onboarding_catalog import OnboardingCatalogService
from trinity_api.services.onboarding_templates import OnboardingTemplateService, order_steps


logger = logging.getLogger(__name__)

DEFAULT_ESTIMATED_MINUTES = 5
DEFAULT_CATEGORY = "general"
_REWARD_FIELDS = ("reward", "badge", "unlock")


def extract_reward(content: dict[str, Any] | None) -> str | None:
    if not isinstance(content, dict):
        return None
    for field in _REWARD_FIELDS:
        value = content.get(field)
        if value:
            return str(value)
    return None


class OnboardingChecklistService:
    """Checklist view composed from the catalog, progress and templates."""

    def __init__(
        self,
        *,
        catalog: OnboardingCatalogService,
        progress: OnboardingProgressService,
        templates: OnboardingTemplateService,
    ):
        self._catalog = catalog
        self._progress = progress
        self._templates = templates

    async def build(
        self, user_id: str, template_id: uuid.UUID | str | None = None
    ) -> OnboardingChecklist:
        template = await self._templates.resolve_template(user_id, template_id)
        steps = order_steps(await self._catalog.list_steps(active_only=True), template)
        statuses = {
            record.step_id: OnboardingStepStatus(record.status)
            for record in await self._progress.get_progress(user_id)
        }

        return OnboardingChecklist(
            items=[self._to_item(step, statuses.get(step.id)) for step in steps],
            completion_percentage=await self._progress.get_completion_percentage(user_id),
            template=(
                TemplateSummary(
                    id=template.id, name=template.name, description=template.description
                )
                if template
                else None
            ),
        )

    async def mark_completed(
        self, user_id: str, item_ids: Sequence[str]
    ) -> list[UserOnboardingProgress]:
        """Complete each item; items that cannot be completed are logged and skipped."""
        completed: list[UserOnboardingProgress] = []
        for item_id in item_ids:
            completion_data = {
                "source": "checklist",
                "timestamp": datetime.now(timezone.utc).isoformat(),
            }
            try:
                record = await self._progress.complete_step(user_id, item_id, completion_data)
            except (NotFoundError, ValidationError) as exc:
                logger.warning("Failed to complete checklist item %s for %s: %s", item_id, user_id, exc)
                continue
            completed.append(record)
        return completed

    async def reset_progress(self, user_id: str) -> int:
        return await self._progress.reset(user_id)

    def _to_item(
        self, step: OnboardingStep, status: OnboardingStepStatus | None
    ) -> ChecklistItem:
        return ChecklistItem(
            id=step.id,
            key=step.key,
            title=step.title or step.name,
            description=step.description or "",
            status=status or OnboardingStepStatus.NOT_STARTED,
            estimated_time=step.estimated_minutes or DEFAULT_ESTIMATED_MINUTES,
            optional=not step.required,
            category=step.category or DEFAULT_CATEGORY,
            reward=extract_reward(step.content),
        )
