from __future__ import annotations

import logging
import uuid
from collections import Counter
from datetime import date, datetime, timezone
from typing import Any

from sqlalchemy import desc, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from trinity_api.core.errors import PersistenceError
from trinity_api.models import OnboardingAnalyticsEvent
from trinity_api.schemas.onboarding import (
    OnboardingAnalyticsBucket,
    OnboardingAnalyticsCreate,
    OnboardingAnalyticsFilters,
    OnboardingEventType,
)


logger = logging.getLogger(__name__)

UNKNOWN_CLIENT = "unknown"
DEFAULT_EVENT_LIMIT = 100
GROUP_BY_OPTIONS = ("eventType", "stepId", "date", "hour")


class OnboardingAnalyticsService:
    """Record and query onboarding interaction events."""

    def __init__(self, session: AsyncSession):
        self._session = session

    async def record_event(
        self,
        payload: OnboardingAnalyticsCreate,
        *,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> OnboardingAnalyticsEvent:
        """Persist an event; values in the payload win over request-derived ones."""
        event = OnboardingAnalyticsEvent(
            event_type=payload.event_type.value,
            step_id=payload.step_id,
            user_id=payload.user_id,
            session_id=payload.session_id,
            event_data=dict(payload.event_data),
            metadata_json=payload.metadata,
            user_agent=payload.user_agent or user_agent or UNKNOWN_CLIENT,
            ip_address=payload.ip_address or ip_address or UNKNOWN_CLIENT,
            variant_id=payload.variant_id,
            experiment_id=payload.experiment_id,
            page_load_time=payload.page_load_time,
            interaction_time=payload.interaction_time,
            conversion_step=payload.conversion_step,
            conversion_value=payload.conversion_value,
            timestamp=datetime.now(timezone.utc),
        )
        try:
            self._session.add(event)
            await self._session.flush()
        except SQLAlchemyError as exc:
            logger.exception("Failed to record onboarding event %s", payload.event_type.value)
            raise PersistenceError("Failed to track analytics event") from exc
        return event

    async def track(
        self,
        event_type: OnboardingEventType,
        *,
        user_id: str | None,
        step_id: uuid.UUID | None = None,
        variant_id: str | None = None,
        event_data: dict[str, Any] | None = None,
    ) -> OnboardingAnalyticsEvent:
        """Record a server-side event emitted by another onboarding service."""
        data = dict(event_data or {})
        data.setdefault("timestamp", datetime.now(timezone.utc).isoformat())
        payload = OnboardingAnalyticsCreate(
            event_type=event_type,
            step_id=step_id,
            user_id=user_id,
            variant_id=variant_id,
            event_data=data,
        )
        return await self.record_event(payload, user_agent="server")

    async def list_events(
        self,
        filters: OnboardingAnalyticsFilters | None = None,
        *,
        limit: int = DEFAULT_EVENT_LIMIT,
    ) -> list[OnboardingAnalyticsEvent]:
        stmt = (
            select(OnboardingAnalyticsEvent)
            .where(*self._conditions(filters))
            .order_by(OnboardingAnalyticsEvent.timestamp.desc())
            .limit(limit)
        )
        try:
            result = await self._session.execute(stmt)
        except SQLAlchemyError as exc:
            logger.exception("Failed to list onboarding events")
            raise PersistenceError("Failed to retrieve analytics data") from exc
        return list(result.unique().scalars().all())

    async def aggregate(
        self,
        filters: OnboardingAnalyticsFilters | None = None,
        *,
        group_by: str,
        limit: int = DEFAULT_EVENT_LIMIT,
    ) -> list[OnboardingAnalyticsBucket]:
        """Count events per group.

        ``eventType`` and ``stepId`` buckets are ordered by count, ``date`` and
        ``hour`` buckets newest first. Unknown groupings fall back to
        ``eventType``.
        """
        if group_by not in GROUP_BY_OPTIONS:
            group_by = GROUP_BY_OPTIONS[0]
        if group_by in ("date", "hour"):
            return await self._aggregate_by_time(filters, hourly=group_by == "hour", limit=limit)

        column = (
            OnboardingAnalyticsEvent.step_id
            if group_by == "stepId"
            else OnboardingAnalyticsEvent.event_type
        )
        count = func.count(OnboardingAnalyticsEvent.id).label("count")
        stmt = (
            select(column, count)
            .where(*self._conditions(filters))
            .group_by(column)
            .order_by(desc(count))
            .limit(limit)
        )
        try:
            result = await self._session.execute(stmt)
        except SQLAlchemyError as exc:
            logger.exception("Failed to aggregate onboarding events by %s", group_by)
            raise PersistenceError("Failed to retrieve analytics data") from exc

        return [
            OnboardingAnalyticsBucket(
                key=str(value) if value is not None else None,
                count=int(total),
            )
            for value, total in result.all()
        ]

    async def _aggregate_by_time(
        self,
        filters: OnboardingAnalyticsFilters | None,
        *,
        hourly: bool,
        limit: int,
    ) -> list[OnboardingAnalyticsBucket]:
        stmt = select(OnboardingAnalyticsEvent.timestamp).where(*self._conditions(filters))
        try:
            result = await self._session.execute(stmt)
        except SQLAlchemyError as exc:
            logger.exception("Failed to load onboarding event timestamps")
            raise PersistenceError("Failed to retrieve analytics data") from exc

        buckets: Counter[tuple[date, int | None]] = Counter()
        for timestamp in result.scalars().all():
            moment = self._normalize_datetime(timestamp)
            buckets[(moment.date(), moment.hour if hourly else None)] += 1

        ordered = sorted(buckets.items(), key=lambda item: (item[0][0], item[0][1] or 0), reverse=True)
        return [
            OnboardingAnalyticsBucket(day=day, hour=hour, count=count)
            for (day, hour), count in ordered[:limit]
        ]

    def _conditions(self, filters: OnboardingAnalyticsFilters | None) -> list[Any]:
        if filters is None:
            return []
        conditions: list[Any] = []
        if filters.event_type is not None:
            conditions.append(OnboardingAnalyticsEvent.event_type == filters.event_type.value)
        if filters.step_id is not None:
            conditions.append(OnboardingAnalyticsEvent.step_id == filters.step_id)
        if filters.user_id:
            conditions.append(OnboardingAnalyticsEvent.user_id == filters.user_id)
        if filters.experiment_id:
            conditions.append(OnboardingAnalyticsEvent.experiment_id == filters.experiment_id)
        if filters.start_date is not None:
            conditions.append(
                OnboardingAnalyticsEvent.timestamp >= self._normalize_datetime(filters.start_date)
            )
        if filters.end_date is not None:
            conditions.append(
                OnboardingAnalyticsEvent.timestamp <= self._normalize_datetime(filters.end_date)
            )
        return conditions

    def _normalize_datetime(self, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)
