from __future__ import annotations

import logging
import math
import random
import secrets
import string
from collections import Counter
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone

from pydantic import ValidationError as SchemaValidationError
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from trinity_api.core.config import AppSettings, get_settings
from trinity_api.core.errors import PersistenceError, ValidationError
from trinity_api.models import AuditLog
from trinity_api.schemas.funnel import (
    ConversionOptimization,
    ConversionRates,
    DailyBreakdownPoint,
    FunnelBreakdown,
    FunnelEventCreate,
    FunnelEventKind,
    FunnelEventRecord,
    FunnelMetrics,
    FunnelReport,
    FunnelTrends,
    PagePerformance,
    RoiMetrics,
    TrendIndicator,
)
from trinity_api.services.config_store import ConfigEntry, ConfigStore


logger = logging.getLogger(__name__)

FUNNEL_EVENT_ACTION = "analytics_event"
FUNNEL_RESOURCE = "funnel"

_ID_ALPHABET = string.ascii_lowercase + string.digits

TIMEFRAME_WINDOWS: dict[str, timedelta] = {
    "1d": timedelta(days=1),
    "7d": timedelta(days=7),
    "30d": timedelta(days=30),
}

# Counters bumped by each event kind; kinds not listed leave the counters untouched.
COUNTER_INCREMENTS: dict[FunnelEventKind, tuple[str, ...]] = {
    FunnelEventKind.LANDING_PAGE_VIEW: ("landing_page_views",),
    FunnelEventKind.CTA_CLICK: ("cta_clicks",),
    FunnelEventKind.SIGNUP_STARTED: ("signup_started",),
    FunnelEventKind.SIGNUP_COMPLETED: ("signup_completed", "trial_activated"),
    FunnelEventKind.AGENT_INTERACTION: ("agent_interactions",),
    FunnelEventKind.UPGRADE_CLICKED: ("upgrade_clicked",),
    FunnelEventKind.SUBSCRIPTION_CREATED: ("subscriptions_created",),
}

# rate name -> (numerator counter, denominator counter)
RATE_FORMULAS: dict[str, tuple[str, str]] = {
    "landing_to_cta": ("cta_clicks", "landing_page_views"),
    "cta_to_signup": ("signup_started", "cta_clicks"),
    "signup_completion": ("signup_completed", "signup_started"),
    "trial_to_upgrade": ("upgrade_clicked", "trial_activated"),
    "upgrade_to_paid": ("subscriptions_created", "upgrade_clicked"),
    "overall_conversion": ("subscriptions_created", "landing_page_views"),
}


@dataclass(frozen=True, slots=True)
class TrendRule:
    """Fixed-threshold trend label for one funnel dimension."""

    key: str
    event_kind: FunnelEventKind
    threshold: int
    met_label: str
    unmet_label: str

    def label(self, count: int) -> str:
        return self.met_label if count > self.threshold else self.unmet_label


TREND_RULES: tuple[TrendRule, ...] = (
    TrendRule("landing_page_views", FunnelEventKind.LANDING_PAGE_VIEW, 100, "+12.3%", "+5.1%"),
    TrendRule("signup_conversion", FunnelEventKind.SIGNUP_COMPLETED, 50, "+8.7%", "+2.4%"),
    TrendRule("trial_to_upgrade", FunnelEventKind.UPGRADE_CLICKED, 10, "+15.2%", "+3.8%"),
    TrendRule("overall_roi", FunnelEventKind.SUBSCRIPTION_CREATED, 5, "+23.4%", "+8.1%"),
)


def default_funnel_metrics() -> FunnelMetrics:
    """Seed metrics used until the first event has been persisted."""
    return FunnelMetrics(
        landing_page_views=2847,
        cta_clicks=423,
        signup_started=287,
        signup_completed=234,
        trial_activated=234,
        agent_interactions=1842,
        upgrade_clicked=67,
        subscriptions_created=23,
        conversion_rates=ConversionRates(
            landing_to_cta=14.9,
            cta_to_signup=67.8,
            signup_completion=81.5,
            trial_to_upgrade=28.6,
            upgrade_to_paid=34.3,
            overall_conversion=0.81,
        ),
        roi_metrics=RoiMetrics(
            avg_trial_value=47320,
            avg_time_to_upgrade=8.5,
            customer_lifetime_value=186750,
            churn_rate=5.2,
        ),
    )


def ratio_percentage(numerator: int, denominator: int) -> float:
    """Return ``numerator / denominator * 100`` with IEEE semantics for zero.

    0/0 is NaN and n/0 is infinity; neither is coerced to 0.
    """
    if denominator == 0:
        return math.nan if numerator == 0 else math.inf
    return numerator / denominator * 100


def recompute_conversion_rates(metrics: FunnelMetrics) -> FunnelMetrics:
    rates = {
        name: ratio_percentage(getattr(metrics, numerator), getattr(metrics, denominator))
        for name, (numerator, denominator) in RATE_FORMULAS.items()
    }
    return metrics.model_copy(update={"conversion_rates": ConversionRates(**rates)})


def apply_event(metrics: FunnelMetrics, kind: FunnelEventKind) -> FunnelMetrics:
    """Return a copy of ``metrics`` with the counters for ``kind`` incremented."""
    counters = COUNTER_INCREMENTS.get(kind, ())
    if not counters:
        return metrics.model_copy()
    return metrics.model_copy(
        update={name: getattr(metrics, name) + 1 for name in counters}
    )


def evaluate_trends(event_counts: dict[str, int], timeframe: str) -> FunnelTrends:
    period = f"vs previous {timeframe}"
    indicators = {
        rule.key: TrendIndicator(
            trend=rule.label(event_counts.get(rule.event_kind.value, 0)),
            period=period,
        )
        for rule in TREND_RULES
    }
    return FunnelTrends(**indicators)


def generate_event_id(now: datetime | None = None) -> str:
    moment = now or datetime.now(timezone.utc)
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(9))
    return f"evt_{int(moment.timestamp() * 1000)}_{suffix}"


def generate_session_id(now: datetime | None = None) -> str:
    moment = now or datetime.now(timezone.utc)
    return f"sess_{int(moment.timestamp() * 1000)}"


class DemoBreakdownGenerator:
    """Produce a random per-day series for dashboard demos.

    The numbers are placeholders and bear no relation to stored events; the
    resulting breakdown is always flagged ``synthetic``.
    """

    def __init__(self, rng: random.Random | None = None, *, days: int = 30) -> None:
        self._rng = rng or random.Random()
        self._days = days

    def generate(self, *, today: date | None = None) -> FunnelBreakdown:
        end = today or datetime.now(timezone.utc).date()
        points = [
            DailyBreakdownPoint(
                date=end - timedelta(days=offset),
                landing_views=self._rng.randint(50, 199),
                signups=self._rng.randint(5, 24),
                upgrades=self._rng.randint(1, 5),
            )
            for offset in range(self._days - 1, -1, -1)
        ]
        return FunnelBreakdown(synthetic=True, daily=points)


class FunnelAnalyticsService:
    """Track marketing funnel events and report conversion metrics."""

    def __init__(
        self,
        session: AsyncSession,
        *,
        settings: AppSettings | None = None,
        store: ConfigStore | None = None,
        breakdown_generator: DemoBreakdownGenerator | None = None,
    ):
        self._session = session
        self._settings = settings or get_settings()
        self._store = store or ConfigStore(session)
        self._breakdown_generator = breakdown_generator or DemoBreakdownGenerator()

    async def record_event(self, payload: FunnelEventCreate) -> FunnelEventRecord:
        """Apply an event to the aggregate counters and append it to the audit log."""
        now = datetime.now(timezone.utc)
        event = FunnelEventRecord(
            id=generate_event_id(now),
            user_id=payload.user_id,
            session_id=payload.session_id or generate_session_id(now),
            event=payload.event,
            properties=payload.properties,
            timestamp=self._normalize_datetime(payload.timestamp) if payload.timestamp else now,
            user_agent=payload.user_agent,
            referrer=payload.referrer,
        )

        metrics, _ = await self.load_metrics()
        metrics = recompute_conversion_rates(apply_event(metrics, event.event))

        # The audit append and the metrics upsert are independent writes.
        await self._append_audit_entry(event)
        await self._store.put(
            self._settings.funnel_metrics_key,
            metrics.model_dump(mode="json", by_alias=True),
            description="Marketing funnel counters and conversion rates",
            category="analytics",
        )
        logger.debug("Tracked funnel event %s (%s)", event.id, event.event.value)
        return event

    async def load_metrics(self) -> tuple[FunnelMetrics, ConfigEntry | None]:
        """Return the persisted metrics, or the seed defaults when none exist."""
        entry = await self._store.get(self._settings.funnel_metrics_key)
        if entry is None:
            return default_funnel_metrics(), None
        try:
            return FunnelMetrics.model_validate(entry.value), entry
        except SchemaValidationError as exc:
            logger.error("Stored funnel metrics under %s are unreadable: %s", entry.key, exc)
            raise PersistenceError("Stored funnel metrics are unreadable") from exc

    async def report(
        self,
        *,
        timeframe: str = "30d",
        breakdown: bool = False,
        now: datetime | None = None,
    ) -> FunnelReport:
        """Build the funnel report for the requested timeframe."""
        window = TIMEFRAME_WINDOWS.get(timeframe)
        if window is None:
            raise ValidationError(
                "Invalid timeframe",
                errors=[
                    {
                        "field": "timeframe",
                        "message": f"Expected one of {', '.join(TIMEFRAME_WINDOWS)}.",
                    }
                ],
            )

        end = self._normalize_datetime(now)
        metrics, entry = await self.load_metrics()
        event_counts = await self._counts_by_event_kind(since=end - window)

        report = FunnelReport(
            timeframe=timeframe,
            metrics=metrics,
            real_event_counts=event_counts,
            trends=evaluate_trends(event_counts, timeframe),
            top_performing_pages=self._top_pages(metrics),
            conversion_optimizations=self._optimizations(metrics),
            data_source="database" if entry else "defaults",
            last_updated=entry.updated_at if entry else end,
        )
        if breakdown and self._settings.funnel_demo_breakdown:
            report.breakdown = self._breakdown_generator.generate(today=end.date())
        return report

    async def _append_audit_entry(self, event: FunnelEventRecord) -> None:
        record = AuditLog(
            user_id=event.user_id,
            action=FUNNEL_EVENT_ACTION,
            resource=FUNNEL_RESOURCE,
            resource_id=event.id,
            metadata_json=event.model_dump(mode="json", by_alias=True),
            user_agent=event.user_agent,
            timestamp=event.timestamp,
        )
        try:
            self._session.add(record)
            await self._session.flush()
        except SQLAlchemyError as exc:
            logger.exception("Failed to append audit entry for %s", event.id)
            raise PersistenceError("Analytics tracking failed") from exc

    async def _counts_by_event_kind(self, *, since: datetime) -> dict[str, int]:
        stmt = (
            select(AuditLog.metadata_json)
            .where(
                AuditLog.action == FUNNEL_EVENT_ACTION,
                AuditLog.resource == FUNNEL_RESOURCE,
                AuditLog.timestamp >= since,
            )
            .order_by(AuditLog.timestamp.desc())
            .limit(self._settings.funnel_event_window_limit)
        )
        try:
            result = await self._session.execute(stmt)
        except SQLAlchemyError as exc:
            logger.exception("Failed to load recent funnel events")
            raise PersistenceError("Failed to load analytics events") from exc

        counts: Counter[str] = Counter()
        for payload in result.scalars().all():
            kind = (payload or {}).get("event")
            if kind:
                counts[kind] += 1
        return dict(counts)

    def _top_pages(self, metrics: FunnelMetrics) -> list[PagePerformance]:
        return [
            PagePerformance(
                page="/",
                views=metrics.landing_page_views,
                conversions=metrics.signup_completed,
                rate=round(
                    ratio_percentage(metrics.signup_completed, metrics.landing_page_views), 1
                ),
            ),
            PagePerformance(
                page="/signup",
                completions=metrics.signup_completed,
                rate=round(metrics.conversion_rates.signup_completion, 1),
            ),
            PagePerformance(
                page="/trial-dashboard",
                engagements=metrics.agent_interactions,
                upgrade_clicks=metrics.upgrade_clicked,
            ),
        ]

    def _optimizations(self, metrics: FunnelMetrics) -> list[ConversionOptimization]:
        rates = metrics.conversion_rates
        return [
            ConversionOptimization(
                area="Landing Page CTA",
                current_rate=round(rates.landing_to_cta, 1),
                potential_improvement="+3.2%",
                recommendation="A/B test button colors and copy",
            ),
            ConversionOptimization(
                area="Trial Onboarding",
                current_rate=round(rates.signup_completion, 1),
                potential_improvement="+5.8%",
                recommendation="Add progress indicators and guided tour",
            ),
            ConversionOptimization(
                area="Trial to Paid",
                current_rate=round(rates.trial_to_upgrade, 1),
                potential_improvement="+12.4%",
                recommendation="Implement urgency messaging and ROI calculator",
            ),
        ]

    def _normalize_datetime(self, value: datetime | None) -> datetime:
        if value is None:
            return datetime.now(timezone.utc)
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)
