from __future__ import annotations

import math
import random
import re
from datetime import date, datetime, timedelta, timezone

import pytest
import pytest_asyncio
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from trinity_api.core.config import AppSettings
from trinity_api.core.errors import ValidationError
from trinity_api.models.entities import AuditLog, SystemConfig
from trinity_api.schemas.funnel import FunnelEventCreate, FunnelEventKind
from trinity_api.services.config_store import ConfigStore
from trinity_api.services.funnel import (
    DemoBreakdownGenerator,
    FunnelAnalyticsService,
    apply_event,
    default_funnel_metrics,
    evaluate_trends,
    ratio_percentage,
    recompute_conversion_rates,
)


@pytest_asyncio.fixture()
async def session() -> AsyncSession:
    engine = create_async_engine("sqlite+aiosqlite:///:memory:")
    async with engine.begin() as conn:
        await conn.run_sync(SystemConfig.__table__.create)
        await conn.run_sync(AuditLog.__table__.create)

    session_factory = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)
    async with session_factory() as db_session:
        yield db_session

    await engine.dispose()


def _service(session: AsyncSession, **settings_overrides) -> FunnelAnalyticsService:
    settings = AppSettings(**settings_overrides)
    return FunnelAnalyticsService(
        session,
        settings=settings,
        breakdown_generator=DemoBreakdownGenerator(random.Random(7)),
    )


async def _add_audit_events(
    session: AsyncSession, kind: str, count: int, *, at: datetime | None = None
) -> None:
    moment = at or datetime.now(timezone.utc)
    for index in range(count):
        session.add(
            AuditLog(
                action="analytics_event",
                resource="funnel",
                resource_id=f"evt_seed_{kind}_{index}",
                metadata_json={"event": kind},
                timestamp=moment,
            )
        )
    await session.flush()


def test_default_metrics_are_fresh_values() -> None:
    first = default_funnel_metrics()
    second = default_funnel_metrics()
    first.landing_page_views += 10

    assert second.landing_page_views == 2847
    assert second.subscriptions_created == 23
    assert second.conversion_rates.overall_conversion == 0.81
    assert second.roi_metrics.customer_lifetime_value == 186750


def test_ratio_percentage_keeps_undefined_ratios_distinct() -> None:
    assert math.isnan(ratio_percentage(0, 0))
    assert math.isinf(ratio_percentage(3, 0))
    assert ratio_percentage(1, 4) == 25.0


def test_apply_event_signup_completed_increments_trial_too() -> None:
    metrics = default_funnel_metrics()

    updated = recompute_conversion_rates(apply_event(metrics, FunnelEventKind.SIGNUP_COMPLETED))

    assert updated.signup_completed == metrics.signup_completed + 1
    assert updated.trial_activated == metrics.trial_activated + 1
    assert updated.landing_page_views == metrics.landing_page_views
    assert updated.conversion_rates.signup_completion == pytest.approx(235 / 287 * 100)
    assert updated.conversion_rates.trial_to_upgrade == pytest.approx(67 / 235 * 100)


def test_apply_event_ignores_kinds_without_counters() -> None:
    metrics = default_funnel_metrics()

    for kind in (
        FunnelEventKind.PRICING_VIEW,
        FunnelEventKind.TRIAL_DASHBOARD_VIEW,
        FunnelEventKind.TRIAL_EXPIRED,
    ):
        assert apply_event(metrics, kind).model_dump() == metrics.model_dump()


def test_evaluate_trends_uses_fixed_thresholds() -> None:
    busy = evaluate_trends(
        {
            "landing_page_view": 150,
            "signup_completed": 51,
            "upgrade_clicked": 11,
            "subscription_created": 6,
        },
        "7d",
    )
    quiet = evaluate_trends({"landing_page_view": 50}, "7d")

    assert busy.landing_page_views.trend == "+12.3%"
    assert busy.signup_conversion.trend == "+8.7%"
    assert busy.trial_to_upgrade.trend == "+15.2%"
    assert busy.overall_roi.trend == "+23.4%"
    assert busy.landing_page_views.period == "vs previous 7d"

    assert quiet.landing_page_views.trend == "+5.1%"
    assert quiet.signup_conversion.trend == "+2.4%"
    assert quiet.trial_to_upgrade.trend == "+3.8%"
    assert quiet.overall_roi.trend == "+8.1%"


def test_demo_breakdown_is_flagged_and_bounded() -> None:
    breakdown = DemoBreakdownGenerator(random.Random(1)).generate(today=date(2026, 3, 31))

    assert breakdown.synthetic is True
    assert len(breakdown.daily) == 30
    assert breakdown.daily[0].date == date(2026, 3, 2)
    assert breakdown.daily[-1].date == date(2026, 3, 31)
    for point in breakdown.daily:
        assert 50 <= point.landing_views <= 199
        assert 5 <= point.signups <= 24
        assert 1 <= point.upgrades <= 5


@pytest.mark.asyncio
async def test_record_event_persists_metrics_and_audit_entry(session: AsyncSession) -> None:
    service = _service(session)

    event = await service.record_event(
        FunnelEventCreate(
            event=FunnelEventKind.SIGNUP_COMPLETED,
            user_id="user-1",
            properties={"plan": "trial", "seats": 3},
            user_agent="pytest",
        )
    )

    assert re.fullmatch(r"evt_\d+_[a-z0-9]{9}", event.id)
    assert re.fullmatch(r"sess_\d+", event.session_id)

    entry = await ConfigStore(session).get("funnel_metrics")
    assert entry is not None
    assert entry.value["signupCompleted"] == 235
    assert entry.value["trialActivated"] == 235
    assert entry.value["conversionRates"]["signupCompletion"] == pytest.approx(235 / 287 * 100)

    audit = (await session.execute(select(AuditLog))).scalars().all()
    assert len(audit) == 1
    assert audit[0].action == "analytics_event"
    assert audit[0].resource == "funnel"
    assert audit[0].resource_id == event.id
    assert audit[0].metadata_json["event"] == "signup_completed"
    assert audit[0].metadata_json["properties"] == {"plan": "trial", "seats": 3}


@pytest.mark.asyncio
async def test_rates_are_recomputed_after_every_event(session: AsyncSession) -> None:
    service = _service(session)

    for kind in (
        FunnelEventKind.LANDING_PAGE_VIEW,
        FunnelEventKind.CTA_CLICK,
        FunnelEventKind.PRICING_VIEW,
    ):
        await service.record_event(FunnelEventCreate(event=kind, properties={}))

    metrics, entry = await service.load_metrics()
    assert entry is not None
    assert metrics.landing_page_views == 2848
    assert metrics.cta_clicks == 424
    rates = metrics.conversion_rates
    assert rates.landing_to_cta == pytest.approx(424 / 2848 * 100)
    assert rates.cta_to_signup == pytest.approx(287 / 424 * 100)
    assert rates.overall_conversion == pytest.approx(23 / 2848 * 100)


@pytest.mark.asyncio
async def test_zero_denominators_are_stored_as_null(session: AsyncSession) -> None:
    service = _service(session)
    empty = default_funnel_metrics().model_copy(
        update={
            "landing_page_views": 0,
            "cta_clicks": 0,
            "signup_started": 0,
            "signup_completed": 0,
            "trial_activated": 0,
            "agent_interactions": 0,
            "upgrade_clicked": 0,
            "subscriptions_created": 0,
        }
    )
    await ConfigStore(session).put(
        "funnel_metrics", recompute_conversion_rates(empty).model_dump(mode="json", by_alias=True)
    )

    await service.record_event(FunnelEventCreate(event=FunnelEventKind.CTA_CLICK, properties={}))

    entry = await ConfigStore(session).get("funnel_metrics")
    assert entry.value["ctaClicks"] == 1
    assert entry.value["conversionRates"]["landingToCta"] is None
    assert entry.value["conversionRates"]["ctaToSignup"] == 0

    metrics, _ = await service.load_metrics()
    assert math.isnan(metrics.conversion_rates.landing_to_cta)
    assert math.isnan(metrics.conversion_rates.signup_completion)


@pytest.mark.asyncio
async def test_report_falls_back_to_defaults(session: AsyncSession) -> None:
    report = await _service(session).report()

    assert report.data_source == "defaults"
    assert report.timeframe == "30d"
    assert report.metrics.landing_page_views == 2847
    assert report.real_event_counts == {}
    assert report.breakdown is None
    assert report.top_performing_pages[0].page == "/"
    assert report.top_performing_pages[0].rate == 8.2
    assert [item.area for item in report.conversion_optimizations] == [
        "Landing Page CTA",
        "Trial Onboarding",
        "Trial to Paid",
    ]


@pytest.mark.asyncio
async def test_report_counts_events_inside_window(session: AsyncSession) -> None:
    now = datetime.now(timezone.utc)
    await _add_audit_events(session, "landing_page_view", 150, at=now - timedelta(hours=1))
    await _add_audit_events(session, "signup_completed", 3, at=now - timedelta(hours=2))
    await _add_audit_events(session, "landing_page_view", 20, at=now - timedelta(days=3))

    daily = await _service(session).report(timeframe="1d", now=now)
    weekly = await _service(session).report(timeframe="7d", now=now)

    assert daily.real_event_counts == {"landing_page_view": 150, "signup_completed": 3}
    assert daily.trends.landing_page_views.trend == "+12.3%"
    assert daily.trends.signup_conversion.trend == "+2.4%"
    assert daily.trends.landing_page_views.period == "vs previous 1d"
    assert weekly.real_event_counts["landing_page_view"] == 170


@pytest.mark.asyncio
async def test_report_window_is_capped_by_setting(session: AsyncSession) -> None:
    await _add_audit_events(session, "cta_click", 12)

    report = await _service(session, funnel_event_window_limit=5).report()

    assert report.real_event_counts == {"cta_click": 5}


@pytest.mark.asyncio
async def test_report_after_ingestion_reads_database(session: AsyncSession) -> None:
    service = _service(session)
    await service.record_event(FunnelEventCreate(event=FunnelEventKind.UPGRADE_CLICKED, properties={}))

    report = await service.report(timeframe="7d")

    assert report.data_source == "database"
    assert report.metrics.upgrade_clicked == 68
    assert report.real_event_counts == {"upgrade_clicked": 1}


@pytest.mark.asyncio
async def test_report_breakdown_respects_setting(session: AsyncSession) -> None:
    enabled = await _service(session).report(breakdown=True)
    disabled = await _service(session, funnel_demo_breakdown=False).report(breakdown=True)

    assert enabled.breakdown is not None
    assert enabled.breakdown.synthetic is True
    assert len(enabled.breakdown.daily) == 30
    assert disabled.breakdown is None


@pytest.mark.asyncio
async def test_report_rejects_unknown_timeframe(session: AsyncSession) -> None:
    with pytest.raises(ValidationError) as excinfo:
        await _service(session).report(timeframe="90d")

    assert excinfo.value.errors[0]["field"] == "timeframe"
