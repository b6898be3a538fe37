from __future__ import annotations

import logging
import random
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest
import pytest_asyncio
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from trinity_api.models.entities import (
    OnboardingAnalyticsEvent,
    OnboardingStep,
    OnboardingTemplate,
    UserOnboardingTemplate,
)
from trinity_api.schemas.onboarding import OnboardingTemplateCreate, TargetAudience, UserProfile
from trinity_api.services.onboarding_templates import (
    OnboardingTemplateService,
    order_steps,
    score_template,
)


CATALOG_KEYS = ["welcome", "profile_setup", "agent_introduction", "first_interaction", "done"]


def _catalog() -> list[OnboardingStep]:
    return [OnboardingStep(key=key, name=key, order=index) for index, key in enumerate(CATALOG_KEYS)]


def _keys(steps: list[OnboardingStep]) -> list[str]:
    return [step.key for step in steps]


@pytest_asyncio.fixture()
async def session() -> AsyncSession:
    engine = create_async_engine("sqlite+aiosqlite:///:memory:")
    async with engine.begin() as conn:
        await conn.run_sync(OnboardingStep.__table__.create)
        await conn.run_sync(OnboardingTemplate.__table__.create)
        await conn.run_sync(UserOnboardingTemplate.__table__.create)
        await conn.run_sync(OnboardingAnalyticsEvent.__table__.create)

    session_factory = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)
    async with session_factory() as db_session:
        yield db_session

    await engine.dispose()


def test_order_steps_puts_template_keys_first() -> None:
    template = OnboardingTemplate(name="dev", steps=["first_interaction", "welcome"])

    ordered = order_steps(_catalog(), template)

    assert _keys(ordered) == [
        "first_interaction",
        "welcome",
        "profile_setup",
        "agent_introduction",
        "done",
    ]


def test_order_steps_ignores_unknown_and_repeated_keys() -> None:
    template = OnboardingTemplate(
        name="noisy", steps=["ghost", "done", "done", "profile_setup", "ghost"]
    )

    ordered = order_steps(_catalog(), template)

    assert _keys(ordered) == [
        "done",
        "profile_setup",
        "welcome",
        "agent_introduction",
        "first_interaction",
    ]


@pytest.mark.parametrize("steps", [None, [], ["welcome", 3], {"welcome": 1}, "welcome"])
def test_order_steps_keeps_catalog_order_for_unusable_templates(steps) -> None:
    template = SimpleNamespace(name="broken", steps=steps)

    assert _keys(order_steps(_catalog(), template)) == CATALOG_KEYS
    assert _keys(order_steps(_catalog(), None)) == CATALOG_KEYS


def test_order_steps_never_drops_or_duplicates_steps() -> None:
    rng = random.Random(42)
    pool = CATALOG_KEYS + ["ghost", "other"]

    for _ in range(50):
        keys = [rng.choice(pool) for _ in range(rng.randint(0, 8))]
        ordered = order_steps(_catalog(), OnboardingTemplate(name="random", steps=keys))
        assert sorted(_keys(ordered)) == sorted(CATALOG_KEYS)


def test_score_template_adds_profile_bonuses() -> None:
    template = OnboardingTemplate(
        name="enterprise",
        weight=5,
        target_audience={
            "industry": ["finance"],
            "companySize": ["1000+"],
            "role": ["engineer"],
        },
    )

    full = UserProfile(job_title="Senior Engineer", industry="finance", company_size="1000+")
    partial = UserProfile(job_title="Designer", industry="finance")

    assert score_template(template, full) == 5 + 20 + 15 + 10
    assert score_template(template, partial) == 25
    assert score_template(template, UserProfile()) == 5


@pytest.mark.asyncio
async def test_assign_template_records_best_match(session: AsyncSession) -> None:
    service = OnboardingTemplateService(session)
    await service.create_template(OnboardingTemplateCreate(name="generic", weight=10))
    targeted = await service.create_template(
        OnboardingTemplateCreate(
            name="finance",
            weight=1,
            target_audience=TargetAudience(industry=["finance"]),
        )
    )

    assignment = await service.assign_template("user-1", UserProfile(industry="finance"))

    assert assignment is not None
    assert assignment.template.id == targeted.id
    assert assignment.score == 21

    stored = (await session.execute(select(UserOnboardingTemplate))).scalars().all()
    assert len(stored) == 1
    assert stored[0].assignment_data["score"] == 21

    events = (await session.execute(select(OnboardingAnalyticsEvent))).scalars().all()
    assert [event.event_type for event in events] == ["TEMPLATE_ASSIGNED"]
    assert events[0].event_data["templateName"] == "finance"


@pytest.mark.asyncio
async def test_assign_template_needs_positive_score(session: AsyncSession) -> None:
    service = OnboardingTemplateService(session)
    await service.create_template(OnboardingTemplateCreate(name="unweighted"))

    assert await service.assign_template("user-1", UserProfile()) is None


@pytest.mark.asyncio
async def test_resolve_template_prefers_explicit_then_latest_assignment(
    session: AsyncSession,
) -> None:
    service = OnboardingTemplateService(session)
    older = await service.create_template(OnboardingTemplateCreate(name="older"))
    newer = await service.create_template(OnboardingTemplateCreate(name="newer"))
    explicit = await service.create_template(OnboardingTemplateCreate(name="explicit"))

    now = datetime.now(timezone.utc)
    session.add_all(
        [
            UserOnboardingTemplate(
                user_id="user-1", template_id=older.id, assigned_at=now - timedelta(days=2)
            ),
            UserOnboardingTemplate(
                user_id="user-1", template_id=newer.id, assigned_at=now - timedelta(hours=1)
            ),
        ]
    )
    await session.flush()

    assert (await service.resolve_template("user-1")).id == newer.id
    assert (await service.resolve_template("user-1", explicit.id)).id == explicit.id
    assert (await service.resolve_template("user-1", "not-a-uuid")).id == newer.id
    assert await service.resolve_template("user-2") is None


@pytest.mark.asyncio
async def test_unknown_explicit_template_logs_warning(
    session: AsyncSession, caplog: pytest.LogCaptureFixture
) -> None:
    service = OnboardingTemplateService(session)

    with caplog.at_level(logging.WARNING, logger="trinity_api.services.onboarding_templates"):
        resolved = await service.resolve_template("user-1", "not-a-uuid")

    assert resolved is None
    assert any(
        record.levelno == logging.WARNING and "not-a-uuid" in record.getMessage()
        for record in caplog.records
    )
