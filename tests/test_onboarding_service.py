from __future__ import annotations

import pytest
import pytest_asyncio
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from trinity_api.core.config import AppSettings
from trinity_api.core.errors import NotFoundError, ValidationError
from trinity_api.models.entities import (
    OnboardingAnalyticsEvent,
    OnboardingStep,
    UserOnboardingProgress,
)
from trinity_api.schemas.onboarding import OnboardingStepCreate, OnboardingStepType, ProgressAction
from trinity_api.services.onboarding import OnboardingProgressService, completion_percentage
from trinity_api.services import onboarding_catalog
from trinity_api.services.onboarding_catalog import OnboardingCatalogService, load_default_steps


@pytest_asyncio.fixture()
async def session() -> AsyncSession:
    engine = create_async_engine("sqlite+aiosqlite:///:memory:")
    async with engine.begin() as conn:
        await conn.run_sync(OnboardingStep.__table__.create)
        await conn.run_sync(UserOnboardingProgress.__table__.create)
        await conn.run_sync(OnboardingAnalyticsEvent.__table__.create)

    session_factory = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)
    async with session_factory() as db_session:
        yield db_session

    await engine.dispose()


@pytest_asyncio.fixture()
async def seeded_session(session: AsyncSession) -> AsyncSession:
    await OnboardingCatalogService(session).seed_default_steps()
    return session


def _tracker(session: AsyncSession, policy: str = "all_active") -> OnboardingProgressService:
    return OnboardingProgressService(
        session, settings=AppSettings(onboarding_completion_policy=policy)
    )


async def _event_types(session: AsyncSession) -> list[str]:
    result = await session.execute(select(OnboardingAnalyticsEvent.event_type))
    return sorted(result.scalars().all())


def test_completion_percentage_rounds_half_up() -> None:
    assert completion_percentage(0, 8) == 0
    assert completion_percentage(1, 8) == 13
    assert completion_percentage(3, 8) == 38
    assert completion_percentage(8, 8) == 100
    assert completion_percentage(0, 0) == 100


def test_packaged_catalog_has_eight_ordered_steps() -> None:
    steps = load_default_steps()

    assert [step.order for step in steps] == list(range(1, 9))
    assert steps[0].key == "welcome"
    assert steps[0].title == "Welcome to x3o.ai Trinity Agents"
    optional = [step.key for step in steps if not step.required]
    assert optional == ["feature_discovery"]
    assert [step.key for step in steps if step.skip_allowed] == ["feature_discovery"]


def test_packaged_catalog_falls_back_to_module_path(monkeypatch: pytest.MonkeyPatch) -> None:
    def multiplexed_files(package: str):
        raise NotADirectoryError("MultiplexedPath only supports directories")

    monkeypatch.setattr(onboarding_catalog.resources, "files", multiplexed_files)

    steps = load_default_steps()

    assert len(steps) == 8
    assert steps[-1].key == "onboarding_complete"


@pytest.mark.asyncio
async def test_seed_default_steps_is_idempotent(session: AsyncSession) -> None:
    catalog = OnboardingCatalogService(session)

    await catalog.seed_default_steps()
    await catalog.seed_default_steps()

    steps = await catalog.list_steps()
    assert len(steps) == 8
    assert [step.key for step in steps][:3] == ["welcome", "profile_setup", "agent_introduction"]


@pytest.mark.asyncio
async def test_create_step_rejects_duplicate_key(seeded_session: AsyncSession) -> None:
    catalog = OnboardingCatalogService(seeded_session)

    with pytest.raises(ValidationError):
        await catalog.create_step(
            OnboardingStepCreate(key="welcome", name="Again", type=OnboardingStepType.WELCOME, order=9)
        )


@pytest.mark.asyncio
async def test_get_step_accepts_key_or_uuid(seeded_session: AsyncSession) -> None:
    catalog = OnboardingCatalogService(seeded_session)

    by_key = await catalog.get_step("profile_setup")
    by_id = await catalog.get_step(str(by_key.id))

    assert by_id.id == by_key.id
    with pytest.raises(NotFoundError):
        await catalog.get_step("does_not_exist")


@pytest.mark.asyncio
async def test_complete_step_is_idempotent_and_last_payload_wins(
    seeded_session: AsyncSession,
) -> None:
    tracker = _tracker(seeded_session)

    first = await tracker.complete_step("user-1", "welcome", {"answer": "a"})
    first_completed_at = first.completed_at
    second = await tracker.complete_step("user-1", "welcome", {"answer": "b"})

    assert second.id == first.id
    assert second.status == "COMPLETED"
    assert second.completion_data == {"answer": "b"}
    assert second.completed_at >= first_completed_at

    records = await tracker.get_progress("user-1")
    assert len(records) == 1


@pytest.mark.asyncio
async def test_completion_percentage_spans_zero_to_hundred(seeded_session: AsyncSession) -> None:
    tracker = _tracker(seeded_session)
    catalog = OnboardingCatalogService(seeded_session)

    assert await tracker.get_completion_percentage("user-1") == 0

    await tracker.complete_step("user-1", "welcome")
    assert await tracker.get_completion_percentage("user-1") == 13

    for step in await catalog.list_steps():
        await tracker.complete_step("user-1", step.key)
    assert await tracker.get_completion_percentage("user-1") == 100


@pytest.mark.asyncio
async def test_required_only_policy_ignores_optional_steps(seeded_session: AsyncSession) -> None:
    tracker = _tracker(seeded_session, policy="required_only")

    for step in await OnboardingCatalogService(seeded_session).list_steps():
        if step.required:
            await tracker.complete_step("user-1", step.key)

    assert await tracker.get_completion_percentage("user-1") == 100
    assert await _tracker(seeded_session).get_completion_percentage("user-1") == 88


@pytest.mark.asyncio
async def test_empty_catalog_counts_as_complete(session: AsyncSession) -> None:
    assert await _tracker(session).get_completion_percentage("user-1") == 100


@pytest.mark.asyncio
async def test_skip_requires_skippable_step(seeded_session: AsyncSession) -> None:
    tracker = _tracker(seeded_session)

    with pytest.raises(ValidationError):
        await tracker.skip_step("user-1", "welcome")

    record = await tracker.skip_step("user-1", "feature_discovery", reason="later")
    assert record.status == "SKIPPED"
    assert record.skipped_at is not None
    assert await tracker.get_progress("user-1") == [record]


@pytest.mark.asyncio
async def test_start_fail_and_retry_track_attempts(seeded_session: AsyncSession) -> None:
    tracker = _tracker(seeded_session)

    await tracker.start_step("user-1", "first_interaction", variant_id="b")
    failed = await tracker.fail_step("user-1", "first_interaction", "agent timed out")
    assert failed.status == "FAILED"
    assert failed.last_error == "agent timed out"
    assert len(failed.errors) == 1

    retried = await tracker.start_step("user-1", "first_interaction")
    assert retried.status == "IN_PROGRESS"
    assert retried.attempts == 2
    assert retried.variant_id == "b"

    completed = await tracker.complete_step("user-1", "first_interaction", {"ok": True})
    assert completed.time_spent is not None
    assert completed.time_spent >= 0


@pytest.mark.asyncio
async def test_disallowed_transitions_are_rejected(seeded_session: AsyncSession) -> None:
    tracker = _tracker(seeded_session)

    with pytest.raises(ValidationError):
        await tracker.fail_step("user-1", "welcome", "boom")
    with pytest.raises(ValidationError):
        await tracker.abandon_step("user-1", "welcome")
    with pytest.raises(ValidationError):
        await tracker.fail_step("user-1", "welcome", "   ")

    await tracker.complete_step("user-1", "welcome")
    with pytest.raises(ValidationError):
        await tracker.start_step("user-1", "welcome")
    with pytest.raises(ValidationError):
        await tracker.mark_help_used("user-1", "welcome")

    with pytest.raises(NotFoundError):
        await tracker.start_step("user-1", "missing_step")


@pytest.mark.asyncio
async def test_abandon_and_help_actions(seeded_session: AsyncSession) -> None:
    tracker = _tracker(seeded_session)

    helped = await tracker.apply_action("user-1", "profile_setup", ProgressAction.HELP)
    assert helped.help_used is True
    assert helped.status == "NOT_STARTED"

    await tracker.apply_action("user-1", "profile_setup", ProgressAction.START)
    abandoned = await tracker.apply_action("user-1", "profile_setup", ProgressAction.ABANDON)
    assert abandoned.status == "ABANDONED"

    assert await _event_types(seeded_session) == [
        "HELP_USED",
        "STEP_ABANDONED",
        "STEP_STARTED",
    ]


@pytest.mark.asyncio
async def test_next_step_skips_completed_and_optional(seeded_session: AsyncSession) -> None:
    tracker = _tracker(seeded_session)
    catalog = OnboardingCatalogService(seeded_session)

    first = await tracker.get_next_step("user-1")
    assert first is not None and first.key == "welcome"

    for step in await catalog.list_steps():
        if step.key != "onboarding_complete":
            await tracker.complete_step("user-1", step.key)
    remaining = await tracker.get_next_step("user-1")
    assert remaining is not None and remaining.key == "onboarding_complete"

    await tracker.complete_step("user-1", "onboarding_complete")
    assert await tracker.get_next_step("user-1") is None


@pytest.mark.asyncio
async def test_progress_is_returned_in_catalog_order(seeded_session: AsyncSession) -> None:
    tracker = _tracker(seeded_session)

    await tracker.complete_step("user-1", "success_milestone")
    await tracker.start_step("user-1", "welcome")
    await tracker.complete_step("user-2", "profile_setup")

    records = await tracker.get_progress("user-1")
    assert [record.step.key for record in records] == ["welcome", "success_milestone"]


@pytest.mark.asyncio
async def test_reset_removes_only_the_users_records(seeded_session: AsyncSession) -> None:
    tracker = _tracker(seeded_session)
    await tracker.complete_step("user-1", "welcome")
    await tracker.complete_step("user-1", "profile_setup")
    await tracker.complete_step("user-2", "welcome")

    removed = await tracker.reset("user-1")

    assert removed == 2
    assert await tracker.get_progress("user-1") == []
    assert len(await tracker.get_progress("user-2")) == 1
