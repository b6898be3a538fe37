from collections.abc import AsyncGenerator

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from trinity_api.core.config import get_settings
from trinity_api.core.database import get_session_factory
from trinity_api.services.checklist import OnboardingChecklistService
from trinity_api.services.funnel import FunnelAnalyticsService
from trinity_api.services.onboarding import OnboardingProgressService
from trinity_api.services.onboarding_analytics import OnboardingAnalyticsService
from trinity_api.services.onboarding_catalog import OnboardingCatalogService
from trinity_api.services.onboarding_templates import OnboardingTemplateService


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency that yields an AsyncSession."""
    session = get_session_factory()()
    try:
        yield session
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    finally:
        await session.close()


async def get_funnel_service(
    session: AsyncSession = Depends(get_db_session),
) -> FunnelAnalyticsService:
    return FunnelAnalyticsService(session, settings=get_settings())


async def get_catalog_service(
    session: AsyncSession = Depends(get_db_session),
) -> OnboardingCatalogService:
    return OnboardingCatalogService(session)


async def get_onboarding_analytics_service(
    session: AsyncSession = Depends(get_db_session),
) -> OnboardingAnalyticsService:
    return OnboardingAnalyticsService(session)


async def get_progress_service(
    session: AsyncSession = Depends(get_db_session),
    catalog: OnboardingCatalogService = Depends(get_catalog_service),
    analytics: OnboardingAnalyticsService = Depends(get_onboarding_analytics_service),
) -> OnboardingProgressService:
    """Provide the progress tracker sharing the request session."""
    return OnboardingProgressService(
        session,
        settings=get_settings(),
        catalog=catalog,
        analytics=analytics,
    )


async def get_template_service(
    session: AsyncSession = Depends(get_db_session),
    analytics: OnboardingAnalyticsService = Depends(get_onboarding_analytics_service),
) -> OnboardingTemplateService:
    return OnboardingTemplateService(session, analytics=analytics)


async def get_checklist_service(
    catalog: OnboardingCatalogService = Depends(get_catalog_service),
    progress: OnboardingProgressService = Depends(get_progress_service),
    templates: OnboardingTemplateService = Depends(get_template_service),
) -> OnboardingChecklistService:
    return OnboardingChecklistService(
        catalog=catalog,
        progress=progress,
        templates=templates,
    )
