from __future__ import annotations

from datetime import datetime
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request, status

from trinity_api.api.deps import (
    get_catalog_service,
    get_checklist_service,
    get_onboarding_analytics_service,
    get_progress_service,
    get_template_service,
)
from trinity_api.core.errors import ValidationError
from trinity_api.schemas.onboarding import (
    ChecklistResponse,
    ChecklistUpdateRequest,
    ChecklistUpdateResponse,
    OnboardingAnalyticsCreate,
    OnboardingAnalyticsFilters,
    OnboardingAnalyticsItem,
    OnboardingAnalyticsQueryResponse,
    OnboardingAnalyticsRecordResponse,
    OnboardingEventType,
    OnboardingProgressItem,
    OnboardingProgressListResponse,
    OnboardingProgressResponse,
    OnboardingProgressUpdate,
    OnboardingStepCreate,
    OnboardingStepItem,
    OnboardingStepListResponse,
    OnboardingStepResponse,
    OnboardingTemplateCreate,
    OnboardingTemplateItem,
    OnboardingTemplateListResponse,
    OnboardingTemplateResponse,
    TemplateAssignRequest,
    TemplateAssignResponse,
)
from trinity_api.services.checklist import OnboardingChecklistService
from trinity_api.services.onboarding import OnboardingProgressService
from trinity_api.services.onboarding_analytics import (
    DEFAULT_EVENT_LIMIT,
    OnboardingAnalyticsService,
)
from trinity_api.services.onboarding_catalog import OnboardingCatalogService
from trinity_api.services.onboarding_templates import OnboardingTemplateService


router = APIRouter()


def _client_ip(request: Request) -> str | None:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",", 1)[0].strip() or None
    return request.headers.get("x-real-ip")


# --- catalog -----------------------------------------------------------------


@router.get(
    "/steps",
    response_model=OnboardingStepListResponse,
    summary="List active onboarding steps in catalog order.",
)
async def list_steps(
    service: OnboardingCatalogService = Depends(get_catalog_service),
) -> OnboardingStepListResponse:
    steps = await service.list_steps(active_only=True)
    return OnboardingStepListResponse(
        steps=[OnboardingStepItem.model_validate(step) for step in steps]
    )


@router.post(
    "/steps",
    response_model=OnboardingStepResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Add a step to the onboarding catalog.",
)
async def create_step(
    payload: OnboardingStepCreate,
    service: OnboardingCatalogService = Depends(get_catalog_service),
) -> OnboardingStepResponse:
    step = await service.create_step(payload)
    return OnboardingStepResponse(step=OnboardingStepItem.model_validate(step))


# --- progress ----------------------------------------------------------------


@router.get(
    "/progress",
    response_model=OnboardingProgressListResponse,
    summary="Fetch a user's onboarding progress and completion percentage.",
)
async def get_progress(
    user_id: str = Query(..., alias="userId", min_length=1, description="Opaque user identifier."),
    service: OnboardingProgressService = Depends(get_progress_service),
) -> OnboardingProgressListResponse:
    records = await service.get_progress(user_id)
    next_step = await service.get_next_step(user_id)
    return OnboardingProgressListResponse(
        progress=[OnboardingProgressItem.model_validate(record) for record in records],
        completion_percentage=await service.get_completion_percentage(user_id),
        next_step=OnboardingStepItem.model_validate(next_step) if next_step else None,
    )


@router.post(
    "/progress",
    response_model=OnboardingProgressResponse,
    summary="Apply a progress action (start, complete, skip, fail, abandon, help).",
)
async def update_progress(
    payload: OnboardingProgressUpdate,
    service: OnboardingProgressService = Depends(get_progress_service),
) -> OnboardingProgressResponse:
    record = await service.apply_action(
        payload.user_id,
        payload.step_id,
        payload.action,
        data=payload.data,
        variant_id=payload.variant_id,
        error=payload.error,
    )
    return OnboardingProgressResponse(progress=OnboardingProgressItem.model_validate(record))


# --- checklist ---------------------------------------------------------------


@router.get(
    "/checklist",
    response_model=ChecklistResponse,
    summary="Build the onboarding checklist for a user.",
)
async def get_checklist(
    user_id: str = Query(..., alias="userId", min_length=1),
    template_id: str | None = Query(
        None,
        alias="templateId",
        description="Template to order the checklist by; defaults to the user's assignment.",
    ),
    service: OnboardingChecklistService = Depends(get_checklist_service),
) -> ChecklistResponse:
    checklist = await service.build(user_id, template_id)
    return ChecklistResponse(**checklist.model_dump())


@router.post(
    "/checklist",
    response_model=ChecklistUpdateResponse,
    summary="Mark checklist items completed or reset a user's progress.",
)
async def update_checklist(
    payload: ChecklistUpdateRequest,
    service: OnboardingChecklistService = Depends(get_checklist_service),
) -> ChecklistUpdateResponse:
    if payload.action == "reset_progress":
        await service.reset_progress(payload.user_id)
        return ChecklistUpdateResponse(message="Onboarding progress reset successfully")

    if payload.item_ids is None:
        raise ValidationError(
            "Item IDs array is required for mark_completed action",
            errors=[{"field": "itemIds", "message": "Field required for action 'mark_completed'."}],
        )
    records = await service.mark_completed(payload.user_id, payload.item_ids)
    return ChecklistUpdateResponse(
        message=f"Marked {len(records)} items as completed",
        completed_items=[OnboardingProgressItem.model_validate(record) for record in records],
    )


# --- templates ---------------------------------------------------------------


@router.get(
    "/templates",
    response_model=OnboardingTemplateListResponse,
    summary="List onboarding templates.",
)
async def list_templates(
    active_only: bool = Query(True, alias="activeOnly"),
    service: OnboardingTemplateService = Depends(get_template_service),
) -> OnboardingTemplateListResponse:
    templates = await service.list_templates(active_only=active_only)
    return OnboardingTemplateListResponse(
        templates=[OnboardingTemplateItem.model_validate(template) for template in templates]
    )


@router.post(
    "/templates",
    response_model=OnboardingTemplateResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create an onboarding template.",
)
async def create_template(
    payload: OnboardingTemplateCreate,
    service: OnboardingTemplateService = Depends(get_template_service),
) -> OnboardingTemplateResponse:
    template = await service.create_template(payload)
    return OnboardingTemplateResponse(template=OnboardingTemplateItem.model_validate(template))


@router.post(
    "/templates/assign",
    response_model=TemplateAssignResponse,
    summary="Assign the best matching template to a user based on their profile.",
)
async def assign_template(
    payload: TemplateAssignRequest,
    service: OnboardingTemplateService = Depends(get_template_service),
) -> TemplateAssignResponse:
    assignment = await service.assign_template(payload.user_id, payload.profile)
    if assignment is None:
        return TemplateAssignResponse()
    return TemplateAssignResponse(
        template=OnboardingTemplateItem.model_validate(assignment.template),
        score=assignment.score,
    )


# --- analytics ---------------------------------------------------------------


@router.post(
    "/analytics",
    response_model=OnboardingAnalyticsRecordResponse,
    summary="Record an onboarding analytics event.",
)
async def record_onboarding_event(
    payload: OnboardingAnalyticsCreate,
    request: Request,
    service: OnboardingAnalyticsService = Depends(get_onboarding_analytics_service),
) -> OnboardingAnalyticsRecordResponse:
    event = await service.record_event(
        payload,
        ip_address=_client_ip(request),
        user_agent=request.headers.get("user-agent"),
    )
    return OnboardingAnalyticsRecordResponse(event_id=event.id)


@router.get(
    "/analytics",
    response_model=OnboardingAnalyticsQueryResponse,
    summary="Query raw or aggregated onboarding analytics events.",
)
async def query_onboarding_events(
    start_date: datetime | None = Query(None, alias="startDate"),
    end_date: datetime | None = Query(None, alias="endDate"),
    event_type: OnboardingEventType | None = Query(None, alias="eventType"),
    step_id: UUID | None = Query(None, alias="stepId"),
    user_id: str | None = Query(None, alias="userId"),
    experiment_id: str | None = Query(None, alias="experimentId"),
    limit: int = Query(DEFAULT_EVENT_LIMIT, ge=1, le=1000),
    group_by: str | None = Query(
        None,
        alias="groupBy",
        description="One of eventType, stepId, date or hour; omit for raw events.",
    ),
    service: OnboardingAnalyticsService = Depends(get_onboarding_analytics_service),
) -> OnboardingAnalyticsQueryResponse:
    filters = OnboardingAnalyticsFilters(
        start_date=start_date,
        end_date=end_date,
        event_type=event_type,
        step_id=step_id,
        user_id=user_id,
        experiment_id=experiment_id,
    )
    if group_by:
        buckets = await service.aggregate(filters, group_by=group_by, limit=limit)
        return OnboardingAnalyticsQueryResponse(type="aggregated", data=buckets)

    events = await service.list_events(filters, limit=limit)
    return OnboardingAnalyticsQueryResponse(
        type="events",
        data=[OnboardingAnalyticsItem.model_validate(event) for event in events],
    )
