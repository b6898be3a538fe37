from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from trinity_api.api.deps import get_funnel_service
from trinity_api.schemas.funnel import (
    FunnelEventCreate,
    FunnelEventResponse,
    FunnelReportResponse,
    Timeframe,
)
from trinity_api.services.funnel import FunnelAnalyticsService


router = APIRouter()


@router.post(
    "/funnel",
    response_model=FunnelEventResponse,
    summary="Track a marketing funnel event.",
)
async def track_funnel_event(
    payload: FunnelEventCreate,
    service: FunnelAnalyticsService = Depends(get_funnel_service),
) -> FunnelEventResponse:
    event = await service.record_event(payload)
    return FunnelEventResponse(event_id=event.id)


@router.get(
    "/funnel",
    response_model=FunnelReportResponse,
    summary="Retrieve funnel metrics, trends and recommendations.",
)
async def funnel_report(
    timeframe: Timeframe = Query(
        "30d",
        description="Window used for event counts and trend labels.",
    ),
    breakdown: bool = Query(
        False,
        description="Include the synthetic per-day demo series.",
    ),
    service: FunnelAnalyticsService = Depends(get_funnel_service),
) -> FunnelReportResponse:
    report = await service.report(timeframe=timeframe, breakdown=breakdown)
    return FunnelReportResponse(analytics=report)
