from __future__ import annotations

from datetime import date, datetime
from enum import Enum
from typing import Literal

from pydantic import Field, JsonValue

from trinity_api.schemas.common import CamelModel, Envelope, Rate


Timeframe = Literal["1d", "7d", "30d"]


class FunnelEventKind(str, Enum):
    """Marketing funnel events accepted by the ingestion endpoint."""

    LANDING_PAGE_VIEW = "landing_page_view"
    CTA_CLICK = "cta_click"
    SIGNUP_STARTED = "signup_started"
    SIGNUP_COMPLETED = "signup_completed"
    TRIAL_DASHBOARD_VIEW = "trial_dashboard_view"
    AGENT_INTERACTION = "agent_interaction"
    PRICING_VIEW = "pricing_view"
    UPGRADE_CLICKED = "upgrade_clicked"
    SUBSCRIPTION_CREATED = "subscription_created"
    TRIAL_EXPIRED = "trial_expired"


class ConversionRates(CamelModel):
    """Stage-to-stage conversion percentages derived from the counters."""

    landing_to_cta: Rate
    cta_to_signup: Rate
    signup_completion: Rate
    trial_to_upgrade: Rate
    upgrade_to_paid: Rate
    overall_conversion: Rate


class RoiMetrics(CamelModel):
    """Static ROI figures reported next to the funnel."""

    avg_trial_value: float
    avg_time_to_upgrade: float
    customer_lifetime_value: float
    churn_rate: float


class FunnelMetrics(CamelModel):
    """Aggregate funnel counters persisted under a single configuration key."""

    landing_page_views: int = Field(..., ge=0)
    cta_clicks: int = Field(..., ge=0)
    signup_started: int = Field(..., ge=0)
    signup_completed: int = Field(..., ge=0)
    trial_activated: int = Field(..., ge=0)
    agent_interactions: int = Field(..., ge=0)
    upgrade_clicked: int = Field(..., ge=0)
    subscriptions_created: int = Field(..., ge=0)
    conversion_rates: ConversionRates
    roi_metrics: RoiMetrics


class FunnelEventCreate(CamelModel):
    """Payload accepted when tracking a funnel event."""

    user_id: str | None = Field(default=None, max_length=64)
    session_id: str | None = Field(default=None, max_length=64)
    event: FunnelEventKind
    properties: dict[str, JsonValue]
    timestamp: datetime | None = None
    user_agent: str | None = Field(default=None, max_length=512)
    referrer: str | None = Field(default=None, max_length=2048)


class FunnelEventRecord(CamelModel):
    """Immutable event as written to the audit log."""

    id: str
    user_id: str | None = None
    session_id: str
    event: FunnelEventKind
    properties: dict[str, JsonValue] = Field(default_factory=dict)
    timestamp: datetime
    user_agent: str | None = None
    referrer: str | None = None


class FunnelEventResponse(Envelope):
    """Response returned after an event has been tracked."""

    event_id: str
    message: str = "Analytics event tracked successfully"


class TrendIndicator(CamelModel):
    trend: str
    period: str


class FunnelTrends(CamelModel):
    landing_page_views: TrendIndicator
    signup_conversion: TrendIndicator
    trial_to_upgrade: TrendIndicator
    overall_roi: TrendIndicator = Field(..., alias="overallROI")


class PagePerformance(CamelModel):
    """Headline numbers for a key funnel page."""

    page: str
    views: int | None = None
    conversions: int | None = None
    completions: int | None = None
    engagements: int | None = None
    upgrade_clicks: int | None = None
    rate: Rate | None = None


class ConversionOptimization(CamelModel):
    area: str
    current_rate: Rate
    potential_improvement: str
    recommendation: str


class DailyBreakdownPoint(CamelModel):
    date: date
    landing_views: int
    signups: int
    upgrades: int


class FunnelBreakdown(CamelModel):
    """Per-day series. Values are generated placeholders, not measured data."""

    synthetic: bool = True
    daily: list[DailyBreakdownPoint]


class FunnelReport(CamelModel):
    timeframe: Timeframe
    metrics: FunnelMetrics
    real_event_counts: dict[str, int]
    trends: FunnelTrends
    top_performing_pages: list[PagePerformance]
    conversion_optimizations: list[ConversionOptimization]
    data_source: Literal["database", "defaults"]
    last_updated: datetime
    breakdown: FunnelBreakdown | None = None


class FunnelReportResponse(Envelope):
    analytics: FunnelReport
