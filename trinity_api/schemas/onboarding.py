from __future__ import annotations

from datetime import date, datetime
from enum import Enum
from typing import Any, Literal
from uuid import UUID

from pydantic import Field, JsonValue

from trinity_api.schemas.common import CamelModel, Envelope


class OnboardingStepType(str, Enum):
    WELCOME = "WELCOME"
    PROFILE_SETUP = "PROFILE_SETUP"
    AGENT_INTRODUCTION = "AGENT_INTRODUCTION"
    AGENT_SETUP = "AGENT_SETUP"
    FIRST_INTERACTION = "FIRST_INTERACTION"
    SUCCESS_MILESTONE = "SUCCESS_MILESTONE"
    FEATURE_DISCOVERY = "FEATURE_DISCOVERY"
    INTEGRATION_SETUP = "INTEGRATION_SETUP"
    COMPLETION = "COMPLETION"
    CONVERSION = "CONVERSION"


class OnboardingStepStatus(str, Enum):
    NOT_STARTED = "NOT_STARTED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    SKIPPED = "SKIPPED"
    FAILED = "FAILED"
    ABANDONED = "ABANDONED"


class OnboardingEventType(str, Enum):
    STEP_STARTED = "STEP_STARTED"
    STEP_COMPLETED = "STEP_COMPLETED"
    STEP_SKIPPED = "STEP_SKIPPED"
    STEP_FAILED = "STEP_FAILED"
    STEP_ABANDONED = "STEP_ABANDONED"
    HELP_USED = "HELP_USED"
    ERROR_OCCURRED = "ERROR_OCCURRED"
    CONVERSION = "CONVERSION"
    TEMPLATE_ASSIGNED = "TEMPLATE_ASSIGNED"
    EXPERIMENT_VIEWED = "EXPERIMENT_VIEWED"


# --- catalog -----------------------------------------------------------------


class OnboardingStepCreate(CamelModel):
    """Payload used by administrators to add a catalog step."""

    key: str = Field(..., min_length=1, max_length=64)
    name: str = Field(..., min_length=1, max_length=120)
    description: str | None = None
    type: OnboardingStepType
    category: str | None = Field(default=None, max_length=64)
    order: int = Field(..., ge=0)
    title: str | None = Field(default=None, max_length=200)
    content: dict[str, JsonValue] | None = None
    component: str | None = Field(default=None, max_length=120)
    required: bool = True
    estimated_minutes: int | None = Field(default=None, ge=0)
    skip_allowed: bool = False
    active: bool = True


class OnboardingStepItem(CamelModel):
    id: UUID
    key: str
    name: str
    title: str | None = None
    description: str | None = None
    type: OnboardingStepType
    category: str | None = None
    order: int
    content: dict[str, Any] | None = None
    component: str | None = None
    required: bool
    estimated_minutes: int | None = None
    skip_allowed: bool
    active: bool
    created_at: datetime
    updated_at: datetime


class OnboardingStepListResponse(Envelope):
    steps: list[OnboardingStepItem]


class OnboardingStepResponse(Envelope):
    step: OnboardingStepItem


# --- progress ----------------------------------------------------------------


class OnboardingProgressItem(CamelModel):
    id: UUID
    user_id: str
    step_id: UUID
    status: OnboardingStepStatus
    started_at: datetime | None = None
    completed_at: datetime | None = None
    skipped_at: datetime | None = None
    progress_data: dict[str, Any] | None = None
    completion_data: dict[str, Any] | None = None
    variant_id: str | None = None
    time_spent: int | None = None
    attempts: int
    help_used: bool
    errors: list[dict[str, Any]] = Field(default_factory=list)
    last_error: str | None = None
    step: OnboardingStepItem | None = None


class ProgressAction(str, Enum):
    START = "start"
    COMPLETE = "complete"
    SKIP = "skip"
    FAIL = "fail"
    ABANDON = "abandon"
    HELP = "help"


class OnboardingProgressUpdate(CamelModel):
    user_id: str = Field(..., min_length=1, max_length=64)
    step_id: str = Field(..., min_length=1, max_length=64)
    action: ProgressAction
    data: dict[str, JsonValue] | None = None
    variant_id: str | None = Field(default=None, max_length=64)
    error: str | None = None


class OnboardingProgressListResponse(Envelope):
    progress: list[OnboardingProgressItem]
    completion_percentage: int
    next_step: OnboardingStepItem | None = None


class OnboardingProgressResponse(Envelope):
    progress: OnboardingProgressItem


# --- templates ---------------------------------------------------------------


class TargetAudience(CamelModel):
    industry: list[str] = Field(default_factory=list)
    company_size: list[str] = Field(default_factory=list)
    role: list[str] = Field(default_factory=list)


class OnboardingTemplateCreate(CamelModel):
    name: str = Field(..., min_length=1, max_length=120)
    description: str | None = None
    steps: list[str] = Field(default_factory=list)
    target_audience: TargetAudience = Field(default_factory=TargetAudience)
    industry: str | None = Field(default=None, max_length=64)
    company_size: str | None = Field(default=None, max_length=32)
    role: str | None = Field(default=None, max_length=64)
    weight: int = 0
    active: bool = True


class OnboardingTemplateItem(CamelModel):
    id: UUID
    name: str
    description: str | None = None
    steps: list[Any] = Field(default_factory=list)
    target_audience: dict[str, Any] = Field(default_factory=dict)
    industry: str | None = None
    company_size: str | None = None
    role: str | None = None
    weight: int
    conversion_rate: float | None = None
    completion_rate: float | None = None
    avg_time_to_complete: float | None = None
    active: bool


class OnboardingTemplateListResponse(Envelope):
    templates: list[OnboardingTemplateItem]


class OnboardingTemplateResponse(Envelope):
    template: OnboardingTemplateItem


class UserProfile(CamelModel):
    """Subset of the signup profile used for template targeting."""

    job_title: str | None = None
    industry: str | None = None
    company_size: str | None = None


class TemplateAssignRequest(CamelModel):
    user_id: str = Field(..., min_length=1, max_length=64)
    profile: UserProfile = Field(default_factory=UserProfile)


class TemplateAssignResponse(Envelope):
    template: OnboardingTemplateItem | None = None
    score: int | None = None


# --- checklist ---------------------------------------------------------------


class ChecklistItem(CamelModel):
    id: UUID
    key: str
    title: str
    description: str
    status: OnboardingStepStatus
    estimated_time: int
    optional: bool
    category: str
    reward: str | None = None


class TemplateSummary(CamelModel):
    id: UUID
    name: str
    description: str | None = None


class OnboardingChecklist(CamelModel):
    items: list[ChecklistItem]
    completion_percentage: int
    template: TemplateSummary | None = None


class ChecklistResponse(Envelope, OnboardingChecklist):
    pass


class ChecklistUpdateRequest(CamelModel):
    user_id: str = Field(..., min_length=1, max_length=64)
    action: Literal["mark_completed", "reset_progress"]
    item_ids: list[str] | None = None


class ChecklistUpdateResponse(Envelope):
    message: str
    completed_items: list[OnboardingProgressItem] = Field(default_factory=list)


# --- onboarding analytics ----------------------------------------------------


class OnboardingAnalyticsCreate(CamelModel):
    event_type: OnboardingEventType
    step_id: UUID | None = None
    user_id: str | None = Field(default=None, max_length=64)
    session_id: str | None = Field(default=None, max_length=64)
    event_data: dict[str, JsonValue]
    metadata: dict[str, JsonValue] | None = None
    user_agent: str | None = Field(default=None, max_length=512)
    ip_address: str | None = Field(default=None, max_length=64)
    variant_id: str | None = Field(default=None, max_length=64)
    experiment_id: str | None = Field(default=None, max_length=64)
    page_load_time: float | None = None
    interaction_time: float | None = None
    conversion_step: str | None = Field(default=None, max_length=64)
    conversion_value: float | None = None


class OnboardingAnalyticsFilters(CamelModel):
    start_date: datetime | None = None
    end_date: datetime | None = None
    event_type: OnboardingEventType | None = None
    step_id: UUID | None = None
    user_id: str | None = None
    experiment_id: str | None = None


class StepBrief(CamelModel):
    id: UUID
    name: str
    type: OnboardingStepType
    category: str | None = None


class OnboardingAnalyticsItem(CamelModel):
    id: UUID
    event_type: OnboardingEventType
    step_id: UUID | None = None
    user_id: str | None = None
    session_id: str | None = None
    event_data: dict[str, Any] = Field(default_factory=dict)
    metadata: dict[str, Any] | None = Field(
        default=None, validation_alias="metadata_json"
    )
    user_agent: str | None = None
    ip_address: str | None = None
    variant_id: str | None = None
    experiment_id: str | None = None
    page_load_time: float | None = None
    interaction_time: float | None = None
    conversion_step: str | None = None
    conversion_value: float | None = None
    timestamp: datetime
    step: StepBrief | None = None


class OnboardingAnalyticsBucket(CamelModel):
    """Event count for one aggregation group."""

    key: str | None = None
    day: date | None = Field(default=None, alias="date")
    hour: int | None = None
    count: int


class OnboardingAnalyticsRecordResponse(Envelope):
    event_id: UUID


class OnboardingAnalyticsQueryResponse(Envelope):
    type: Literal["events", "aggregated"]
    data: list[OnboardingAnalyticsItem] | list[OnboardingAnalyticsBucket]
