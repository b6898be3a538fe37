"""SQLAlchemy models and declarative base."""

from trinity_api.models.base import Base  # noqa: F401
from trinity_api.models.entities import (  # noqa: F401
    AuditLog,
    OnboardingAnalyticsEvent,
    OnboardingStep,
    OnboardingTemplate,
    SystemConfig,
    UserOnboardingProgress,
    UserOnboardingTemplate,
)

__all__ = [
    "Base",
    "SystemConfig",
    "AuditLog",
    "OnboardingStep",
    "UserOnboardingProgress",
    "OnboardingTemplate",
    "UserOnboardingTemplate",
    "OnboardingAnalyticsEvent",
]
