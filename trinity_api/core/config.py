from functools import lru_cache
from typing import Literal, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class AppSettings(BaseSettings):
    """Application configuration loaded from environment or .env."""

    app_name: str = Field(default="x3o.ai Trinity Growth API")
    app_env: str = Field(default="dev", alias="APP_ENV")
    debug: bool = Field(default=False, alias="APP_DEBUG")
    api_host: str = Field(default="127.0.0.1", alias="API_HOST")
    api_port: int = Field(default=8000, alias="API_PORT")
    cors_allow_origins: list[str] = Field(
        default_factory=lambda: ["*"], alias="CORS_ALLOW_ORIGINS"
    )
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    database_url: Optional[str] = Field(default=None, alias="DATABASE_URL")

    funnel_metrics_key: str = Field(default="funnel_metrics", alias="FUNNEL_METRICS_KEY")
    funnel_event_window_limit: int = Field(
        default=1000, ge=1, alias="FUNNEL_EVENT_WINDOW_LIMIT"
    )
    funnel_demo_breakdown: bool = Field(default=True, alias="FUNNEL_DEMO_BREAKDOWN")
    onboarding_completion_policy: Literal["all_active", "required_only"] = Field(
        default="all_active", alias="ONBOARDING_COMPLETION_POLICY"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        populate_by_name=True,
    )


@lru_cache
def get_settings() -> AppSettings:
    """Return cached application settings."""
    return AppSettings()  # type: ignore[call-arg]
