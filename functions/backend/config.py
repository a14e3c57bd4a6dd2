"""
Configuration and settings for the Viraly backend.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from shared.constants import (
    ANALYSIS_MODEL,
    CONTACT_DEFAULT_TO_EMAIL,
    CONTACT_RATE_LIMIT_MAX_REQUESTS,
    CONTACT_RATE_LIMIT_WINDOW_SECONDS,
)


class Settings(BaseSettings):
    """Environment-backed settings for the FastAPI service."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    api_prefix: str = Field(default="/api")
    log_level: str = Field(default="INFO")
    allowed_origins: list[str] = Field(default_factory=list)
    http_timeout_seconds: float = Field(default=30)

    # Database (Postgres expected)
    database_url: Optional[str] = Field(default=None)

    # Identity provider (Supabase GoTrue)
    supabase_url: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("SUPABASE_URL", "VITE_SUPABASE_URL"),
    )
    supabase_anon_key: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("SUPABASE_ANON_KEY", "VITE_SUPABASE_ANON_KEY"),
    )
    supabase_service_role_key: Optional[str] = Field(default=None)

    # Email (Resend)
    resend_api_key: Optional[str] = Field(default=None)
    contact_from_email: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("CONTACT_FROM_EMAIL", "FROM_EMAIL"),
    )
    contact_to_email: str = Field(default=CONTACT_DEFAULT_TO_EMAIL)
    contact_rate_limit_max_requests: int = Field(
        default=CONTACT_RATE_LIMIT_MAX_REQUESTS
    )
    contact_rate_limit_window_seconds: int = Field(
        default=CONTACT_RATE_LIMIT_WINDOW_SECONDS
    )

    # LLM / Gemini
    gemini_api_key: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("GEMINI_API_KEY", "VITE_GEMINI_API_KEY"),
    )
    gemini_model: str = Field(default=ANALYSIS_MODEL)

    # Payment gateway (Takbull)
    takbull_api_key: Optional[str] = Field(default=None)
    takbull_api_secret: Optional[str] = Field(default=None)
    takbull_base_url: str = Field(default="https://api.takbull.co.il/api/ExtranalAPI")
    takbull_redirect_url: Optional[str] = Field(default=None)
    takbull_ipn_secret: Optional[str] = Field(default=None)
    app_url: Optional[str] = Field(default=None)

    # Scheduled downgrade sweep
    cron_secret: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("CRON_SECRET", "SUBSCRIPTION_CRON_SECRET"),
    )

    # Development toggles
    use_in_memory_backends: bool = Field(default=False)

    # Shared rate-limit state (Redis)
    redis_url: Optional[str] = Field(default=None)
    redis_key_prefix: str = Field(default="viraly:ratelimit")

    @property
    def email_configured(self) -> bool:
        return bool(self.resend_api_key and self.contact_from_email)

    @property
    def gateway_configured(self) -> bool:
        return bool(self.takbull_api_key and self.takbull_api_secret)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
