"""
Configuration settings for the appointsync scheduler.
Loads from environment variables with validation.
"""

from functools import lru_cache
from typing import Literal, Optional
from pydantic_settings import BaseSettings
from pydantic import Field


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Environment
    environment: Literal["development", "production"] = "development"
    debug: bool = False

    # Supabase Configuration
    supabase_url: str = Field(..., description="Supabase project URL")
    supabase_service_role_key: str = Field(..., description="Supabase service role key")

    # Google Calendar Configuration
    google_client_id: str = Field(..., description="Google OAuth client ID")
    google_client_secret: str = Field(..., description="Google OAuth client secret")
    google_access_token: Optional[str] = Field(default=None, description="Cached OAuth access token")
    google_refresh_token: Optional[str] = Field(default=None, description="Long-lived OAuth refresh token")
    google_token_uri: str = "https://oauth2.googleapis.com/token"
    google_calendar_id: str = Field(default="primary", description="Calendar to mirror appointments into")
    env_file_path: str = Field(default=".env", description="Where refreshed tokens are persisted")

    # Locale
    timezone: str = Field(default="Asia/Kolkata", description="IANA timezone for appointment times")
    phone_country_code: str = Field(default="91", description="Prefix added to phones in event text")

    # Appointment Configuration
    appointment_duration_minutes: int = 30
    max_advance_booking_days: int = 30
    working_hours_start: str = "09:00"
    working_hours_end: str = "17:00"
    working_days: list[int] = [0, 1, 2, 3, 4, 5]  # Mon-Sat (0=Monday)

    # Sync Configuration
    sync_min_interval_minutes: int = 5
    sync_interval_minutes: int = 30
    startup_sync_delay_seconds: int = 60
    sync_forward_days: int = 30
    sync_lookback_days: int = 1
    drift_recreate_window_hours: float = 24
    time_match_tolerance_seconds: int = 0
    archive_after_days: int = 30
    provider_max_attempts: int = 3

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
