"""Application configuration using pydantic-settings.

All environment variables should be accessed through the settings object
rather than using os.getenv() directly.
"""

from functools import lru_cache
from typing import List, Literal, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",  # Ignore extra env vars
    )

    # Database - defaults to relative path for Docker, override via env for local dev
    database_url: str = "sqlite:///./data/frontdesk.db"

    # CORS - comma-separated origins or "*" for development only
    cors_origins: str = "http://localhost:3000,http://localhost:5173"

    # Timezone used to resolve "now" for walk-ins, manual releases and expiry
    timezone: str = "UTC"

    # ==========================================================================
    # Allocation rules
    # ==========================================================================
    default_slot_duration_minutes: int = 15
    # Manual table assignment skips the conflict check unless this is set
    strict_manual_assignment: bool = False

    # Waitlist expiry sweep
    waitlist_expiry_enabled: bool = True
    waitlist_expiry_grace_minutes: int = 30
    waitlist_expiry_interval_seconds: int = 300

    # Realtime change feed
    ws_max_connections_per_restaurant: int = 200

    # Server
    debug: bool = True
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    # API
    api_v1_prefix: str = "/api/v1"

    # Rate limiting
    rate_limit_enabled: bool = True
    public_booking_rate_limit: str = "10/minute"

    # Optional path for metrics scraping; None disables the endpoint
    metrics_path: Optional[str] = "/metrics"

    @field_validator("default_slot_duration_minutes")
    @classmethod
    def validate_slot_duration(cls, v: int) -> int:
        if v <= 0 or (60 % v != 0 and v % 60 != 0):
            raise ValueError(
                f"default_slot_duration_minutes must divide an hour evenly, got {v}"
            )
        return v

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(f"Unknown timezone: {v}")
        return v

    @property
    def cors_origins_list(self) -> List[str]:
        """Parse CORS origins into a list."""
        if self.cors_origins == "*":
            return ["*"]
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    @property
    def app_timezone(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
