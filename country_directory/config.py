"""
Configuration management using Pydantic Settings.
All environment variables are validated at startup.
"""

from functools import lru_cache
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ===================
    # Discourse Configuration
    # ===================
    discourse_url: str = Field(default="", description="Base URL of the Discourse forum")
    discourse_api_key: Optional[str] = Field(default=None, description="Discourse API key")
    discourse_api_username: str = Field(default="system", description="User the API key acts as")
    directory_tiers: str = Field(
        default="trust_level_0,trust_level_1,trust_level_2,trust_level_3,trust_level_4",
        description="Comma-separated group names enumerated for members",
    )
    directory_page_size: int = Field(default=1000, ge=1, le=1000)

    # ===================
    # Upstream Rate Limiting
    # ===================
    request_delay_seconds: float = Field(default=0.5, ge=0)
    batch_size: int = Field(default=50, description="Requests per batch before the long pause")
    batch_pause_seconds: float = Field(default=30.0, ge=0)
    request_timeout_seconds: float = Field(default=30.0, gt=0)
    max_retries: int = Field(default=3, ge=1, le=10)

    # ===================
    # Cache / Refresh
    # ===================
    cache_ttl_seconds: int = Field(default=3600, ge=1)
    refresh_timeout_seconds: float = Field(default=7200.0, gt=0)
    scheduler_check_interval_seconds: float = Field(default=60.0, gt=0)
    refresh_failure_cooldown_seconds: float = Field(default=300.0, ge=0)
    snapshot_path: str = Field(default="data/members_snapshot.json")
    credentials_path: str = Field(default="data/directory_settings.json")

    # ===================
    # API Configuration
    # ===================
    admin_api_token: Optional[str] = Field(default=None, description="Shared secret for admin routes")
    avatar_size: int = Field(default=48, ge=1)
    rate_limit_global: str = Field(default="120/minute")
    cors_origins: str = Field(default="*")
    api_host: str = Field(default="0.0.0.0")
    api_port: int = Field(default=8000)

    # ===================
    # Logging
    # ===================
    log_level: str = Field(default="INFO")

    @field_validator("discourse_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.strip().rstrip("/")

    @field_validator("batch_size")
    @classmethod
    def validate_batch_size(cls, v: int) -> int:
        """Batch size must be at least one request."""
        if v < 1:
            raise ValueError("batch_size must be a positive integer")
        return v

    @property
    def tiers(self) -> list[str]:
        """Parse directory tiers from comma-separated string."""
        return [t.strip() for t in self.directory_tiers.split(",") if t.strip()]

    @property
    def allowed_origins(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Convenience export
settings = get_settings()
