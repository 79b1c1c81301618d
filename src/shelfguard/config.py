"""Configuration settings for Shelfguard."""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_prefix="SHELFGUARD_", env_file=".env")

    # Server
    host: str = "127.0.0.1"  # Use SHELFGUARD_HOST=0.0.0.0 for Docker
    port: int = 4000
    environment: str = "development"
    debug: bool = False

    # Rate limiter
    limiter_enabled: bool = True
    limiter_rps: float = Field(2.0, gt=0)
    limiter_burst: int = Field(5, ge=1)
    limiter_idle_seconds: float = Field(180.0, gt=0)
    limiter_sweep_interval: float = Field(60.0, gt=0)

    # Logging
    log_level: str = "INFO"
    log_format: str = "json"

    # Metrics
    metrics_enabled: bool = True


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
