from functools import lru_cache
from typing import Literal, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.
    Follows 12-factor app configuration principles.
    """

    # env_file is only used as fallback, env vars take precedence
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        env_ignore_empty=True,
    )

    # Database Configuration
    DATABASE_URL: str = "sqlite:///./geonotes.db"

    # Logging Configuration
    LOG_LEVEL: str = "INFO"

    # Bearer token verification - required from .env
    AUTH_TOKEN_SECRET: str

    # Storage backend, chosen once at startup
    STORE_BACKEND: Literal["scan", "indexed"] = "scan"

    # Proximity query shape applied to every nearby request
    NEARBY_RADIUS_METERS: float = 100.0
    MESSAGE_MAX_AGE_SECONDS: int = 24 * 60 * 60

    # Scan backend: records older than this are invisible and get purged
    RETENTION_WINDOW_SECONDS: int = 24 * 60 * 60
    # Grid bucket edge for the scan backend; 0 disables bucketing
    SCAN_BUCKET_SIZE_METERS: float = 500.0

    # Indexed backend keeps records forever unless this is set
    INDEXED_RETENTION_SECONDS: Optional[int] = None

    # Background purge cadence; 0 disables the purge task
    PURGE_INTERVAL_SECONDS: int = 300

    CORS_ORIGINS: list[str] = ["*"]


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.
    Uses lru_cache to avoid reading .env file on every request.
    """
    return Settings()
