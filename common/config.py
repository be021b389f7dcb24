"""Centralized application configuration using Pydantic settings."""
from functools import lru_cache
from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-driven configuration shared across services."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    database_url: str = Field(
        default="sqlite:///./guesthouse.db",
        description="SQLAlchemy database URL. Defaults to local SQLite for development.",
    )
    run_db_migrations: bool = Field(
        default=False,
        description="Whether this service should create/update database tables on startup.",
    )
    jwt_secret: str = Field(default="change-me", description="JWT signing secret")
    jwt_algorithm: str = Field(default="HS256", description="JWT signing algorithm")
    access_token_expire_minutes: int = Field(default=60 * 24 * 7, description="Token lifetime in minutes")
    cors_origins: List[str] = Field(default_factory=lambda: ["*"], description="Allowed CORS origins")
    default_rate_limit: str = Field(default="30/minute", description="Global rate limiting rule")
    rate_limiting_enabled: bool = Field(default=True, description="Toggle to disable SlowAPI limits (useful in tests)")
    room_cache_ttl: int = Field(default=60, description="TTL (s) for the cached room catalog")
    room_lock_timeout_seconds: float = Field(
        default=5.0,
        description="Upper bound (s) on waiting for another booking mutation on the same room.",
    )
    log_dir: str = Field(default="logs", description="Directory for per-service audit logs")

    admin_username: Optional[str] = Field(default=None, description="Bootstrap admin username")
    admin_password: Optional[str] = Field(default=None, description="Bootstrap admin password")
    admin_email: Optional[str] = Field(default=None, description="Bootstrap admin email")

    users_service_port: int = 8001
    rooms_service_port: int = 8002
    bookings_service_port: int = 8003


@lru_cache
def get_settings() -> Settings:
    """Return a cached instance of the Settings object."""

    return Settings()


def reset_settings_cache() -> None:
    """Clear the cached Settings instance (useful for tests)."""

    get_settings.cache_clear()
