"""Centralized application configuration using Pydantic settings."""
from functools import lru_cache
from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-driven configuration shared across services."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    database_url: str = Field(
        default="sqlite:///./loving.db",
        description="SQLAlchemy database URL. Defaults to local SQLite for development.",
    )
    run_db_migrations: bool = Field(
        default=False,
        description="Whether this service should create/update database tables on startup.",
    )
    jwt_secret: str = Field(default="super-secret", description="JWT signing secret")
    jwt_algorithm: str = Field(default="HS256", description="JWT signing algorithm")
    access_token_expire_minutes: int = Field(default=60, description="Token lifetime in minutes")
    service_api_key: str = Field(default="service-key", description="API key for service-to-service calls")
    cors_origins: List[str] = Field(default_factory=lambda: ["*"], description="Allowed CORS origins")
    default_rate_limit: str = Field(default="30/minute", description="Global rate limiting rule")
    rate_limiting_enabled: bool = Field(default=True, description="Toggle to disable SlowAPI limits (useful in tests)")
    log_dir: str = Field(default="logs", description="Directory for the per-service audit logs")

    comment_max_length: int = Field(default=1000, description="Maximum length of a review comment")
    response_max_length: int = Field(default=500, description="Maximum length of a provider response")
    allow_response_overwrite: bool = Field(
        default=True,
        description="Whether a provider may replace an earlier response to the same review.",
    )
    hide_reported_reviews: bool = Field(
        default=False,
        description="Hide reported reviews from public listings until a moderator resolves the report.",
    )
    rating_summary_cache_ttl: int = Field(default=30, description="TTL (s) for cached provider rating summaries")
    default_page_size: int = Field(default=10, description="Default page size for review listings")
    max_page_size: int = Field(default=50, description="Upper bound for the page size of review listings")

    events_enabled: bool = Field(default=False, description="Publish domain events to RabbitMQ")
    rabbitmq_host: str = Field(default="rabbitmq", description="RabbitMQ broker host")
    events_queue: str = Field(default="loving-events", description="Durable queue receiving domain events")

    users_service_port: int = 8001
    bookings_service_port: int = 8002
    reviews_service_port: int = 8003


@lru_cache
def get_settings() -> Settings:
    """Return a cached instance of the Settings object."""

    return Settings()


def reset_settings_cache() -> None:
    """Clear the cached Settings instance (useful for tests)."""

    get_settings.cache_clear()
