"""
Shared configuration management for the Service Marketplace.
"""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_prefix="MARKETPLACE_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore"
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")

    # External services
    redis_url: str = Field(default="redis://localhost:6379/0")
    postgres_dsn: str = Field(default="postgres://localhost:5432/marketplace")
    postgres_min_pool: int = Field(default=2)
    postgres_max_pool: int = Field(default=10)
    postgres_command_timeout: float = Field(default=30.0)

    # Response cache
    cache_ttl_seconds: int = Field(default=300)

    # Rate limiting
    rate_limit_max_requests: int = Field(default=100)
    rate_limit_window_seconds: int = Field(default=15 * 60)
    rate_limit_strategy: str = Field(default="sliding")

    # Internal service trust
    internal_service_secret: Optional[str] = Field(default=None)
    internal_service_audience: str = Field(default="service-marketplace")
    allow_legacy_internal_header: bool = Field(default=False)

    # Search
    max_page_limit: Optional[int] = Field(default=None)
    default_radius_meters: int = Field(default=10000)


class ServiceConfig(BaseConfig):
    """Service-specific configuration."""

    service_name: str
    port: int
    host: str = "0.0.0.0"

    def __init__(self, service_name: str, port: int, **kwargs):
        super().__init__(service_name=service_name, port=port, **kwargs)


def get_config(service_name: str, port: int, **overrides) -> ServiceConfig:
    """Get configuration for a specific service."""
    return ServiceConfig(service_name=service_name, port=port, **overrides)
