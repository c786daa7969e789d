"""
Shared configuration management for the pack calculator services.
"""

from typing import Optional

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_prefix="PACKCALC_",
        env_file=".env",
        case_sensitive=False,
        extra="allow"
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")

    # Cache store
    redis_enabled: bool = Field(default=False)
    redis_url: str = Field(default="redis://localhost:6379/0")
    redis_socket_timeout: float = Field(default=3.0, gt=0)
    redis_connect_timeout: float = Field(default=5.0, gt=0)

    # Adaptive TTL policy
    cache_initial_ttl_seconds: int = Field(default=300, gt=0)
    cache_max_ttl_seconds: int = Field(default=86400, gt=0)
    cache_key_prefix: str = Field(default="packcalc:")

    # Request limits; the solver table grows with order + largest size
    max_order_quantity: int = Field(default=1_000_000, gt=0)
    max_pack_size: int = Field(default=100_000, gt=0)

    # Persistence
    postgres_dsn: str = Field(default="postgres://localhost:5432/packcalc")
    history_limit: int = Field(default=20, ge=1)

    @model_validator(mode="after")
    def _check_ttl_bounds(self) -> "BaseConfig":
        if self.cache_initial_ttl_seconds > self.cache_max_ttl_seconds:
            raise ValueError("cache_initial_ttl_seconds must not exceed cache_max_ttl_seconds")
        return self


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
