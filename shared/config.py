"""
Shared configuration management for the Feature Flag service.
"""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="FLAGS_",
        case_sensitive=False,
        extra="allow"
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")

    # External services
    redis_url: str = Field(default="redis://localhost:6379/0")

    # Flag definitions
    flags_source: str = Field(default="file", description="Where flag definitions are read from: file or redis")
    flags_file: Optional[str] = Field(default=None, description="YAML or JSON flag definitions file")
    flag_refresh_interval_seconds: float = Field(default=30.0, ge=0)
    flag_cache_ttl_seconds: int = Field(default=300, ge=0)

    # Evaluation
    slow_evaluation_ms: float = Field(default=10.0, ge=0)
    max_bulk_flags: int = Field(default=100, ge=1)

    # Observability
    enable_tracing: bool = Field(default=False)
    otel_exporter: str = Field(default="http://localhost:4318")
    enable_console_tracing: bool = Field(default=False)


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
