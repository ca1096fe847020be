"""
Shared configuration management for the records platform services.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_prefix="DEDUP_",
        env_file=".env",
        case_sensitive=False,
        extra="allow"
    )

    # Environment
    env: str = "local"
    log_level: str = "info"

    # External services
    postgres_dsn: str = "postgres://localhost:5432/records"
    redis_url: str = "redis://localhost:6379/0"
    use_memory_stores: bool = False

    # Rule cache
    rule_cache_enabled: bool = True
    rule_cache_ttl_seconds: int = 60

    # Deadline applied to every store round trip made by a duplicate check
    store_timeout_seconds: float = 2.0


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
