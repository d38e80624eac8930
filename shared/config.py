"""
Shared configuration management for the Tribute Cache service.
"""

from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_UPSTREAM_HOSTS = [
    # Production endpoints
    "api.firehawkcrm.com",
    "us-central1-fcrm-e17b0.cloudfunctions.net",
    # UAT endpoints
    "api.ivcuat.firehawkfunerals.com",
    "australia-southeast1-firehawk-ivc-test.cloudfunctions.net",
    # Dev endpoints
    "api.ivcdev.firehawkfunerals.com",
    "australia-southeast1-firehawk-ivc-dev.cloudfunctions.net",
    # Broad pattern for future Google Cloud Functions
    "cloudfunctions.net",
]


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_prefix="TRIBUTE_CACHE_",
        env_file=".env",
        case_sensitive=False,
        extra="allow",
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")
    debug_logging: bool = Field(default=False)

    # Cache tiers
    redis_url: str = Field(default="redis://localhost:6379/0")
    postgres_dsn: str = Field(default="postgres://localhost:5432/tribute_cache")
    fast_tier_backend: str = Field(default="redis")
    durable_tier_backend: str = Field(default="postgres")
    cache_namespace: str = Field(default="fcrm_tributes")

    # Upstream API
    upstream_api_url: str = Field(default="https://api.firehawkcrm.com")
    upstream_hosts: List[str] = Field(default_factory=lambda: list(DEFAULT_UPSTREAM_HOSTS))

    # Global switch; the legacy alias is consulted when the primary is unset
    enable_caching: Optional[bool] = Field(default=None)
    cache_enabled: Optional[bool] = Field(default=None)

    # Per-resource-type TTL overrides (seconds)
    cache_duration_client_list: Optional[int] = Field(default=None)
    cache_duration_single_client: Optional[int] = Field(default=None)
    cache_duration_messages: Optional[int] = Field(default=None)
    cache_duration_static_content: Optional[int] = Field(default=None)

    # Admin control surface
    admin_api_keys: List[str] = Field(default_factory=list)
    csrf_secret: str = Field(default="change-me")
    csrf_token_ttl_seconds: int = Field(default=3600)

    # Observability
    enable_tracing: bool = Field(default=False)
    otel_exporter: str = Field(default="http://localhost:4317")

    def caching_enabled(self) -> bool:
        """Resolve the global switch from the primary and legacy settings."""
        if self.enable_caching is not None:
            return bool(self.enable_caching)
        if self.cache_enabled is not None:
            return bool(self.cache_enabled)
        return True

    def ttl_overrides(self) -> dict:
        """Return the configured TTL overrides keyed by policy category."""
        return {
            "client_list": self.cache_duration_client_list,
            "single_client": self.cache_duration_single_client,
            "messages": self.cache_duration_messages,
            "static_content": self.cache_duration_static_content,
        }


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
