"""
Shared configuration management for the Grepolis API Reflector.
"""

from typing import Dict, List

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_ENDPOINT_TTLS = {
    # Island layout only changes when a world is reshaped.
    "islands": 6 * 60 * 60,
}


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="REFLECTOR_",
        case_sensitive=False,
        extra="ignore",
        frozen=True,
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")

    # Origin API
    origin_base_url: str = Field(default="https://{world}.grepolis.com")
    upstream_timeout: float = Field(default=10.0, gt=0)
    user_agent: str = Field(default="grepolis-api-reflector/1.0")

    # Caching
    cache_max_entries: int = Field(default=25, ge=1)
    default_ttl_seconds: float = Field(default=15 * 60, gt=0)
    endpoint_ttls: Dict[str, float] = Field(default_factory=lambda: dict(DEFAULT_ENDPOINT_TTLS))
    coalesce_wait_timeout: float = Field(default=15.0, gt=0)

    # Cross-origin
    allowed_origins: List[str] = Field(default_factory=lambda: ["*"])
    allowed_headers: List[str] = Field(default_factory=lambda: ["*"])
    cors_max_age: int = Field(default=600, ge=0)

    @field_validator("endpoint_ttls")
    @classmethod
    def merge_endpoint_ttls(cls, value: Dict[str, float]) -> Dict[str, float]:
        """Overlay configured TTLs on the defaults; every TTL must be positive."""
        for endpoint, ttl in value.items():
            if ttl <= 0:
                raise ValueError(f"TTL for '{endpoint}' must be positive")
        return {**DEFAULT_ENDPOINT_TTLS, **{endpoint.lower(): ttl for endpoint, ttl in value.items()}}


class ServiceConfig(BaseConfig):
    """Service-specific configuration."""

    service_name: str
    port: int = Field(default=3000)
    host: str = "0.0.0.0"


def get_config(service_name: str, **overrides) -> ServiceConfig:
    """Get configuration for a specific service."""
    return ServiceConfig(service_name=service_name, **overrides)
