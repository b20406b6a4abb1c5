"""
Shared configuration management for the throttling service.
"""

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ThrottleConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_prefix="THROTTLE_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore"
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")

    # Bucket state store
    redis_url: str = Field(default="redis://localhost:6379/0")
    store_timeout_seconds: float = Field(default=0.5)
    state_ttl_seconds: int = Field(default=3600)
    key_namespace: str = Field(default="leaky")

    # Default bucket shape for the demo endpoint
    default_capacity: int = Field(default=10)
    default_leak_rate_per_min: int = Field(default=60)

    # Client identification
    trust_forwarded_headers: bool = Field(default=True)

    @field_validator("default_capacity", "default_leak_rate_per_min")
    @classmethod
    def _validate_non_negative(cls, value: int) -> int:
        if value < 0:
            raise ValueError("bucket capacity and leak rate must be >= 0")
        return value

    @field_validator("store_timeout_seconds", "state_ttl_seconds")
    @classmethod
    def _validate_positive(cls, value):
        if value <= 0:
            raise ValueError("store timeout and state TTL must be > 0")
        return value

    @field_validator("key_namespace")
    @classmethod
    def _validate_namespace(cls, value: str) -> str:
        trimmed = value.strip()
        if not trimmed:
            raise ValueError("THROTTLE_KEY_NAMESPACE cannot be empty")
        return trimmed


class ServiceConfig(ThrottleConfig):
    """Service-specific configuration."""

    service_name: str
    port: int
    host: str = "0.0.0.0"

    def __init__(self, service_name: str, port: int, **kwargs):
        super().__init__(service_name=service_name, port=port, **kwargs)


def get_config(service_name: str, port: int) -> ServiceConfig:
    """Get configuration for a specific service."""
    return ServiceConfig(service_name=service_name, port=port)
