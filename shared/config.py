"""
Shared configuration management for the Transaction Gatekeeper.
"""

from typing import List, Literal, Optional

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_prefix="GATEKEEPER_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore"
    )

    # Environment
    env: str = "local"
    log_level: str = "info"
    host: str = "0.0.0.0"
    port: int = Field(default=8080, gt=0, lt=65536)

    # Shared state store
    store_backend: Literal["redis", "memory"] = "redis"
    redis_url: str = "redis://localhost:6379/0"
    redis_max_connections: int = Field(default=100, gt=0)
    redis_connect_timeout: float = Field(default=5.0, gt=0)
    redis_socket_timeout: float = Field(default=5.0, gt=0)
    store_timeout: float = Field(default=5.0, gt=0)

    # Cross-origin access
    cors_allow_origins: List[str] = Field(default_factory=lambda: ["*"])


class GatekeeperSettings(BaseConfig):
    """Settings for the gatekeeper service."""

    service_name: str = "gatekeeper"

    # Rate limiting
    rate_limit: int = Field(default=100, gt=0)
    rate_window_seconds: float = Field(default=60.0, gt=0)

    # Idempotency
    idempotency_ttl_seconds: float = Field(default=24 * 60 * 60, gt=0)
    strict_idempotency: bool = False
    reservation_ttl_seconds: float = Field(default=30.0, gt=0)

    # Downstream processor
    processor_url: Optional[str] = None
    processor_timeout: float = Field(default=10.0, gt=0)

    @model_validator(mode="after")
    def check_reservation_outlives_processor(self) -> "GatekeeperSettings":
        """A strict-mode placeholder must not expire while the processor runs."""
        if self.strict_idempotency and self.reservation_ttl_seconds <= self.processor_timeout:
            raise ValueError(
                "reservation_ttl_seconds must be greater than processor_timeout "
                "when strict_idempotency is enabled"
            )
        return self


def get_settings(**overrides) -> GatekeeperSettings:
    """Load settings from the environment, applying explicit overrides."""
    return GatekeeperSettings(**overrides)
