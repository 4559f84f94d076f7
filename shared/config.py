"""
Shared configuration management for the distributed rate limiter.
"""

from functools import lru_cache

from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from shared.errors import ConfigurationError
from shared.retry import BACKOFF_STRATEGIES, RetryConfig


class RateLimitSettings(BaseSettings):
    """Limiter settings, read from RATELIMIT_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="RATELIMIT_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore"
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")

    # Store
    redis_url: str = Field(default="redis://localhost:6379/0")
    socket_timeout: float = Field(default=5.0, gt=0)
    namespace: str = Field(default="ratelimit:")

    # Locking and contention
    lock_ttl_ms: int = Field(default=300, gt=0)
    retry_delay_ms: int = Field(default=20, ge=0)
    max_retries: int = Field(default=4, ge=0)
    retry_backoff: str = Field(default="fixed")
    retry_jitter: bool = Field(default=False)

    @field_validator("retry_backoff")
    @classmethod
    def _check_backoff(cls, value: str) -> str:
        value = value.lower()
        if value not in BACKOFF_STRATEGIES:
            raise ValueError(f"retry_backoff must be one of {', '.join(BACKOFF_STRATEGIES)}")
        return value

    @field_validator("log_level")
    @classmethod
    def _check_log_level(cls, value: str) -> str:
        value = value.lower()
        if value not in ("debug", "info", "warning", "error", "critical"):
            raise ValueError(f"unknown log level '{value}'")
        return value

    def retry_config(self) -> RetryConfig:
        """Build the contention retry policy."""
        return RetryConfig(
            max_retries=self.max_retries,
            base_delay=self.retry_delay_ms / 1000.0,
            jitter=self.retry_jitter,
            backoff_strategy=self.retry_backoff,
        )


def load_settings(**overrides) -> RateLimitSettings:
    """Load settings, converting validation failures to ConfigurationError."""
    try:
        return RateLimitSettings(**overrides)
    except ValidationError as e:
        raise ConfigurationError(
            "Invalid rate limiter settings",
            details={"errors": e.errors(include_url=False, include_context=False)}
        ) from e


@lru_cache(maxsize=1)
def get_settings() -> RateLimitSettings:
    """Get the process-wide settings."""
    return load_settings()
