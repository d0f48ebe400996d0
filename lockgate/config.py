"""Application configuration loaded from environment variables."""

from __future__ import annotations

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_RATE_LIMIT_SALT = "change-me-rate-limit-salt"


class Settings(BaseSettings):
    """LockGate application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Core
    debug: bool = False
    expose_docs: bool = False

    # Server
    host: str = "0.0.0.0"
    port: int = Field(default=8000, ge=1, le=65535)

    # CORS
    cors_origins: list[str] = Field(default_factory=list)

    # Key-value store. Leaving this empty disables rate limiting entirely.
    redis_url: str | None = None
    redis_connect_timeout_seconds: float = Field(default=15.0, gt=0)
    redis_max_connect_attempts: int = Field(default=10, ge=1)
    redis_reconnect_cooldown_seconds: float = Field(default=30.0, ge=0)

    # Progressive lockout
    rate_limit_max_attempts: int = Field(default=5, ge=1)
    rate_limit_block_durations: list[int] = Field(
        default_factory=lambda: [60, 300, 900, 3600, 86400], min_length=1
    )
    rate_limit_attempts_ttl_seconds: int = Field(default=3600, ge=1)
    rate_limit_block_count_ttl_seconds: int = Field(default=86400 * 7, ge=1)
    rate_limit_namespace: str = Field(default="ratelimit", min_length=1, pattern=r"^[^:\s]+$")
    rate_limit_salt: str = DEFAULT_RATE_LIMIT_SALT
    rate_limit_delay_min_ms: int = Field(default=100, ge=0)
    rate_limit_delay_max_ms: int = Field(default=500, ge=0)

    # Credential check used by the login endpoint
    admin_username: str = "admin"
    admin_password: str = "admin"

    @model_validator(mode="after")
    def _check_rate_limit_ranges(self) -> Settings:
        if any(duration <= 0 for duration in self.rate_limit_block_durations):
            raise ValueError("RATE_LIMIT_BLOCK_DURATIONS must contain only positive values")
        if self.rate_limit_delay_min_ms > self.rate_limit_delay_max_ms:
            raise ValueError("RATE_LIMIT_DELAY_MIN_MS must not exceed RATE_LIMIT_DELAY_MAX_MS")
        return self

    @property
    def rate_limit_enabled(self) -> bool:
        """Rate limiting is switched on by configuring a store URL."""
        return bool(self.redis_url and self.redis_url.strip())

    def validate_runtime_security(self) -> None:
        """Validate security-critical production settings."""
        if self.debug:
            return

        violations: list[str] = []
        if self.rate_limit_enabled and (
            self.rate_limit_salt == DEFAULT_RATE_LIMIT_SALT or len(self.rate_limit_salt) < 32
        ):
            violations.append(
                "RATE_LIMIT_SALT must be overridden with a long-lived high-entropy value "
                "(>=32 chars)"
            )
        if self.admin_password == "admin" or len(self.admin_password) < 12:
            violations.append("ADMIN_PASSWORD must be overridden with a strong value (>=12 chars)")

        if violations:
            joined = "; ".join(violations)
            raise ValueError(f"Insecure production configuration: {joined}")
