"""Configuration contract for the authorization core.

Pydantic-validated models for token signing, session lifetime and the
shared logging/Redis settings. ``load_config_from_env()`` is the only place
that reads environment variables; everything else receives an
``AuthConfig`` instance.
"""

from __future__ import annotations

import re
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from .exceptions import ConfigurationError

_EXPIRY_RE = re.compile(r"^\d+[smhd]$")


class LogLevel(str, Enum):
    """Standard log levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class TokenConfig(BaseModel):
    """JWT signing configuration.

    Access and refresh tokens are signed with separate secrets so that a
    leaked refresh secret cannot mint access tokens and vice versa.

    Environment variables:
        JWT_ACCESS_SECRET        — HS256 secret for access + password-reset tokens
        JWT_REFRESH_SECRET       — HS256 secret for refresh tokens
        JWT_ACCESS_EXPIRES_IN    — e.g. "15m"
        JWT_REFRESH_EXPIRES_IN   — e.g. "7d"
        JWT_ISSUER / JWT_AUDIENCE
    """

    model_config = {"extra": "ignore"}

    access_secret: str = Field(default="", description="Secret for access tokens")
    refresh_secret: str = Field(default="", description="Secret for refresh tokens")
    access_expires_in: str = Field(default="15m", description="Access token lifetime")
    refresh_expires_in: str = Field(default="7d", description="Refresh token lifetime")
    password_reset_expires_in: str = Field(default="30m", description="Password reset token lifetime")
    issuer: str = Field(default="advotecate-platform")
    audience: str = Field(default="advotecate-api")
    algorithm: str = Field(default="HS256")

    @field_validator("access_expires_in", "refresh_expires_in", "password_reset_expires_in")
    @classmethod
    def validate_expiry(cls, v: str) -> str:
        """Expiry strings are ``<int><unit>`` with unit in s/m/h/d."""
        if not _EXPIRY_RE.match(v):
            raise ValueError(f"Invalid expiry '{v}'. Expected e.g. '30s', '15m', '2h', '7d'")
        return v

    def require_secrets(self) -> None:
        """Raise ConfigurationError unless both secrets are set."""
        missing = [
            name
            for name, value in (
                ("JWT_ACCESS_SECRET", self.access_secret),
                ("JWT_REFRESH_SECRET", self.refresh_secret),
            )
            if not value
        ]
        if missing:
            raise ConfigurationError(f"Missing token secrets: {', '.join(missing)}", missing=missing)


class SessionConfig(BaseModel):
    """Server-side session lifetime and limits."""

    model_config = {"extra": "ignore"}

    namespace: str = Field(default="advotecate", description="Key prefix in the session store")
    ttl_hours: int = Field(default=24, gt=0, description="Absolute session TTL")
    max_inactivity_seconds: int = Field(default=2 * 60 * 60, gt=0, description="Sliding inactivity window")
    max_concurrent_sessions: int = Field(default=5, gt=0, description="Sessions per user before LRU eviction")
    store_timeout_seconds: float = Field(default=2.0, gt=0, description="Bound on each store round trip")

    @property
    def ttl_seconds(self) -> int:
        return self.ttl_hours * 60 * 60

    @model_validator(mode="after")
    def check_inactivity_window(self) -> "SessionConfig":
        if self.max_inactivity_seconds >= self.ttl_seconds:
            raise ValueError("max_inactivity_seconds must be shorter than the absolute session TTL")
        return self


class AuthConfig(BaseModel):
    """Top-level configuration for the authorization core."""

    log_level: LogLevel = Field(default=LogLevel.INFO)
    log_json: bool = Field(default=False, description="Use JSON log format")
    redis_url: Optional[str] = Field(default=None, description="Session store URL")
    service_name: Optional[str] = Field(default=None)
    tokens: TokenConfig = Field(default_factory=TokenConfig)
    sessions: SessionConfig = Field(default_factory=SessionConfig)

    @field_validator("redis_url")
    @classmethod
    def validate_redis_url(cls, v: Optional[str]) -> Optional[str]:
        """Validate Redis URL format."""
        if v is None:
            return v
        if not v.startswith(("redis://", "rediss://", "unix://")):
            raise ValueError("Redis URL must start with redis://, rediss://, or unix://")
        return v

    @field_validator("log_level", mode="before")
    @classmethod
    def validate_log_level(cls, v: str | LogLevel) -> LogLevel:
        """Convert string to LogLevel enum."""
        if isinstance(v, LogLevel):
            return v
        if isinstance(v, str):
            try:
                return LogLevel[v.upper()]
            except KeyError:
                raise ValueError(f"Invalid log level: {v}. Must be one of {[e.value for e in LogLevel]}")
        raise ValueError(f"Log level must be string or LogLevel enum, got {type(v)}")

    def require_secrets(self) -> None:
        """Raise ConfigurationError unless both JWT secrets are set."""
        self.tokens.require_secrets()

    model_config = {
        "extra": "forbid",
    }


def load_config_from_env() -> AuthConfig:
    """Load configuration from environment variables.

    This is the ONLY place where os.getenv is allowed.

    Environment variables:
    - LOG_LEVEL, LOG_JSON, REDIS_URL, SERVICE_NAME
    - JWT_ACCESS_SECRET, JWT_REFRESH_SECRET
    - JWT_ACCESS_EXPIRES_IN, JWT_REFRESH_EXPIRES_IN, JWT_ISSUER, JWT_AUDIENCE
    - SESSION_NAMESPACE, SESSION_TTL_HOURS, SESSION_MAX_INACTIVITY_SECONDS
    - MAX_CONCURRENT_SESSIONS, SESSION_STORE_TIMEOUT_SECONDS

    Returns:
        AuthConfig instance with values from environment or defaults.
    """
    import os

    tokens = TokenConfig(
        access_secret=os.getenv("JWT_ACCESS_SECRET", ""),
        refresh_secret=os.getenv("JWT_REFRESH_SECRET", ""),
        access_expires_in=os.getenv("JWT_ACCESS_EXPIRES_IN", "15m"),
        refresh_expires_in=os.getenv("JWT_REFRESH_EXPIRES_IN", "7d"),
        issuer=os.getenv("JWT_ISSUER", "advotecate-platform"),
        audience=os.getenv("JWT_AUDIENCE", "advotecate-api"),
    )

    sessions = SessionConfig(
        namespace=os.getenv("SESSION_NAMESPACE", "advotecate"),
        ttl_hours=int(os.getenv("SESSION_TTL_HOURS", "24")),
        max_inactivity_seconds=int(os.getenv("SESSION_MAX_INACTIVITY_SECONDS", "7200")),
        max_concurrent_sessions=int(os.getenv("MAX_CONCURRENT_SESSIONS", "5")),
        store_timeout_seconds=float(os.getenv("SESSION_STORE_TIMEOUT_SECONDS", "2.0")),
    )

    return AuthConfig(
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        log_json=os.getenv("LOG_JSON", "false").lower() in ("true", "1", "yes"),
        redis_url=os.getenv("REDIS_URL"),
        service_name=os.getenv("SERVICE_NAME"),
        tokens=tokens,
        sessions=sessions,
    )


__all__ = [
    "AuthConfig",
    "LogLevel",
    "SessionConfig",
    "TokenConfig",
    "load_config_from_env",
]
