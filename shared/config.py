"""
Shared configuration management for the Blog Access service.
"""

import secrets
from typing import List, Optional

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


PASSWORD_HASHERS = ("bcrypt", "md5")


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_prefix="BLOG_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore"
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")

    # External services
    redis_url: str = Field(default="redis://localhost:6379/0")
    redis_timeout_seconds: float = Field(default=2.0, gt=0)
    postgres_dsn: Optional[str] = Field(default=None)

    # Sessions
    auth_secret: Optional[str] = Field(default=None)
    session_max_age_seconds: int = Field(default=30 * 24 * 60 * 60, gt=0)
    session_cookie_name: str = Field(default="blog.session-token")
    session_cookie_secure: bool = Field(default=False)

    # Credentials
    password_hasher: str = Field(default="bcrypt")
    bcrypt_rounds: int = Field(default=12, ge=4, le=31)

    # Rate limiting
    auth_rate_limit: int = Field(default=5)
    auth_rate_window_ms: int = Field(default=15 * 60 * 1000)
    api_rate_limit: int = Field(default=100)
    api_rate_window_ms: int = Field(default=15 * 60 * 1000)

    # Access gate routes
    protected_prefixes: List[str] = Field(default_factory=lambda: ["/admin", "/api/posts"])
    login_path: str = Field(default="/admin/login")
    dashboard_path: str = Field(default="/admin")
    api_prefix: str = Field(default="/api/")
    auth_callback_prefix: str = Field(default="/api/auth/callback/")

    @field_validator("auth_rate_limit", "auth_rate_window_ms", "api_rate_limit", "api_rate_window_ms")
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("rate limit values must be positive")
        return v

    @field_validator("password_hasher")
    @classmethod
    def validate_password_hasher(cls, v: str) -> str:
        v = v.lower()
        if v not in PASSWORD_HASHERS:
            raise ValueError(f"password_hasher must be one of {PASSWORD_HASHERS}")
        return v

    @model_validator(mode="after")
    def validate_auth_secret(self) -> "BaseConfig":
        if self.auth_secret is None or not self.auth_secret.strip():
            if self.is_production:
                raise ValueError("BLOG_AUTH_SECRET must be set in production")
            # Sessions from a generated secret do not survive a restart
            self.auth_secret = secrets.token_urlsafe(32)
        return self

    @model_validator(mode="after")
    def validate_fast_hasher_scope(self) -> "BaseConfig":
        # MD5 is for test suites only
        if self.password_hasher == "md5" and not self.is_test:
            raise ValueError("password_hasher 'md5' is only permitted when env is 'test'")
        return self

    @property
    def is_test(self) -> bool:
        return self.env == "test"

    @property
    def is_production(self) -> bool:
        return self.env == "production"


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
