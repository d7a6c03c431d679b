"""
Configuration management with environment validation.

This module provides type-safe configuration using pydantic-settings. The
security policy is immutable once built so that a middleware instance can
never have its CSRF, header or upload rules changed underneath it.
"""

from functools import lru_cache
from pathlib import Path
from typing import Dict, List, Optional

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from train_station_security.core.exceptions import ConfigurationError

# Tags that may never be allow-listed for rich text, whatever the caller asks for
FORBIDDEN_RICH_TEXT_TAGS = frozenset({
    "script", "iframe", "object", "embed", "form", "input", "button", "style",
})

DEFAULT_ALLOWED_MIME_TYPES = [
    "image/jpeg",
    "image/png",
    "image/gif",
    "image/webp",
    "application/pdf",
    "text/plain",
    "application/msword",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
]

DEFAULT_BLOCKED_EXTENSIONS = [
    ".exe", ".bat", ".cmd", ".scr", ".com", ".pif", ".vbs", ".js", ".jar",
    ".msi", ".dll", ".ps1", ".hta", ".wsf",
]

DEFAULT_CSP_DIRECTIVES = {
    "default-src": "'self'",
    "script-src": "'self'",
    "style-src": "'self' 'unsafe-inline'",
    "img-src": "'self' data: https:",
    "connect-src": "'self' https: wss:",
    "font-src": "'self' data:",
    "frame-src": "'none'",
    "object-src": "'none'",
    "base-uri": "'self'",
    "frame-ancestors": "'none'",
    "form-action": "'self'",
}


class SecurityPolicy(BaseSettings):
    """Security policy driving every component of the middleware."""

    model_config = SettingsConfigDict(
        env_prefix="SECURITY_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        frozen=True,
        extra="ignore",
    )

    # Subsystem switches
    enable_csrf: bool = True
    enable_security_headers: bool = True
    enable_input_sanitization: bool = True
    enable_sql_injection_protection: bool = True

    # File uploads
    max_file_size: int = Field(10 * 1024 * 1024, gt=0)
    allowed_mime_types: List[str] = Field(default_factory=lambda: list(DEFAULT_ALLOWED_MIME_TYPES))
    blocked_extensions: List[str] = Field(default_factory=lambda: list(DEFAULT_BLOCKED_EXTENSIONS))
    filename_max_length: int = Field(255, gt=0)

    # Sanitization
    rich_text_allowed_tags: List[str] = Field(
        default_factory=lambda: [
            "p", "br", "strong", "em", "ul", "ol", "li",
            "h1", "h2", "h3", "h4", "h5", "h6",
        ]
    )
    max_nesting_depth: int = Field(200, ge=100)

    # CSRF
    csrf_token_ttl_seconds: int = Field(3600, gt=0)

    # Sessions
    session_max_age_seconds: int = Field(24 * 60 * 60, gt=0)
    session_max_idle_seconds: int = Field(2 * 60 * 60, gt=0)
    enforce_ip_binding: bool = True
    enforce_user_agent_binding: bool = False
    session_storage_key: str = "session-id"

    # Housekeeping
    sweep_interval_seconds: float = Field(15 * 60, gt=0)

    # Headers
    csp_directives: Dict[str, str] = Field(default_factory=lambda: dict(DEFAULT_CSP_DIRECTIVES))
    hsts_max_age: int = Field(31536000, ge=0)
    permissions_policy_denied: List[str] = Field(
        default_factory=lambda: ["camera", "microphone", "geolocation", "payment"]
    )

    @field_validator("allowed_mime_types")
    @classmethod
    def normalize_mime_types(cls, v: List[str]) -> List[str]:
        """Lower-case MIME types so membership checks are exact."""
        return [mime.strip().lower() for mime in v if mime.strip()]

    @field_validator("blocked_extensions")
    @classmethod
    def normalize_extensions(cls, v: List[str]) -> List[str]:
        """Ensure every extension is lower-case with a leading dot."""
        normalized = []
        for ext in v:
            ext = ext.strip().lower()
            if not ext:
                continue
            normalized.append(ext if ext.startswith(".") else f".{ext}")
        return normalized

    @field_validator("rich_text_allowed_tags")
    @classmethod
    def validate_rich_text_tags(cls, v: List[str]) -> List[str]:
        """Reject dangerous tags in the rich-text allow-list."""
        tags = [tag.strip().lower() for tag in v if tag.strip()]
        forbidden = sorted(set(tags) & FORBIDDEN_RICH_TEXT_TAGS)
        if forbidden:
            raise ValueError(f"Tags may not be allow-listed: {', '.join(forbidden)}")
        return tags

    @model_validator(mode="after")
    def validate_session_windows(self) -> "SecurityPolicy":
        """Idle timeout longer than the absolute age would never fire."""
        if self.session_max_idle_seconds > self.session_max_age_seconds:
            raise ValueError("session_max_idle_seconds cannot exceed session_max_age_seconds")
        return self

    @property
    def max_file_size_mb(self) -> float:
        """Upload ceiling in mebibytes, as shown to users."""
        return self.max_file_size / (1024 * 1024)


class Settings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        validate_assignment=True,
        extra="ignore",
    )

    # Environment Configuration
    environment: str = "development"
    debug: bool = True
    log_level: str = "INFO"
    log_file: Optional[Path] = None

    # Nested Settings
    security: SecurityPolicy = Field(default_factory=SecurityPolicy)

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Validate environment value."""
        allowed_environments = {"development", "testing", "staging", "production"}
        if v.lower() not in allowed_environments:
            raise ValueError(f"Environment must be one of: {allowed_environments}")
        return v.lower()

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level value."""
        allowed_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in allowed_levels:
            raise ValueError(f"Log level must be one of: {allowed_levels}")
        return v.upper()

    @model_validator(mode="after")
    def validate_production_debug(self) -> "Settings":
        """Debug mode must be disabled in production."""
        if self.environment == "production" and self.debug:
            raise ValueError("Debug mode must be disabled in production")
        return self

    @property
    def is_development(self) -> bool:
        """Check if running in development environment."""
        return self.environment == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment == "production"


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached application settings.

    Settings are loaded once and reused; call ``get_settings.cache_clear()``
    after changing the environment.

    Returns:
        Settings: The application settings instance.
    """
    return Settings()


def validate_required_settings(settings: Optional[Settings] = None) -> None:
    """
    Validate that the security policy is safe for the current environment.

    Raises:
        ConfigurationError: If a production deployment weakens the policy.
    """
    settings = settings or get_settings()
    policy = settings.security

    if settings.is_production:
        disabled = [
            name for name, enabled in (
                ("CSRF protection", policy.enable_csrf),
                ("security headers", policy.enable_security_headers),
                ("input sanitization", policy.enable_input_sanitization),
            )
            if not enabled
        ]
        if disabled:
            raise ConfigurationError(
                f"{', '.join(disabled)} must be enabled in production environment"
            )

        if not policy.enforce_ip_binding:
            raise ConfigurationError("Session IP binding must be enforced in production environment")


__all__ = [
    "SecurityPolicy",
    "Settings",
    "get_settings",
    "validate_required_settings",
    "FORBIDDEN_RICH_TEXT_TAGS",
]
