"""
Shared configuration management for the Token Verifier.
"""

from typing import Dict, Optional, Tuple

from pydantic import Field, ValidationError as PydanticValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from shared.errors import ConfigurationError


DEFAULT_IDENTITY_CLAIMS: Tuple[str, ...] = ("email", "emails", "unique_name", "name")


class VerifierSettings(BaseSettings):
    """Immutable verifier configuration, read once at startup."""

    model_config = SettingsConfigDict(
        env_prefix="VERIFIER_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
        frozen=True,
        str_strip_whitespace=True,
    )

    # Environment
    env: str = "local"
    log_level: str = "info"
    host: str = "0.0.0.0"
    port: int = 8010

    # Identity provider
    issuer: str = Field(min_length=1)
    audience: str = Field(min_length=1)
    issuer_url: str = Field(min_length=1)

    # Validation
    identity_claims: Tuple[str, ...] = DEFAULT_IDENTITY_CLAIMS
    clock_skew_seconds: int = Field(default=300, ge=0)

    # Signing key cache
    jwks_cache_ttl_seconds: int = Field(default=3600, gt=0)
    jwks_grace_seconds: int = Field(default=43200, ge=0)
    forced_refresh_cooldown_seconds: float = Field(default=30.0, ge=0)

    # Discovery
    http_timeout_seconds: float = Field(default=5.0, gt=0)
    discovery_max_attempts: int = Field(default=3, ge=1)
    discovery_backoff_seconds: float = Field(default=0.2, ge=0)
    breaker_failure_threshold: int = Field(default=5, ge=1)
    breaker_recovery_seconds: float = Field(default=30.0, gt=0)


def load_settings(**overrides) -> VerifierSettings:
    """Build settings from the environment, failing fast on missing values.

    Keyword overrides take precedence over environment variables and are
    mainly used by tests and embedding applications.
    """
    try:
        return VerifierSettings(**overrides)
    except PydanticValidationError as exc:
        missing = []
        invalid: Dict[str, Optional[str]] = {}
        for error in exc.errors():
            field = ".".join(str(part) for part in error.get("loc", ())) or "settings"
            if error.get("type") in ("missing", "string_too_short"):
                missing.append(field)
            else:
                invalid[field] = error.get("msg")

        if missing:
            raise ConfigurationError(
                f"Missing required configuration: {', '.join(sorted(missing))}",
                details={"missing": sorted(missing), "invalid": invalid},
            ) from exc
        raise ConfigurationError(
            "Invalid configuration",
            details={"invalid": invalid},
        ) from exc
