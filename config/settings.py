"""
Configuration management for the GeoTrack ingestion service.

Settings are loaded with pydantic-settings from environment variables and
from ``.env`` / ``.env.<environment>`` files. Secrets are never hard-coded.
Startup fails with a ConfigurationError that lists every missing or
invalid value.
"""

import os
import uuid
from enum import Enum
from pathlib import Path
from typing import List, Optional, Tuple

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    """Supported deployment environments."""
    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"


class StorageBackend(str, Enum):
    """Where fixes, vehicles and snapshots are kept."""
    MEMORY = "memory"
    ELASTICSEARCH = "elasticsearch"


def _detect_environment() -> Environment:
    """
    Detect the current environment from the ENVIRONMENT variable.

    Returns:
        Environment: The detected environment, DEVELOPMENT if unset or unknown.
    """
    env_value = os.environ.get("ENVIRONMENT", "development").lower().strip()
    try:
        return Environment(env_value)
    except ValueError:
        return Environment.DEVELOPMENT


def _get_env_files(environment: Environment) -> Tuple[str, ...]:
    """
    Get the .env files to load for the given environment.

    The base ``.env`` comes first so the environment-specific file wins.
    """
    return (".env", f".env.{environment.value}")


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    The Elasticsearch connection is only required when ``storage_backend``
    is ``elasticsearch``; the in-memory backend needs no external service.
    """

    # Environment
    environment: Environment = Field(
        default=Environment.DEVELOPMENT,
        description="Deployment environment (development, staging, production)"
    )

    # Storage
    storage_backend: StorageBackend = Field(
        default=StorageBackend.MEMORY,
        description="Storage backend: 'memory' or 'elasticsearch'"
    )
    elastic_endpoint: Optional[str] = Field(
        default=None,
        description="Elasticsearch endpoint URL"
    )
    elastic_api_key: Optional[str] = Field(
        default=None,
        description="Elasticsearch API key for authentication"
    )
    elastic_fix_index: str = Field(default="gps_fixes", min_length=1)
    elastic_latest_index: str = Field(default="vehicle_latest_locations", min_length=1)
    elastic_vehicle_index: str = Field(default="vehicles", min_length=1)
    elastic_tenant_index: str = Field(default="tenants", min_length=1)
    elastic_registration_index: str = Field(default="vehicle_registrations", min_length=1)

    # Tenancy
    bootstrap_tenant_ids: List[str] = Field(
        default_factory=list,
        description="Tenant ids registered at startup"
    )

    # Ingestion
    max_batch_size: int = Field(
        default=1000,
        ge=1,
        le=10000,
        description="Largest accepted batch of GPS fixes"
    )
    default_stale_after_seconds: int = Field(
        default=300,
        ge=1,
        le=86400,
        description="Staleness threshold when the query omits staleAfterSeconds"
    )
    snapshot_conflict_max_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Attempts per ingestion call when the latest location changes concurrently"
    )
    snapshot_conflict_initial_delay: float = Field(
        default=0.05,
        gt=0,
        description="Initial backoff in seconds between conflict retries"
    )

    # Rate Limiting
    rate_limit_enabled: bool = Field(default=True)
    rate_limit_requests_per_minute: int = Field(
        default=600,
        ge=1,
        le=100000,
        description="Maximum API requests per minute per IP"
    )

    # Observability
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)"
    )
    otel_endpoint: Optional[str] = Field(
        default=None,
        description="OpenTelemetry collector endpoint URL"
    )
    otel_service_name: str = Field(
        default="geotrack-ingestion",
        description="Service name for OpenTelemetry traces"
    )

    # CORS
    cors_origins: List[str] = Field(
        default=["http://localhost:3000"],
        description="Allowed CORS origins"
    )

    # Replaced per environment in create_settings_for_environment()
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    @field_validator("elastic_endpoint")
    @classmethod
    def validate_elastic_endpoint(cls, v: Optional[str]) -> Optional[str]:
        """Blank becomes None; anything else must be an HTTP(S) URL."""
        if v is None or not v.strip():
            return None
        v = v.strip()
        if not (v.startswith("http://") or v.startswith("https://")):
            raise ValueError("elastic_endpoint must be a valid HTTP/HTTPS URL")
        return v

    @field_validator("elastic_api_key")
    @classmethod
    def validate_elastic_api_key(cls, v: Optional[str]) -> Optional[str]:
        if v is None or not v.strip():
            return None
        return v.strip()

    @field_validator("bootstrap_tenant_ids")
    @classmethod
    def validate_bootstrap_tenant_ids(cls, v: List[str]) -> List[str]:
        """Every entry must be a non-nil UUID; values are normalised."""
        normalised = []
        for raw in v:
            try:
                parsed = uuid.UUID(str(raw).strip())
            except ValueError:
                raise ValueError(f"bootstrap_tenant_ids contains an invalid UUID: {raw}")
            if parsed.int == 0:
                raise ValueError("bootstrap_tenant_ids must not contain the nil UUID")
            normalised.append(str(parsed))
        return normalised

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate that log_level is a valid logging level."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        v = v.strip().upper()
        if v not in valid_levels:
            raise ValueError(f"log_level must be one of: {', '.join(sorted(valid_levels))}")
        return v

    @field_validator("cors_origins")
    @classmethod
    def validate_cors_origins(cls, v: List[str]) -> List[str]:
        """Reject wildcards and anything that is not an HTTP(S) origin."""
        validated_origins = []
        for origin in v:
            origin = origin.strip()
            if "*" in origin:
                raise ValueError(
                    f"Wildcard patterns are not allowed in CORS origins: {origin}. "
                    "Specify exact frontend domains."
                )
            if not (origin.startswith("http://") or origin.startswith("https://")):
                raise ValueError(
                    f"Invalid CORS origin format: {origin}. "
                    "Must start with http:// or https://"
                )
            validated_origins.append(origin)
        return validated_origins

    @model_validator(mode="after")
    def validate_storage_config(self) -> "Settings":
        """The Elasticsearch backend needs both an endpoint and an API key."""
        if self.storage_backend == StorageBackend.ELASTICSEARCH:
            missing = [
                name for name in ("elastic_endpoint", "elastic_api_key")
                if getattr(self, name) is None
            ]
            if missing:
                raise ValueError(
                    f"{' and '.join(missing)} required when storage_backend is 'elasticsearch'"
                )
        return self


class ConfigurationError(Exception):
    """Exception raised when configuration validation fails."""

    def __init__(self, message: str, missing_fields: Optional[List[str]] = None,
                 invalid_fields: Optional[dict] = None):
        self.message = message
        self.missing_fields = missing_fields or []
        self.invalid_fields = invalid_fields or {}
        super().__init__(self.format_error_message())

    def format_error_message(self) -> str:
        """Format a descriptive error message listing all issues."""
        parts = [self.message]

        if self.missing_fields:
            parts.append(f"\nMissing required fields: {', '.join(self.missing_fields)}")

        if self.invalid_fields:
            invalid_parts = [f"  - {field}: {error}" for field, error in self.invalid_fields.items()]
            parts.append("\nInvalid field values:\n" + "\n".join(invalid_parts))

        return "".join(parts)


def create_settings_for_environment(environment: Optional[Environment] = None) -> Settings:
    """
    Build Settings for one environment.

    Args:
        environment: Optional override; detected from ENVIRONMENT when omitted.

    Returns:
        Settings: Validated settings for the environment.

    Raises:
        ConfigurationError: If settings are missing or invalid.
    """
    if environment is None:
        environment = _detect_environment()

    env_files = tuple(f for f in _get_env_files(environment) if Path(f).exists())

    try:
        class EnvironmentSettings(Settings):
            model_config = SettingsConfigDict(
                env_file=env_files or None,
                env_file_encoding="utf-8",
                case_sensitive=False,
                extra="ignore"
            )

        return EnvironmentSettings(environment=environment)
    except Exception as e:
        missing_fields = []
        invalid_fields = {}

        if hasattr(e, "errors"):
            for error in e.errors():
                field_name = ".".join(str(loc) for loc in error.get("loc", [])) or "settings"
                error_msg = error.get("msg", str(error))
                if error.get("type", "") == "missing":
                    missing_fields.append(field_name)
                else:
                    invalid_fields[field_name] = error_msg

        raise ConfigurationError(
            f"Failed to load configuration for environment '{environment.value}'",
            missing_fields=missing_fields,
            invalid_fields=invalid_fields
        ) from e


_settings_cache: Optional[Settings] = None


def get_settings() -> Settings:
    """
    Get the application settings singleton.

    Raises:
        ConfigurationError: If settings are missing or invalid.
    """
    global _settings_cache

    if _settings_cache is None:
        _settings_cache = create_settings_for_environment()

    return _settings_cache


def clear_settings_cache() -> None:
    """Forget cached settings so the next get_settings() reloads them."""
    global _settings_cache
    _settings_cache = None


def validate_startup(settings: Optional[Settings] = None) -> Settings:
    """
    Cross-field checks run once before the app accepts requests.

    Returns:
        Settings: The validated settings.

    Raises:
        ConfigurationError: If any check fails.
    """
    settings = settings or get_settings()
    validation_errors = {}

    if settings.environment == Environment.PRODUCTION:
        localhost_only = all(
            "localhost" in origin or "127.0.0.1" in origin
            for origin in settings.cors_origins
        )
        if localhost_only:
            validation_errors["cors_origins"] = (
                "Production environment requires non-localhost CORS origins. "
                "Configure your production frontend domain(s)."
            )
        if settings.storage_backend == StorageBackend.MEMORY:
            validation_errors["storage_backend"] = (
                "The in-memory backend does not persist data and cannot be used in production."
            )

    if validation_errors:
        raise ConfigurationError(
            "Configuration validation failed during startup",
            invalid_fields=validation_errors
        )
    return settings
