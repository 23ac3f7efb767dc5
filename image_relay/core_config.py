"""
Image Relay - Unified Configuration

ENVIRONMENT VARIABLE CONTRACT
=============================

Required:
  SUPABASE_DB_URL               - Postgres connection string (LISTEN + enrichment queries)
  SUPABASE_URL                  - Supabase project REST URL (storage uploads)
  SUPABASE_SERVICE_ROLE_KEY     - Service role JWT (server-side only)
  API_BASE_URL                  - Internal API serving image bytes; the notification
                                  payload path is appended verbatim
  DESTINATION_FOLDER            - Folder inside STORAGE_BUCKET that receives uploads

Optional:
  NOTIFY_CHANNEL                - Postgres channel to LISTEN on (default: new_image_event)
  ENRICHMENT_SHAPE              - style | email (default: style)
  STORAGE_BUCKET                - Supabase Storage bucket (default: images)
  FETCH_TIMEOUT_SECONDS         - HTTP timeout for image fetches (default: none)
  DB_POOL_MIN_SIZE / DB_POOL_MAX_SIZE - enrichment query pool bounds
  ENVIRONMENT                   - dev | staging | prod (default: dev)
  LOG_LEVEL                     - DEBUG | INFO | WARNING | ERROR (default: INFO)

FAIL-FAST BEHAVIOR:
-------------------
Missing required variables raise ConfigurationError naming every missing key.
The runner logs it and exits with status 1.

Usage:
------
    from image_relay.core_config import get_settings

    settings = get_settings()
    print(settings.api_base_url)
"""

from __future__ import annotations

import logging
import os
from enum import Enum
from functools import lru_cache
from typing import Any, Literal

from pydantic import Field, ValidationError, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import ConfigurationError

logger = logging.getLogger(__name__)


class EnrichmentShape(str, Enum):
    """Which session column enriches the filename in this deployment."""

    STYLE = "style"
    EMAIL = "email"


REQUIRED_ENV_VARS = [
    "SUPABASE_DB_URL",
    "SUPABASE_URL",
    "SUPABASE_SERVICE_ROLE_KEY",
    "API_BASE_URL",
    "DESTINATION_FOLDER",
]

_SECRET_FIELDS = {
    "SUPABASE_SERVICE_ROLE_KEY",
    "SUPABASE_DB_URL",
}


class Settings(BaseSettings):
    """
    Settings for the image relay worker.

    Loads from environment variables with fallback to the file named by
    ENV_FILE (default: .env).
    """

    model_config = SettingsConfigDict(
        env_file=os.environ.get("ENV_FILE", ".env"),
        env_file_encoding="utf-8",
        case_sensitive=False,
        populate_by_name=True,
        extra="ignore",
    )

    # =========================================================================
    # DATABASE / NOTIFICATIONS
    # =========================================================================

    SUPABASE_DB_URL: str = Field(..., description="Postgres connection string")
    NOTIFY_CHANNEL: str = Field(
        default="new_image_event",
        min_length=1,
        description="Postgres channel announcing new images",
    )
    ENRICHMENT_SHAPE: EnrichmentShape = Field(
        default=EnrichmentShape.STYLE,
        description="Session column used for filename enrichment (style or email)",
    )
    DB_POOL_MIN_SIZE: int = Field(default=1, ge=0, description="Query pool min size")
    DB_POOL_MAX_SIZE: int = Field(default=5, ge=1, description="Query pool max size")

    # =========================================================================
    # STORAGE
    # =========================================================================

    SUPABASE_URL: str = Field(..., description="Supabase project REST URL")
    SUPABASE_SERVICE_ROLE_KEY: str = Field(..., description="Supabase service role JWT key")
    STORAGE_BUCKET: str = Field(default="images", min_length=1, description="Storage bucket")
    DESTINATION_FOLDER: str = Field(..., description="Folder inside the bucket for uploads")

    # =========================================================================
    # IMAGE SOURCE
    # =========================================================================

    API_BASE_URL: str = Field(..., description="Base URL of the internal image API")
    FETCH_TIMEOUT_SECONDS: float | None = Field(
        default=None,
        gt=0,
        description="HTTP timeout for image fetches; unset means no timeout",
    )

    # =========================================================================
    # ENVIRONMENT CONTROL
    # =========================================================================

    ENVIRONMENT: Literal["dev", "staging", "prod"] = Field(
        default="dev",
        description="Deployment environment",
    )
    LOG_LEVEL: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Logging level",
    )

    @model_validator(mode="before")
    @classmethod
    def _normalize_values(cls, values: dict[str, Any]) -> dict[str, Any]:
        """Strip whitespace/quotes and normalize enum-like values."""
        if not isinstance(values, dict):
            return values

        for key, value in list(values.items()):
            if isinstance(value, str):
                values[key] = value.strip().strip('"').strip("'").strip()

        for key in list(values.keys()):
            upper = key.upper()
            if upper == "ENVIRONMENT" and isinstance(values[key], str):
                raw = values[key].lower()
                if raw == "production":
                    logger.warning("ENVIRONMENT='production' is deprecated; use 'prod'. Normalizing.")
                    raw = "prod"
                elif raw == "development":
                    logger.warning("ENVIRONMENT='development' is deprecated; use 'dev'. Normalizing.")
                    raw = "dev"
                values[key] = raw
            elif upper in ("LOG_LEVEL",) and isinstance(values[key], str):
                values[key] = values[key].upper()
            elif upper == "ENRICHMENT_SHAPE" and isinstance(values[key], str):
                values[key] = values[key].lower()
            elif upper == "FETCH_TIMEOUT_SECONDS" and values[key] == "":
                values[key] = None

        return values

    @model_validator(mode="after")
    def _check_pool_bounds(self) -> "Settings":
        if self.DB_POOL_MIN_SIZE > self.DB_POOL_MAX_SIZE:
            raise ValueError(
                f"DB_POOL_MIN_SIZE ({self.DB_POOL_MIN_SIZE}) exceeds "
                f"DB_POOL_MAX_SIZE ({self.DB_POOL_MAX_SIZE})"
            )
        return self

    # =========================================================================
    # PROPERTY ALIASES
    # =========================================================================

    @property
    def supabase_db_url(self) -> str:
        return self.SUPABASE_DB_URL

    @property
    def supabase_url(self) -> str:
        return self.SUPABASE_URL

    @property
    def supabase_service_role_key(self) -> str:
        return self.SUPABASE_SERVICE_ROLE_KEY

    @property
    def api_base_url(self) -> str:
        return self.API_BASE_URL

    @property
    def destination_folder(self) -> str:
        return self.DESTINATION_FOLDER

    @property
    def storage_bucket(self) -> str:
        return self.STORAGE_BUCKET

    @property
    def notify_channel(self) -> str:
        return self.NOTIFY_CHANNEL

    @property
    def enrichment_shape(self) -> EnrichmentShape:
        return self.ENRICHMENT_SHAPE

    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT == "prod"


# =========================================================================
# SINGLETON & FACTORY
# =========================================================================


def _missing_fields(exc: ValidationError) -> list[str]:
    missing = []
    for error in exc.errors():
        if error.get("type") == "missing" and error.get("loc"):
            missing.append(str(error["loc"][0]).upper())
    return missing


def load_settings(**overrides: Any) -> Settings:
    """
    Build a Settings instance, converting validation failures to ConfigurationError.

    Raises:
        ConfigurationError: required values are missing or invalid
    """
    try:
        return Settings(**overrides)  # type: ignore[call-arg]
    except ValidationError as exc:
        missing = _missing_fields(exc)
        if missing:
            message = "Missing required environment variable(s): " + ", ".join(missing)
        else:
            message = f"Invalid configuration: {exc}"
        raise ConfigurationError(message, missing=missing) from exc


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get cached settings instance."""
    return load_settings()


def reset_settings() -> None:
    """Clear the cached settings (for testing)."""
    get_settings.cache_clear()


# =========================================================================
# DIAGNOSTIC HELPERS
# =========================================================================


def print_effective_config(settings: Settings | None = None, redact_secrets: bool = True) -> dict[str, Any]:
    """
    Return the effective configuration with secrets redacted.

    Args:
        settings: Settings to describe (defaults to the cached instance)
        redact_secrets: If True, replace secret values with a length marker
    """
    if settings is None:
        settings = get_settings()

    config: dict[str, Any] = {}
    for field_name in type(settings).model_fields:
        value = getattr(settings, field_name, None)
        if isinstance(value, Enum):
            value = value.value
        if redact_secrets and field_name.upper() in _SECRET_FIELDS:
            config[field_name] = f"***SET*** (len={len(str(value))})" if value else None
        else:
            config[field_name] = value
    return config


def log_startup_diagnostics(service_name: str, settings: Settings) -> None:
    """Log a startup banner without exposing secrets."""
    logger.info("=" * 60)
    logger.info(f"SERVICE STARTUP: {service_name}")
    logger.info("=" * 60)
    for key, value in print_effective_config(settings).items():
        logger.info(f"  {key:<26}: {value}")
    logger.info("=" * 60)
