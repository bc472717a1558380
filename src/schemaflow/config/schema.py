"""Configuration schema and validation using Pydantic.

This module defines the settings schema that validates and coerces configuration
values from various sources (environment, files, programmatic) into the correct
types with proper defaults.
"""

from typing import Any

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from schemaflow.constants import (
    DEFAULT_CONFIDENCE_THRESHOLD,
    DEFAULT_PROVIDER,
    DEFAULT_TIMEOUT,
    MAX_ATTEMPTS,
    RETRY_BASE_DELAY,
)
from schemaflow.core.types import Intelligence, Mode

ENV_PREFIX = "SCHEMAFLOW_"


class SchemaFlowSettings(BaseSettings):
    """Pydantic settings schema for SchemaFlow configuration.

    This handles validation, type coercion, and default values for all
    configuration fields. It integrates with environment variables using
    the SCHEMAFLOW_ prefix.
    """

    model_config = SettingsConfigDict(
        env_prefix=ENV_PREFIX,
        env_file=None,
        case_sensitive=False,
        extra="ignore",  # Ignore unknown env vars for forward compatibility
    )

    # --- Provider and models ---

    provider: str = Field(
        default=DEFAULT_PROVIDER,
        description="Model provider name; selects the model table and pricing",
        min_length=1,
    )
    api_key: str | None = Field(
        default=None,
        description="Provider API key, handed to invokers that need one",
    )
    model: str | None = Field(
        default=None,
        description="Model used for every tier unless a tier override is set",
    )
    model_smart: str | None = Field(default=None, description="Model for the smart tier")
    model_fast: str | None = Field(default=None, description="Model for the fast tier")
    model_quick: str | None = Field(default=None, description="Model for the quick tier")

    # --- Resilience ---

    timeout: float = Field(
        default=DEFAULT_TIMEOUT,
        description="Per-operation deadline in seconds",
        gt=0,
    )
    max_attempts: int = Field(
        default=MAX_ATTEMPTS,
        description="Invocation attempts per operation, including the first",
        ge=1,
    )
    retry_base_delay: float = Field(
        default=RETRY_BASE_DELAY,
        description="Backoff after the first failed attempt, in seconds",
        ge=0,
    )

    # --- Operation defaults ---

    confidence_threshold: float = Field(
        default=DEFAULT_CONFIDENCE_THRESHOLD,
        description="Minimum parse confidence accepted by operations",
        ge=0.0,
        le=1.0,
    )
    default_mode: Mode = Field(default=Mode.TRANSFORM)
    default_intelligence: Intelligence = Field(default=Intelligence.FAST)

    # --- Diagnostics ---

    debug: bool = Field(default=False, description="Verbose debug logging")
    trace: bool = Field(default=True, description="Record spans for operations")
    metrics: bool = Field(default=True, description="Record cost for operations")

    # --- Validation Rules ---

    @field_validator("provider", mode="before")
    @classmethod
    def normalize_provider(cls, v: Any) -> Any:
        return v.strip().lower() if isinstance(v, str) else v

    @field_validator("default_mode", "default_intelligence", mode="before")
    @classmethod
    def parse_enum_name(cls, v: Any) -> Any:
        """Accept enum values case-insensitively ("STRICT", "strict")."""
        return v.strip().lower() if isinstance(v, str) else v

    def to_dict(self) -> dict[str, Any]:
        """Convert to a plain dictionary suitable for SourceMap annotation."""
        return {name: getattr(self, name) for name in type(self).model_fields}


def schema_defaults() -> dict[str, Any]:
    """Declared defaults without reading the environment."""
    return {
        name: info.get_default(call_default_factory=True)
        for name, info in SchemaFlowSettings.model_fields.items()
    }
