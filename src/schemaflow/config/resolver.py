"""Configuration resolution with precedence handling.

Merges configuration from every source according to the documented order:
Programmatic > Environment > Project file > Home file > Defaults
"""

import logging
import os
from pathlib import Path
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from schemaflow.exceptions import ConfigurationError

from .file_loader import ConfigFileError, FileConfigLoader
from .schema import ENV_PREFIX, SchemaFlowSettings, schema_defaults
from .types import ConfigOrigin, ResolvedConfig, SourceMap

log = logging.getLogger(__name__)

PROFILE_ENV = f"{ENV_PREFIX}PROFILE"


class SourceTracker:
    """Tracks the origin of configuration values during resolution."""

    def __init__(self) -> None:
        self._origins: dict[str, ConfigOrigin] = {}

    def set_origin(self, field: str, origin: ConfigOrigin) -> None:
        self._origins[field] = origin

    def get_source_map(self) -> SourceMap:
        return dict(self._origins)


def load_env_config() -> dict[str, Any]:
    """Values set through ``SCHEMAFLOW_*`` variables, validated but not defaulted."""
    env_values = {
        name: os.environ[f"{ENV_PREFIX}{name.upper()}"]
        for name in SchemaFlowSettings.model_fields
        if f"{ENV_PREFIX}{name.upper()}" in os.environ
    }
    if not env_values:
        return {}
    try:
        settings = SchemaFlowSettings(**env_values)
    except PydanticValidationError as e:
        raise ConfigurationError(f"Environment configuration error: {e}") from e
    return {name: getattr(settings, name) for name in env_values}


class ConfigResolver:
    """Resolves configuration from multiple sources with proper precedence."""

    def __init__(self) -> None:
        self.file_loader = FileConfigLoader()

    def resolve(
        self,
        programmatic: dict[str, Any] | None = None,
        *,
        profile: str | None = None,
        project_root: Path | None = None,
    ) -> ResolvedConfig:
        """Resolve configuration from all sources.

        Raises:
            ConfigurationError: If validation fails.
            ConfigFileError: If the project configuration file is malformed.
        """
        source_tracker = SourceTracker()
        merged_config: dict[str, Any] = {}

        if profile is None:
            profile = os.getenv(PROFILE_ENV)

        def _apply(values: dict[str, Any], origin: ConfigOrigin) -> None:
            for field, value in values.items():
                if field in merged_config:  # Only override known fields
                    merged_config[field] = value
                    source_tracker.set_origin(field, origin)

        # Step 1: schema defaults
        for field, value in schema_defaults().items():
            merged_config[field] = value
            source_tracker.set_origin(field, "default")

        # Step 2: home file (errors are non-fatal)
        try:
            _apply(self.file_loader.load_home_config(profile=profile), "file")
        except ConfigFileError as e:
            log.warning("Ignoring home configuration: %s", e)

        # Step 3: project file
        try:
            _apply(
                self.file_loader.load_project_config(
                    project_root=project_root, profile=profile
                ),
                "file",
            )
        except ConfigFileError:
            if profile is None:
                raise
            log.debug("Profile %r not available in project configuration", profile)

        # Step 4: environment
        _apply(load_env_config(), "env")

        # Step 5: programmatic overrides
        _apply(dict(programmatic or {}), "programmatic")

        # Step 6: validate the merged result
        try:
            final_config = SchemaFlowSettings(**merged_config).to_dict()
        except PydanticValidationError as e:
            raise ConfigurationError(f"Configuration validation failed: {e}") from e

        return ResolvedConfig(**final_config, origin=source_tracker.get_source_map())
