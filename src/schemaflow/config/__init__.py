"""Configuration for SchemaFlow.

Resolution precedence: programmatic > environment (``SCHEMAFLOW_*``) >
project ``pyproject.toml`` ``[tool.schemaflow]`` > home file > defaults.
"""

from pathlib import Path
from typing import Any

from .file_loader import ConfigFileError, FileConfigLoader
from .resolver import ConfigResolver
from .schema import SchemaFlowSettings
from .scope import config_override, config_scope, get_ambient_resolved_config
from .types import ConfigOrigin, FrozenConfig, ResolvedConfig, SourceMap


def resolve_config(
    programmatic: dict[str, Any] | None = None,
    *,
    profile: str | None = None,
    project_root: str | Path | None = None,
) -> ResolvedConfig:
    """Resolve configuration, honouring an enclosing ``config_scope``."""
    ambient = get_ambient_resolved_config()
    if ambient is not None:
        return ambient.with_overrides(**programmatic) if programmatic else ambient
    return ConfigResolver().resolve(
        programmatic,
        profile=profile,
        project_root=Path(project_root) if project_root else None,
    )


__all__ = [
    "ConfigFileError",
    "ConfigOrigin",
    "ConfigResolver",
    "FileConfigLoader",
    "FrozenConfig",
    "ResolvedConfig",
    "SchemaFlowSettings",
    "SourceMap",
    "config_override",
    "config_scope",
    "resolve_config",
]
