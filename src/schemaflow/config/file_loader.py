"""File-based configuration loading with profile support.

This module handles loading configuration from TOML files, supporting both
project-level (pyproject.toml ``[tool.schemaflow]``) and home-level
(~/.config/schemaflow.toml) configuration with named profiles.
"""

import os
from pathlib import Path
import tomllib
from typing import Any

from schemaflow.exceptions import ConfigurationError

HOME_CONFIG_ENV = "SCHEMAFLOW_CONFIG_HOME"
TOOL_SECTION = "schemaflow"


class ConfigFileError(ConfigurationError):
    """Raised when configuration file loading fails."""

    def __init__(
        self, file_path: Path, message: str, cause: Exception | None = None
    ) -> None:
        self.file_path = file_path
        self.message = message
        self.cause = cause
        super().__init__(f"Config file error in {file_path}: {message}")


class FileConfigLoader:
    """Loads configuration from TOML files with profile support."""

    def load_project_config(
        self, project_root: Path | None = None, profile: str | None = None
    ) -> dict[str, Any]:
        """Load configuration from the nearest pyproject.toml.

        Args:
            project_root: Directory to search from. If None, searches the
                current directory and its parents.
            profile: Optional profile name under
                ``[tool.schemaflow.profiles.<name>]``.

        Returns:
            Configuration values; empty if there is no file or section.

        Raises:
            ConfigFileError: If the file cannot be parsed or the profile is missing.
        """
        pyproject_path = self._find_pyproject_toml(project_root)
        if not pyproject_path:
            return {}
        data = self._read_toml(pyproject_path)
        section = data.get("tool", {}).get(TOOL_SECTION, {})
        if not section:
            return {}
        return self._select_profile(pyproject_path, section, profile)

    def load_home_config(self, profile: str | None = None) -> dict[str, Any]:
        """Load configuration from the home file (root level or ``[profiles.<name>]``)."""
        home_config_path = self.home_config_path()
        if not home_config_path.exists():
            return {}
        data = self._read_toml(home_config_path)
        return self._select_profile(home_config_path, data, profile)

    def home_config_path(self) -> Path:
        """``$SCHEMAFLOW_CONFIG_HOME`` or ~/.config/schemaflow.toml."""
        override = os.getenv(HOME_CONFIG_ENV)
        if override:
            return Path(override)
        return Path.home() / ".config" / "schemaflow.toml"

    def _read_toml(self, path: Path) -> dict[str, Any]:
        try:
            with Path(path).open(mode="rb") as f:
                return tomllib.load(f)
        except (OSError, tomllib.TOMLDecodeError) as e:
            raise ConfigFileError(path, f"Failed to parse TOML: {e}", cause=e) from e

    def _select_profile(
        self, path: Path, section: dict[str, Any], profile: str | None
    ) -> dict[str, Any]:
        if profile:
            profiles = section.get("profiles", {})
            if profile not in profiles:
                available = list(profiles.keys()) if profiles else []
                raise ConfigFileError(
                    path,
                    f"Profile '{profile}' not found. Available profiles: {available}",
                )
            return dict(profiles[profile])
        config = dict(section)
        config.pop("profiles", None)
        return config

    def _find_pyproject_toml(self, start_dir: Path | None = None) -> Path | None:
        """Find pyproject.toml by searching up the directory tree."""
        current = Path(start_dir or Path.cwd()).resolve()
        while True:
            candidate = current / "pyproject.toml"
            if candidate.exists():
                return candidate
            if current == current.parent:
                return None
            current = current.parent
