"""Unit tests for configuration resolution, scoping and redaction.

These tests verify the core behaviors of the configuration module:
- Precedence: programmatic > environment > project file > home file > defaults.
- Origin tracking for every field.
- ``config_scope`` affecting only ``resolve_config`` calls inside it.
"""

import os
from unittest.mock import patch

import pytest

from schemaflow.config import (
    ConfigFileError,
    config_override,
    config_scope,
    resolve_config,
)
from schemaflow.core.types import Intelligence, Mode
from schemaflow.exceptions import ConfigurationError


def _write_pyproject(directory, body: str) -> None:
    (directory / "pyproject.toml").write_text(body, encoding="utf-8")


class TestDefaults:
    """Schema defaults when nothing else is configured."""

    @pytest.mark.unit
    def test_defaults(self):
        resolved = resolve_config()

        assert resolved.provider == "openai"
        assert resolved.timeout == 30.0
        assert resolved.max_attempts == 3
        assert resolved.retry_base_delay == 1.0
        assert resolved.confidence_threshold == 0.3
        assert resolved.default_mode is Mode.TRANSFORM
        assert resolved.default_intelligence is Intelligence.FAST
        assert resolved.trace is True
        assert resolved.metrics is True
        assert resolved.origin["provider"] == "default"


class TestPrecedence:
    """Each source overrides the ones below it."""

    @pytest.mark.unit
    def test_environment_overrides_defaults(self):
        with patch.dict(
            os.environ,
            {"SCHEMAFLOW_PROVIDER": " Anthropic ", "SCHEMAFLOW_MAX_ATTEMPTS": "5"},
        ):
            resolved = resolve_config()

        assert resolved.provider == "anthropic"
        assert resolved.max_attempts == 5
        assert resolved.origin["max_attempts"] == "env"

    @pytest.mark.unit
    def test_programmatic_overrides_environment(self):
        with patch.dict(os.environ, {"SCHEMAFLOW_TIMEOUT": "10"}):
            resolved = resolve_config({"timeout": 2.5})

        assert resolved.timeout == 2.5
        assert resolved.origin["timeout"] == "programmatic"

    @pytest.mark.unit
    def test_project_file_overrides_home_file(self, tmp_path):
        home = tmp_path / "home.toml"
        home.write_text('model = "home-model"\ntimeout = 12\n', encoding="utf-8")
        _write_pyproject(tmp_path, '[tool.schemaflow]\nmodel = "project-model"\n')

        with patch.dict(os.environ, {"SCHEMAFLOW_CONFIG_HOME": str(home)}):
            resolved = resolve_config(project_root=tmp_path)

        assert resolved.model == "project-model"
        assert resolved.timeout == 12
        assert resolved.origin["model"] == "file"

    @pytest.mark.unit
    def test_profiles_select_a_named_section(self, tmp_path):
        _write_pyproject(
            tmp_path,
            '[tool.schemaflow]\nmodel = "base"\n\n'
            '[tool.schemaflow.profiles.cheap]\nmodel = "tiny"\nmax_attempts = 1\n',
        )

        resolved = resolve_config(profile="cheap", project_root=tmp_path)

        assert resolved.model == "tiny"
        assert resolved.max_attempts == 1

    @pytest.mark.unit
    def test_unknown_fields_are_ignored(self):
        resolved = resolve_config({"not_a_field": 1})
        assert not hasattr(resolved, "not_a_field")


class TestValidation:
    """Invalid values fail resolution with a ConfigurationError."""

    @pytest.mark.unit
    def test_invalid_programmatic_value(self):
        with pytest.raises(ConfigurationError, match="Configuration validation failed"):
            resolve_config({"confidence_threshold": 1.5})

    @pytest.mark.unit
    def test_invalid_environment_value(self):
        with (
            patch.dict(os.environ, {"SCHEMAFLOW_MAX_ATTEMPTS": "zero"}),
            pytest.raises(ConfigurationError, match="Environment configuration error"),
        ):
            resolve_config()

    @pytest.mark.unit
    def test_malformed_project_file_raises(self, tmp_path):
        _write_pyproject(tmp_path, "[tool.schemaflow\nbroken")

        with pytest.raises(ConfigFileError, match="Failed to parse TOML"):
            resolve_config(project_root=tmp_path)

    @pytest.mark.unit
    def test_malformed_home_file_is_skipped(self, tmp_path):
        home = tmp_path / "broken.toml"
        home.write_text("not = [valid", encoding="utf-8")

        with patch.dict(os.environ, {"SCHEMAFLOW_CONFIG_HOME": str(home)}):
            resolved = resolve_config()

        assert resolved.provider == "openai"

    @pytest.mark.unit
    def test_enum_names_are_case_insensitive(self):
        resolved = resolve_config({"default_mode": "STRICT", "default_intelligence": "Smart"})
        assert resolved.default_mode is Mode.STRICT
        assert resolved.default_intelligence is Intelligence.SMART


class TestScopesAndFreezing:
    """Scoped overrides and the frozen view held by dispatchers."""

    @pytest.mark.unit
    def test_config_scope_applies_inside_only(self):
        scoped = resolve_config().with_overrides(max_attempts=1)

        with config_scope(scoped):
            assert resolve_config().max_attempts == 1
            assert resolve_config({"timeout": 4.0}).timeout == 4.0
        assert resolve_config().max_attempts == 3

    @pytest.mark.unit
    def test_config_override(self):
        with config_override(provider="cerebras"):
            assert resolve_config().provider == "cerebras"
            assert resolve_config().origin["provider"] == "programmatic"

    @pytest.mark.unit
    def test_api_key_is_redacted(self):
        resolved = resolve_config({"api_key": "sk-secret-123"})
        frozen = resolved.to_frozen()

        for text in (str(resolved), repr(resolved), str(frozen), resolved.audit()):
            assert "sk-secret-123" not in text
            assert "[REDACTED]" in text
        assert frozen.api_key == "sk-secret-123"

    @pytest.mark.unit
    def test_tier_models(self):
        frozen = resolve_config({"model_smart": "big"}).to_frozen()
        assert frozen.tier_models[Intelligence.SMART] == "big"
        assert frozen.tier_models[Intelligence.FAST] is None

    @pytest.mark.unit
    def test_audit_names_env_variables(self):
        with patch.dict(os.environ, {"SCHEMAFLOW_DEBUG": "true"}):
            audit = resolve_config().audit()
        assert "debug: env:SCHEMAFLOW_DEBUG=True" in audit
