"""
Global test configuration with support for different test types.
"""

from collections.abc import Callable
import dataclasses
import os
from typing import Any

import pytest

from schemaflow.analysis import clear_caches
from schemaflow.client import RetryExecutor, ScriptedInvoker
from schemaflow.config import resolve_config
from schemaflow.dispatcher import OperationDispatcher
from schemaflow.efficiency import CostLedger
from schemaflow.telemetry import SimpleReporter, Tracer


# --- Environment Isolation (Autouse) ---
@pytest.fixture(autouse=True)
def isolate_schemaflow_env(request, monkeypatch):
    """Ensure a clean SCHEMAFLOW_* environment for each test.

    Escape hatch: @pytest.mark.allow_env_pollution keeps the current env.
    """
    if request.node.get_closest_marker("allow_env_pollution"):
        return
    for key in list(os.environ.keys()):
        if key.startswith("SCHEMAFLOW_"):
            monkeypatch.delenv(key, raising=False)


@pytest.fixture(autouse=True)
def neutral_home_config(request, monkeypatch, tmp_path, isolate_schemaflow_env):  # noqa: ARG001
    """Point the home-config path to an isolated temp file by default.

    Prevents reading a developer's real ~/.config/schemaflow.toml during tests.
    """
    if request.node.get_closest_marker("allow_real_home_config"):
        return
    fake_home_dir = tmp_path / "home_config_isolated"
    fake_home_dir.mkdir(parents=True, exist_ok=True)
    monkeypatch.setenv("SCHEMAFLOW_CONFIG_HOME", str(fake_home_dir / "schemaflow.toml"))


@pytest.fixture(autouse=True)
def isolated_project_root(monkeypatch, tmp_path):
    """Run each test from an empty directory so no pyproject.toml is picked up."""
    project_dir = tmp_path / "project"
    project_dir.mkdir()
    monkeypatch.chdir(project_dir)


@pytest.fixture(autouse=True)
def fresh_type_caches():
    """Type descriptor caches are process-wide; start every test empty."""
    clear_caches()
    yield
    clear_caches()


# --- Test Environment Markers ---
def pytest_configure(config):
    """Configure custom markers for test organization."""
    markers = [
        "unit: Fast, isolated unit tests",
        "contract: Behavioral guarantees of the public API",
        "integration: Dispatcher tests against a scripted invoker",
        "allow_env_pollution: Keep SCHEMAFLOW_* environment variables",
        "allow_real_home_config: Read the real home configuration file",
    ]
    for marker in markers:
        config.addinivalue_line("markers", marker)


# --- Core Fixtures ---


@pytest.fixture
def ledger() -> CostLedger:
    return CostLedger()


@pytest.fixture
def reporter() -> SimpleReporter:
    return SimpleReporter()


@pytest.fixture
def tracer(reporter) -> Tracer:
    return Tracer(reporter)


@pytest.fixture
def frozen_config():
    """Defaults with no retry backoff, for fast dispatcher tests."""
    return resolve_config({"max_attempts": 3, "retry_base_delay": 0.0}).to_frozen()


@pytest.fixture
def make_dispatcher(
    frozen_config, ledger, tracer
) -> Callable[..., tuple[OperationDispatcher, ScriptedInvoker]]:
    """Factory building a dispatcher around a ScriptedInvoker.

    Usage:
        dispatcher, invoker = make_dispatcher('{"name": "Ada"}')
    """

    def _make(*steps: Any, **config_overrides: Any):
        invoker = ScriptedInvoker(steps)
        config = (
            dataclasses.replace(frozen_config, **config_overrides)
            if config_overrides
            else frozen_config
        )
        dispatcher = OperationDispatcher(
            invoker,
            config,
            ledger=ledger,
            tracer=tracer,
            retry=RetryExecutor(),
        )
        return dispatcher, invoker

    return _make
