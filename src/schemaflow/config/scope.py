"""Configuration scoping for entry-time overrides.

``config_scope()`` only affects ``resolve_config()`` calls made inside the
scope. A dispatcher freezes its configuration at construction and does not
observe later scope changes.
"""

from collections.abc import Generator
from contextlib import contextmanager
import contextvars
from typing import Any

from .types import ResolvedConfig

_ambient_resolved_config: contextvars.ContextVar[ResolvedConfig] = (
    contextvars.ContextVar("schemaflow_resolved_config")
)


def get_ambient_resolved_config() -> ResolvedConfig | None:
    """The configuration set by an enclosing scope, or None."""
    try:
        return _ambient_resolved_config.get()
    except LookupError:
        return None


@contextmanager
def config_scope(config: ResolvedConfig) -> Generator[None]:
    """Temporarily use a different resolved configuration.

    Example:
        base_config = resolve_config()
        with config_scope(base_config.with_overrides(max_attempts=1)):
            dispatcher = create_dispatcher(invoker)
    """
    token = _ambient_resolved_config.set(config)
    try:
        yield
    finally:
        _ambient_resolved_config.reset(token)


@contextmanager
def config_override(**overrides: Any) -> Generator[None]:
    """Scope with specific fields overridden on top of the current configuration."""
    from . import resolve_config

    with config_scope(resolve_config().with_overrides(**overrides)):
        yield
