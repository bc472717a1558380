"""Core configuration data types.

This module defines the data structures produced by configuration
resolution, following the resolve-once, freeze-then-flow pattern.
"""

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Literal, NamedTuple

from schemaflow.core.types import Intelligence, Mode

# --- Source Tracking Types ---

ConfigOrigin = Literal["programmatic", "env", "file", "default"]
SourceMap = Mapping[str, ConfigOrigin]

_SENSITIVE = frozenset({"api_key"})


def _display(field: str, value: object) -> str:
    if field in _SENSITIVE:
        return "[REDACTED]" if value else "None"
    return repr(value)


class ResolvedConfig(NamedTuple):
    """Configuration after resolution from all sources, before freezing.

    Includes audit metadata recording where every field came from.
    """

    provider: str
    api_key: str | None
    model: str | None
    model_smart: str | None
    model_fast: str | None
    model_quick: str | None
    timeout: float
    max_attempts: int
    retry_base_delay: float
    confidence_threshold: float
    default_mode: Mode
    default_intelligence: Intelligence
    debug: bool
    trace: bool
    metrics: bool

    # Audit metadata - tracks where each field value came from
    origin: SourceMap

    def __str__(self) -> str:
        """String representation with redacted API key for safe logging."""
        fields = ", ".join(
            f"{name}={_display(name, getattr(self, name))}"
            for name in self._fields
            if name != "origin"
        )
        return f"ResolvedConfig({fields}, origin={dict(self.origin)!r})"

    def __repr__(self) -> str:
        """Repr with redacted API key for safe debugging."""
        return self.__str__()

    def to_frozen(self) -> "FrozenConfig":
        """Convert to the immutable configuration used by dispatchers."""
        values = self._asdict()
        values.pop("origin")
        return FrozenConfig(**values)

    def with_overrides(self, **overrides: object) -> "ResolvedConfig":
        """Create a new ResolvedConfig with programmatic overrides applied.

        Unknown fields are ignored.
        """
        new_values = self._asdict()
        new_origin = dict(self.origin)
        for field, value in overrides.items():
            if field in new_values and field != "origin":
                new_values[field] = value
                new_origin[field] = "programmatic"
        new_values["origin"] = new_origin
        return ResolvedConfig(**new_values)

    def audit(self) -> str:
        """Redacted report showing the origin of each field."""
        lines = []
        for field in self._fields:
            if field == "origin" or field not in self.origin:
                continue
            origin = self.origin[field]
            value = _display(field, getattr(self, field))
            if origin == "env":
                lines.append(f"{field}: env:SCHEMAFLOW_{field.upper()}={value}")
            else:
                lines.append(f"{field}: {origin}:{value}")
        return "\n".join(lines)


@dataclass(frozen=True)
class FrozenConfig:
    """Immutable configuration held by a dispatcher.

    Contains field values only, without audit metadata.
    """

    provider: str
    api_key: str | None
    model: str | None
    model_smart: str | None
    model_fast: str | None
    model_quick: str | None
    timeout: float
    max_attempts: int
    retry_base_delay: float
    confidence_threshold: float
    default_mode: Mode
    default_intelligence: Intelligence
    debug: bool
    trace: bool
    metrics: bool

    @property
    def tier_models(self) -> Mapping[Intelligence, str | None]:
        return {
            Intelligence.SMART: self.model_smart,
            Intelligence.FAST: self.model_fast,
            Intelligence.QUICK: self.model_quick,
        }

    def __str__(self) -> str:
        """String representation with redacted API key for safe logging."""
        fields = ", ".join(
            f"{name}={_display(name, getattr(self, name))}"
            for name in self.__dataclass_fields__
        )
        return f"FrozenConfig({fields})"

    def __repr__(self) -> str:
        """Representation with redacted API key for safe debugging."""
        return self.__str__()
