"""Core data types that flow through an operation.

This module defines the immutable data structures that represent a request
as it moves through the dispatcher: the per-call request, the raw backend
response, token usage and cost, and the typed result envelope returned to
callers.
"""

from __future__ import annotations

import dataclasses
from datetime import UTC, datetime
from enum import StrEnum
from types import MappingProxyType
import typing

if typing.TYPE_CHECKING:
    from schemaflow.analysis.type_descriptor import TypeDescriptor

# --- Minimal guard helpers (clarity > boilerplate) ---

T = typing.TypeVar("T")


def _freeze_mapping(
    m: dict[str, T] | typing.Mapping[str, T] | None,
) -> typing.Mapping[str, T]:
    """Return an immutable mapping view, empty for None."""
    if isinstance(m, MappingProxyType):
        return m
    return MappingProxyType(dict(m or {}))


def _require(
    *,
    condition: bool,
    message: str,
    exc: type[Exception] = ValueError,
    field_name: str | None = None,
) -> None:
    """Centralized validation with optional field context for clearer errors."""
    if not condition:
        if field_name:
            raise exc(f"{field_name}: {message}")
        raise exc(message)


# --- Enumerations ---


class ErrorClass(StrEnum):
    """How a failure should be treated by retry logic and callers."""

    RETRYABLE = "retryable"
    PERMANENT = "permanent"
    POLICY_DENIED = "policy_denied"
    EXTERNAL_LIMIT = "external_limit"


class Mode(StrEnum):
    """Operation mode; shifts prompt strictness and sampling temperature."""

    STRICT = "strict"
    TRANSFORM = "transform"
    CREATIVE = "creative"


class Intelligence(StrEnum):
    """Intelligence tier selecting a model/latency/cost profile."""

    SMART = "smart"
    FAST = "fast"
    QUICK = "quick"


# --- Backend exchange ---


@dataclasses.dataclass(frozen=True, slots=True)
class TokenUsage:
    """Token counts reported by the backend for one invocation."""

    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    cached_tokens: int = 0
    reasoning_tokens: int = 0

    def __post_init__(self) -> None:
        for name in (
            "prompt_tokens",
            "completion_tokens",
            "total_tokens",
            "cached_tokens",
            "reasoning_tokens",
        ):
            value = getattr(self, name)
            _require(
                condition=isinstance(value, int) and value >= 0,
                message="must be a non-negative int",
                field_name=name,
            )
        if self.total_tokens == 0:
            object.__setattr__(
                self, "total_tokens", self.prompt_tokens + self.completion_tokens
            )


@dataclasses.dataclass(frozen=True, slots=True)
class RawResponse:
    """Unparsed backend output for one invocation."""

    text: str
    usage: TokenUsage = dataclasses.field(default_factory=TokenUsage)
    latency: float = 0.0  # seconds
    model: str = ""

    def __post_init__(self) -> None:
        _require(
            condition=isinstance(self.text, str),
            message="must be a str",
            field_name="text",
            exc=TypeError,
        )


@dataclasses.dataclass(frozen=True, slots=True)
class InvokeOptions:
    """Generation parameters handed to an LLM invoker."""

    model: str
    max_tokens: int
    temperature: float
    provider: str = ""
    request_id: str = ""
    timeout: float | None = None
    response_schema: typing.Mapping[str, typing.Any] | None = None


@dataclasses.dataclass(frozen=True, slots=True)
class CostInfo:
    """Monetary cost of one invocation, in ``currency`` units."""

    total: float = 0.0
    prompt_cost: float = 0.0
    completion_cost: float = 0.0
    cached_cost: float = 0.0
    reasoning_cost: float = 0.0
    currency: str = "USD"
    model: str = ""
    provider: str = ""


# --- Requests and results ---


@dataclasses.dataclass(frozen=True, slots=True)
class OperationRequest:
    """Everything one operation call needs, resolved and frozen."""

    operation: str
    input: typing.Any
    target: typing.Any
    descriptor: TypeDescriptor
    mode: Mode
    intelligence: Intelligence
    request_id: str
    steering: str = ""
    threshold: float = 0.0
    fill_threshold: float | None = None
    max_attempts: int = 1
    timeout: float | None = None
    tags: typing.Mapping[str, str] = dataclasses.field(
        default_factory=lambda: MappingProxyType({})
    )

    def __post_init__(self) -> None:
        _require(
            condition=bool(self.operation),
            message="must be a non-empty str",
            field_name="operation",
        )
        _require(
            condition=0.0 <= self.threshold <= 1.0,
            message="must be within [0, 1]",
            field_name="threshold",
        )
        _require(
            condition=self.max_attempts >= 1,
            message="must be at least 1",
            field_name="max_attempts",
        )
        _require(
            condition=self.timeout is None or self.timeout > 0,
            message="must be positive when set",
            field_name="timeout",
        )
        object.__setattr__(self, "tags", _freeze_mapping(self.tags))


@dataclasses.dataclass(frozen=True, slots=True)
class ResultMetadata:
    """Bookkeeping attached to a successful operation."""

    request_id: str
    operation: str
    provider: str = ""
    model: str = ""
    usage: TokenUsage = dataclasses.field(default_factory=TokenUsage)
    cost: CostInfo = dataclasses.field(default_factory=CostInfo)
    latency: float = 0.0
    attempts: int = 0
    span_id: str | None = None
    completed_at: datetime = dataclasses.field(
        default_factory=lambda: datetime.now(UTC)
    )


@dataclasses.dataclass(frozen=True, slots=True)
class OperationResult[TValue]:
    """A typed, confidence-scored operation outcome."""

    value: TValue
    confidence: float
    metadata: ResultMetadata
    warnings: tuple[str, ...] = ()


@dataclasses.dataclass(frozen=True, slots=True)
class BatchResult[TValue]:
    """Per-item outcomes of a batch run, aligned with the inputs.

    Exactly one of ``results[i]`` and ``errors[i]`` is set for each input.
    """

    results: tuple[OperationResult[TValue] | None, ...]
    errors: tuple[Exception | None, ...]
    duration: float = 0.0  # seconds, wall clock for the whole batch
    max_concurrent: int = 1

    @property
    def total_items(self) -> int:
        return len(self.results)

    @property
    def succeeded(self) -> int:
        return sum(1 for r in self.results if r is not None)

    @property
    def failed(self) -> int:
        return sum(1 for e in self.errors if e is not None)

    @property
    def cost(self) -> float:
        """Total cost of the successful items."""
        return sum(r.metadata.cost.total for r in self.results if r is not None)

    @property
    def values(self) -> list[TValue | None]:
        return [r.value if r is not None else None for r in self.results]
