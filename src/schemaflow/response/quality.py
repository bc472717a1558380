"""
Confidence scoring and fill-ratio validation for decoded values
"""  # noqa: D200, D212, D415

from collections.abc import Mapping, Sized
import dataclasses
from decimal import Decimal
from enum import Enum
from typing import Any

from pydantic import BaseModel

from schemaflow.analysis.type_descriptor import ShapeKind, TypeDescriptor, describe
from schemaflow.constants import (
    CONFIDENCE_BASELINE,
    CONFIDENCE_COERCION_PENALTY,
    CONFIDENCE_FIELD_WEIGHT,
    CONFIDENCE_LENIENT_PENALTY,
    CONFIDENCE_MISSING_FIELD_PENALTY,
    CONFIDENCE_RAW_FALLBACK_PENALTY,
    CONFIDENCE_STRICT_BONUS,
)

from .types import DecodeOutcome, ValidationResult

_EPSILON = 1e-9


def is_zero(value: Any) -> bool:  # noqa: ANN401
    """True when ``value`` holds no content: None, 0, False, empty, or an all-zero record."""
    if value is None:
        return True
    if isinstance(value, Enum):
        return False
    if isinstance(value, bool | int | float | Decimal):
        return value == 0
    if isinstance(value, BaseModel):
        return all(is_zero(getattr(value, name)) for name in type(value).model_fields)
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return all(is_zero(getattr(value, f.name)) for f in dataclasses.fields(value))
    if isinstance(value, tuple) and hasattr(value, "_fields"):
        return all(is_zero(v) for v in value)
    if isinstance(value, Sized):
        return len(value) == 0
    return False


def _field_value(value: Any, field_name: str) -> Any:  # noqa: ANN401
    if isinstance(value, Mapping):
        return value.get(field_name)
    return getattr(value, field_name, None)


def missing_required_fields(value: Any, descriptor: TypeDescriptor) -> tuple[str, ...]:  # noqa: ANN401
    """Names of required struct fields holding a zero value."""
    if descriptor.kind is not ShapeKind.STRUCT:
        return ()
    return tuple(
        f.name
        for f in descriptor.required_fields
        if is_zero(_field_value(value, f.attr))
    )


def fill_ratio(value: Any, descriptor: TypeDescriptor | None = None) -> float:  # noqa: ANN401
    """Fraction of required fields holding non-default content.

    Non-struct values count as a single slot: 1.0 unless the value is zero.
    A struct without required fields is complete by definition.
    """
    descriptor = descriptor or describe(type(value))
    if descriptor.kind is ShapeKind.OPTIONAL and descriptor.element is not None:
        if value is None:
            return 0.0
        descriptor = descriptor.element
    if descriptor.kind is not ShapeKind.STRUCT:
        return 0.0 if is_zero(value) else 1.0
    required = descriptor.required_fields
    if not required:
        return 1.0
    missing = missing_required_fields(value, descriptor)
    return (len(required) - len(missing)) / len(required)


def validate_extracted_data(
    value: Any,  # noqa: ANN401
    threshold: float,
    descriptor: TypeDescriptor | None = None,
) -> ValidationResult:
    """Reject ``value`` when its fill ratio is below ``threshold``.

    A threshold of 0 accepts anything, including the zero value. Zero-valued
    non-struct values are only rejected when the threshold demands full
    content (1.0).
    """
    descriptor = descriptor or describe(type(value))
    ratio = fill_ratio(value, descriptor)
    missing = missing_required_fields(value, descriptor)
    if threshold <= 0:
        passed = True
    elif descriptor.kind is ShapeKind.STRUCT:
        passed = ratio + _EPSILON >= threshold
    else:
        passed = not (ratio == 0.0 and threshold >= 1.0)
    return ValidationResult(
        passed=passed, fill_ratio=ratio, threshold=threshold, missing_fields=missing
    )


class ConfidenceScorer:
    """Scores decode quality; structural only, not semantic correctness.

    The scale is ordered so that an exact decode always outranks lenient
    recovery, which outranks the raw-text fallback for string targets.
    """

    def __init__(
        self,
        *,
        baseline: float = CONFIDENCE_BASELINE,
        strict_bonus: float = CONFIDENCE_STRICT_BONUS,
        field_weight: float = CONFIDENCE_FIELD_WEIGHT,
        missing_field_penalty: float = CONFIDENCE_MISSING_FIELD_PENALTY,
        lenient_penalty: float = CONFIDENCE_LENIENT_PENALTY,
        coercion_penalty: float = CONFIDENCE_COERCION_PENALTY,
        raw_fallback_penalty: float = CONFIDENCE_RAW_FALLBACK_PENALTY,
    ) -> None:
        self.baseline = baseline
        self.strict_bonus = strict_bonus
        self.field_weight = field_weight
        self.missing_field_penalty = missing_field_penalty
        self.lenient_penalty = lenient_penalty
        self.coercion_penalty = coercion_penalty
        self.raw_fallback_penalty = raw_fallback_penalty

    def score(self, outcome: DecodeOutcome, descriptor: TypeDescriptor) -> float:
        score = self.baseline
        if outcome.strict:
            score += self.strict_bonus
        if outcome.lenient:
            score -= self.lenient_penalty
        if outcome.coerced:
            score -= self.coercion_penalty
        if outcome.raw_fallback:
            score -= self.raw_fallback_penalty

        # Optional targets are scored like their element; None fills nothing.
        if descriptor.kind is ShapeKind.OPTIONAL and descriptor.element is not None:
            descriptor = descriptor.element

        if descriptor.kind is ShapeKind.STRUCT and descriptor.required_fields:
            missing = len(missing_required_fields(outcome.value, descriptor))
            score += self.field_weight * fill_ratio(outcome.value, descriptor)
            score -= self.missing_field_penalty * missing
        elif outcome.value is not None:
            score += self.field_weight

        return max(0.0, min(1.0, score))
