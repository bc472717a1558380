"""Exceptions raised by SchemaFlow.

Every exception carries an ``error_class`` so retry logic and callers can
tell transient faults from permanent ones without parsing messages.
"""

from collections.abc import Sequence
from datetime import UTC, datetime
from typing import Any, ClassVar

from schemaflow.core.types import ErrorClass


class SchemaFlowError(Exception):
    """Base exception for SchemaFlow errors"""  # noqa: D415

    error_class: ErrorClass = ErrorClass.PERMANENT


class ConfigurationError(SchemaFlowError):
    """Raised when configuration or operation options are invalid"""  # noqa: D415


class UnsupportedTypeError(SchemaFlowError):
    """Raised when a target type cannot be described as a schema."""

    def __init__(self, target: Any, reason: str) -> None:
        self.target = target
        self.reason = reason
        name = getattr(target, "__name__", repr(target))
        super().__init__(f"unsupported target type {name}: {reason}")


class ParseError(SchemaFlowError):
    """Raised when model output cannot be decoded into the target type."""

    def __init__(self, message: str, *, text: str = "", target: str = "") -> None:
        self.text = text
        self.target = target
        preview = text if len(text) <= 120 else text[:117] + "..."
        detail = f" (target {target}, text {preview!r})" if target else ""
        super().__init__(f"parse error: {message}{detail}")


class ValidationError(SchemaFlowError):
    """Raised when a decoded value fails confidence, fill-ratio or label checks."""

    def __init__(
        self,
        message: str,
        *,
        confidence: float | None = None,
        threshold: float | None = None,
        fill_ratio: float | None = None,
    ) -> None:
        self.confidence = confidence
        self.threshold = threshold
        self.fill_ratio = fill_ratio
        super().__init__(f"validation error: {message}")


class OperationCancelledError(SchemaFlowError):
    """Raised when a call is cancelled or its deadline passes."""

    def __init__(self, message: str = "operation cancelled") -> None:
        super().__init__(message)


class PolicyDeniedError(SchemaFlowError):
    """Raised by callers or invokers when a provider refuses on policy grounds"""  # noqa: D415

    error_class = ErrorClass.POLICY_DENIED


class ExternalLimitError(SchemaFlowError):
    """Raised by callers or invokers when an external quota is exhausted"""  # noqa: D415

    error_class = ErrorClass.EXTERNAL_LIMIT


class RetryExhaustedError(SchemaFlowError):
    """Raised when every attempt failed with a retryable error."""

    error_class = ErrorClass.RETRYABLE

    def __init__(self, attempts: int, context: str, last_error: BaseException) -> None:
        self.attempts = attempts
        self.context = context
        self.last_error = last_error
        where = f"{context} " if context else ""
        super().__init__(
            f"retry error: {where}failed after {attempts} attempts: {last_error}"
        )


# --- Operation errors ---


class OperationError(SchemaFlowError):
    """Base class for errors surfaced by dispatcher operations.

    The message always contains the operation name and the word ``error`` so
    logs can be filtered uniformly.
    """

    operation: ClassVar[str] = "operation"

    def __init__(
        self,
        reason: str,
        *,
        input: Any = None,  # noqa: A002
        options: Any = None,
        request_id: str = "",
        confidence: float | None = None,
        error_class: ErrorClass = ErrorClass.PERMANENT,
    ) -> None:
        self.reason = reason
        self.input = input
        self.options = options
        self.request_id = request_id
        self.confidence = confidence
        self.error_class = error_class
        self.timestamp = datetime.now(UTC)
        super().__init__(self._format())

    def _format(self) -> str:
        stamp = self.timestamp.isoformat(timespec="seconds")
        suffix = f" (request {self.request_id})" if self.request_id else ""
        return f"[{stamp}] {self.operation} error: {self.reason}{suffix}"


class ExtractError(OperationError):
    """Raised when extraction fails"""  # noqa: D415

    operation = "extract"


class TransformError(OperationError):
    """Raised when transforming one type into another fails."""

    operation = "transform"

    def __init__(
        self,
        reason: str,
        *,
        from_type: str = "",
        to_type: str = "",
        **kwargs: Any,
    ) -> None:
        self.from_type = from_type
        self.to_type = to_type
        super().__init__(reason, **kwargs)


class GenerateError(OperationError):
    """Raised when generation fails"""  # noqa: D415

    operation = "generate"


class FilterError(OperationError):
    """Raised when filtering fails"""  # noqa: D415

    operation = "filter"


class SortError(OperationError):
    """Raised when sorting fails"""  # noqa: D415

    operation = "sort"


class ChooseError(OperationError):
    """Raised when choosing among options fails."""

    operation = "choose"

    def __init__(
        self, reason: str, *, choices: Sequence[Any] = (), **kwargs: Any
    ) -> None:
        self.choices = tuple(choices)
        super().__init__(reason, **kwargs)


class ScoreError(OperationError):
    """Raised when scoring fails"""  # noqa: D415

    operation = "score"


class ClassifyError(OperationError):
    """Raised when classification fails or yields a label outside the set."""

    operation = "classify"

    def __init__(
        self, reason: str, *, labels: Sequence[str] = (), **kwargs: Any
    ) -> None:
        self.labels = tuple(labels)
        super().__init__(reason, **kwargs)


OPERATION_ERRORS: dict[str, type[OperationError]] = {
    cls.operation: cls
    for cls in (
        ExtractError,
        TransformError,
        GenerateError,
        FilterError,
        SortError,
        ChooseError,
        ScoreError,
        ClassifyError,
    )
}
