"""Classification of failures raised while invoking a model backend"""

from collections.abc import Iterable
import logging

from schemaflow.constants import RETRYABLE_PATTERNS
from schemaflow.core.types import ErrorClass
from schemaflow.exceptions import SchemaFlowError

log = logging.getLogger(__name__)


def tag_error[E: BaseException](error: E, error_class: ErrorClass) -> E:
    """Mark an arbitrary exception with an explicit class; returns it for raising."""
    error.error_class = error_class  # type: ignore[attr-defined]
    return error


class ErrorClassifier:
    """Maps exceptions onto ErrorClass values.

    Explicit classes win: SchemaFlow exceptions and exceptions tagged with an
    ``error_class`` attribute keep their tag. Otherwise built-in timeout and
    connection errors are retryable, and the message is matched against a
    fixed, case-insensitive vocabulary of transient faults.
    """

    def __init__(self, patterns: Iterable[str] = RETRYABLE_PATTERNS) -> None:
        self.patterns = tuple(p.lower() for p in patterns)

    def classify(self, error: BaseException) -> ErrorClass:
        if isinstance(error, SchemaFlowError):
            return error.error_class
        tagged = getattr(error, "error_class", None)
        if isinstance(tagged, ErrorClass):
            return tagged
        if isinstance(error, TimeoutError | ConnectionError):
            return ErrorClass.RETRYABLE

        text = str(error).lower()
        if any(pattern in text for pattern in self.patterns):
            return ErrorClass.RETRYABLE
        return ErrorClass.PERMANENT

    def is_retryable(self, error: BaseException) -> bool:
        return self.classify(error) is ErrorClass.RETRYABLE


_DEFAULT_CLASSIFIER = ErrorClassifier()


def classify_error(error: BaseException) -> ErrorClass:
    """Classify ``error`` with the default vocabulary."""
    return _DEFAULT_CLASSIFIER.classify(error)
