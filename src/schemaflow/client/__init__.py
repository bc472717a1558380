"""Backend boundary: invocation protocol, error classification and retry."""

from .error_handler import ErrorClassifier, classify_error, tag_error
from .llm import LLMInvoker
from .mock import InvocationRecord, ScriptedInvoker
from .retry import CancelToken, RetryExecutor, execute_with_retry

__all__ = [
    "CancelToken",
    "ErrorClassifier",
    "InvocationRecord",
    "LLMInvoker",
    "RetryExecutor",
    "ScriptedInvoker",
    "classify_error",
    "execute_with_retry",
    "tag_error",
]
