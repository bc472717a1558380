"""Typed LLM operations: extract, transform, generate, filter, sort, choose, score and classify."""

import importlib.metadata
import logging

from schemaflow.analysis import (
    SchemaAnalyzer,
    ShapeKind,
    TypeDescriptor,
    describe,
    json_schema,
)
from schemaflow.client import (
    CancelToken,
    ErrorClassifier,
    LLMInvoker,
    RetryExecutor,
    ScriptedInvoker,
    classify_error,
    execute_with_retry,
    tag_error,
)
from schemaflow.config import (
    FrozenConfig,
    ResolvedConfig,
    config_override,
    config_scope,
    resolve_config,
)
from schemaflow.core.types import (
    BatchResult,
    CostInfo,
    ErrorClass,
    Intelligence,
    InvokeOptions,
    Mode,
    OperationResult,
    RawResponse,
    ResultMetadata,
    TokenUsage,
)
from schemaflow.dispatcher import OperationDispatcher, OperationOptions, create_dispatcher
from schemaflow.efficiency import (
    CostLedger,
    CostRecord,
    JsonlCostSink,
    calculate_cost,
    matches_filters,
)
from schemaflow.exceptions import (
    ChooseError,
    ClassifyError,
    ConfigurationError,
    ExternalLimitError,
    ExtractError,
    FilterError,
    GenerateError,
    OperationCancelledError,
    OperationError,
    ParseError,
    PolicyDeniedError,
    RetryExhaustedError,
    SchemaFlowError,
    ScoreError,
    SortError,
    TransformError,
    UnsupportedTypeError,
    ValidationError,
)
from schemaflow.matching import Case, case, match, otherwise
from schemaflow.prompts import PromptComposer, SteeringPresets, append_context
from schemaflow.response import ConfidenceScorer, ParsedResult, ResponseParser
from schemaflow.telemetry import SimpleReporter, Span, TelemetryReporter, Tracer

# Version handling
try:
    __version__ = importlib.metadata.version("schemaflow")
except importlib.metadata.PackageNotFoundError:
    __version__ = "0+unknown"

# Set up a null handler for the library's root logger.
# This prevents 'No handler found' errors if the consuming app has no logging configured.
logging.getLogger(__name__).addHandler(logging.NullHandler())

# Public API
__all__ = [  # noqa: RUF022
    # Dispatcher
    "OperationDispatcher",
    "OperationOptions",
    "create_dispatcher",
    # Core types
    "BatchResult",
    "CostInfo",
    "ErrorClass",
    "Intelligence",
    "InvokeOptions",
    "Mode",
    "OperationResult",
    "RawResponse",
    "ResultMetadata",
    "TokenUsage",
    # Type description
    "SchemaAnalyzer",
    "ShapeKind",
    "TypeDescriptor",
    "describe",
    "json_schema",
    # Prompting
    "PromptComposer",
    "SteeringPresets",
    "append_context",
    # Parsing
    "ConfidenceScorer",
    "ParsedResult",
    "ResponseParser",
    # Invocation and retry
    "CancelToken",
    "ErrorClassifier",
    "LLMInvoker",
    "RetryExecutor",
    "ScriptedInvoker",
    "classify_error",
    "execute_with_retry",
    "tag_error",
    # Cost accounting
    "CostLedger",
    "CostRecord",
    "JsonlCostSink",
    "calculate_cost",
    "matches_filters",
    # Telemetry
    "SimpleReporter",
    "Span",
    "TelemetryReporter",
    "Tracer",
    # Matching
    "Case",
    "case",
    "match",
    "otherwise",
    # Configuration
    "FrozenConfig",
    "ResolvedConfig",
    "config_override",
    "config_scope",
    "resolve_config",
    # Exceptions
    "SchemaFlowError",
    "ConfigurationError",
    "UnsupportedTypeError",
    "ParseError",
    "ValidationError",
    "OperationCancelledError",
    "PolicyDeniedError",
    "ExternalLimitError",
    "RetryExhaustedError",
    "OperationError",
    "ExtractError",
    "TransformError",
    "GenerateError",
    "FilterError",
    "SortError",
    "ChooseError",
    "ScoreError",
    "ClassifyError",
]
