"""Response decoding, confidence scoring and fill-ratio validation."""

from .processor import ResponseParser
from .quality import ConfidenceScorer, fill_ratio, is_zero, validate_extracted_data
from .types import DecodeOutcome, ParsedResult, ValidationResult

__all__ = [
    "ConfidenceScorer",
    "DecodeOutcome",
    "ParsedResult",
    "ResponseParser",
    "ValidationResult",
    "fill_ratio",
    "is_zero",
    "validate_extracted_data",
]
