"""
Response processing types and result containers

This module defines the data structures produced while decoding model output:
the raw decode outcome, the scored parse result, and fill-ratio validation.
"""  # noqa: D212, D415

from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True, slots=True)
class DecodeOutcome:
    """How a value was recovered from model text"""  # noqa: D415

    value: Any
    strict: bool = False
    lenient: bool = False
    coerced: bool = False
    raw_fallback: bool = False

    @property
    def path(self) -> str:
        """Name of the decode strategy that produced the value"""  # noqa: D415
        if self.raw_fallback:
            return "raw_fallback"
        if self.lenient:
            return "lenient"
        if self.coerced:
            return "coerced"
        return "strict"


@dataclass(frozen=True, slots=True)
class ParsedResult[TValue]:
    """Decoded value with a heuristic confidence in [0, 1]"""  # noqa: D415

    value: TValue
    confidence: float
    warnings: tuple[str, ...] = ()
    path: str = "strict"
    fill_ratio: float = 1.0


@dataclass(frozen=True, slots=True)
class ValidationResult:
    """Result of fill-ratio validation"""  # noqa: D415

    passed: bool
    fill_ratio: float
    threshold: float
    missing_fields: tuple[str, ...] = ()

    @property
    def summary(self) -> str:
        """Human-readable verdict"""  # noqa: D415
        verdict = "passed" if self.passed else "failed"
        detail = (
            f"; missing {', '.join(self.missing_fields)}" if self.missing_fields else ""
        )
        return (
            f"fill ratio {self.fill_ratio:.2f} {verdict} threshold "
            f"{self.threshold:.2f}{detail}"
        )
