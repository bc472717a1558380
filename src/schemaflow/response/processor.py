"""
Decoding of raw model text into typed values

The parser applies a fixed policy: strict structured decode, then lenient
recovery of an embedded block or token, then (for string targets only) the
trimmed raw text. Every malformed path ends in a ParseError, never a crash.
"""  # noqa: D212, D415

import json
import logging
from typing import Any

from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from schemaflow.analysis.type_descriptor import (
    ShapeKind,
    TypeDescriptor,
    require_supported,
    type_adapter,
)
from schemaflow.exceptions import ParseError

from .parsing import (
    find_boolean,
    find_number,
    find_structured_block,
    strip_code_fences,
    strip_quotes,
)
from .quality import ConfidenceScorer, fill_ratio
from .types import DecodeOutcome, ParsedResult

log = logging.getLogger(__name__)


def _is_syntax_error(error: PydanticValidationError) -> bool:
    return any(err.get("type") == "json_invalid" for err in error.errors())


class ResponseParser:
    """Decodes model output into a target type and scores the result."""

    def __init__(self, scorer: ConfidenceScorer | None = None) -> None:
        self.scorer = scorer or ConfidenceScorer()

    def parse(self, text: str, target: Any) -> ParsedResult[Any]:  # noqa: ANN401
        """Decode ``text`` as ``target``.

        Raises:
            UnsupportedTypeError: ``target`` cannot be described.
            ParseError: no strategy produced a valid value.
        """
        descriptor = require_supported(target)
        outcome = self.decode(text, target, descriptor)
        confidence = self.scorer.score(outcome, descriptor)

        warnings: list[str] = []
        if outcome.lenient:
            warnings.append("recovered value from surrounding text")
        if outcome.coerced:
            warnings.append("values were coerced to the target type")
        if outcome.raw_fallback:
            warnings.append("response was not structured; using raw text")

        log.debug(
            "Decoded %s via %s path (confidence %.2f)",
            descriptor.name,
            outcome.path,
            confidence,
        )
        return ParsedResult(
            value=outcome.value,
            confidence=confidence,
            warnings=tuple(warnings),
            path=outcome.path,
            fill_ratio=fill_ratio(outcome.value, descriptor),
        )

    def decode(
        self,
        text: str,
        target: Any,  # noqa: ANN401
        descriptor: TypeDescriptor,
    ) -> DecodeOutcome:
        adapter = type_adapter(target)
        cleaned = strip_code_fences(text)

        outcome = self._validate(adapter, cleaned)
        if outcome is not None:
            return outcome

        for fragment in self._lenient_fragments(cleaned, descriptor):
            recovered = self._validate(adapter, fragment)
            if recovered is not None:
                return DecodeOutcome(
                    value=recovered.value, lenient=True, coerced=recovered.coerced
                )

        if descriptor.is_string:
            return DecodeOutcome(value=cleaned, raw_fallback=True)

        raise ParseError(
            f"could not decode response as {descriptor.name}",
            text=text,
            target=descriptor.name,
        )

    def _validate(self, adapter: TypeAdapter[Any], fragment: str) -> DecodeOutcome | None:
        try:
            return DecodeOutcome(value=adapter.validate_json(fragment, strict=True), strict=True)
        except PydanticValidationError as e:
            if _is_syntax_error(e):
                return None
        try:
            return DecodeOutcome(value=adapter.validate_json(fragment), coerced=True)
        except PydanticValidationError:
            return None

    def _lenient_fragments(self, text: str, descriptor: TypeDescriptor) -> list[str]:
        """Candidate JSON fragments recovered from prose, best first."""
        kind = descriptor.kind
        if kind is ShapeKind.OPTIONAL and descriptor.element is not None:
            kind = descriptor.element.kind
            descriptor = descriptor.element

        fragments: list[str] = []
        block = find_structured_block(text)
        if block is not None:
            fragments.append(block)
        if kind is ShapeKind.ENUM:
            fragments.append(json.dumps(strip_quotes(text)))
        elif kind is ShapeKind.PRIMITIVE and not descriptor.is_string:
            token: str | None
            if descriptor.name in ("integer", "number"):
                token = find_number(text)
            elif descriptor.name == "boolean":
                token = find_boolean(text)
            else:
                token = json.dumps(strip_quotes(text))
            if token is not None:
                fragments.append(token)
        return fragments
