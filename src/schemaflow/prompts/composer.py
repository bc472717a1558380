"""Prompt composition for dispatcher operations.

Composition is pure: the same verb, input, descriptor, steering and mode
always yield byte-identical prompts. Inputs are serialized canonically
(sorted keys, fixed indentation) before embedding.
"""

from collections.abc import Sequence
import json
import logging
from typing import Any

from pydantic_core import to_jsonable_python

from schemaflow.analysis.type_descriptor import ShapeKind, TypeDescriptor
from schemaflow.core.types import Mode

from .base import BasePromptBuilder, PromptPair
from .steering import append_context

log = logging.getLogger(__name__)

OPERATION_CONTRACTS: dict[str, str] = {
    "extract": "Extract structured data from the input.",
    "transform": "Transform the input into the target shape, preserving its meaning.",
    "generate": "Generate new content that satisfies the request.",
    "filter": (
        "Decide which numbered items satisfy the criteria. "
        "Reply with the ids of the selected items."
    ),
    "sort": (
        "Order every numbered item by the criteria. "
        "Reply with the ids of all items, each exactly once, in order."
    ),
    "choose": (
        "Choose the single numbered item that best satisfies the criteria. "
        "Reply with its id."
    ),
    "score": "Score the input against the criteria on a scale from 0.0 to 1.0.",
    "classify": "Assign the input exactly one of the allowed labels.",
}

MODE_GUIDANCE: dict[Mode, str] = {
    Mode.STRICT: (
        "Be literal. Use only information present in the input; do not infer "
        "or invent values. Match the schema exactly."
    ),
    Mode.TRANSFORM: (
        "Follow the schema exactly. You may normalize formats and infer values "
        "that are clearly implied by the input."
    ),
    Mode.CREATIVE: (
        "You may interpret the input freely and add plausible detail, but the "
        "output must still match the schema."
    ),
}


def normalize_input(value: Any) -> str:  # noqa: ANN401
    """Canonical text for a prompt input.

    Strings pass through, bytes are decoded as UTF-8, and everything else is
    serialized to JSON with sorted keys.
    """
    if isinstance(value, str):
        return value
    if isinstance(value, bytes | bytearray):
        return bytes(value).decode("utf-8", errors="replace")
    return json.dumps(
        to_jsonable_python(value, fallback=str),
        sort_keys=True,
        ensure_ascii=False,
        indent=2,
    )


def number_items(items: Sequence[Any]) -> list[dict[str, Any]]:
    """Pair items with positional ids so replies can reference them by id."""
    return [{"id": i, "item": item} for i, item in enumerate(items)]


class PromptComposer(BasePromptBuilder):
    """Builds the system/user prompt pair for an operation."""

    def compose(
        self,
        verb: str,
        input: Any,  # noqa: A002, ANN401
        descriptor: TypeDescriptor,
        steering: str = "",
        mode: Mode = Mode.TRANSFORM,
        *,
        instructions: Sequence[str] = (),
    ) -> PromptPair:
        contract = OPERATION_CONTRACTS.get(verb, f"Perform the '{verb}' operation.")
        requirements = [
            "- Respond with ONLY valid JSON matching the target schema.",
            "- Do not include markdown formatting, explanations, or any other text.",
        ]
        if descriptor.kind is ShapeKind.STRUCT and descriptor.required_fields:
            requirements.append("- Include every required field.")
        if descriptor.kind is ShapeKind.ENUM:
            requirements.append("- Use one of the listed values verbatim.")

        system = "\n".join(
            [
                f"You are a structured-output engine performing the '{verb}' operation.",
                contract,
                MODE_GUIDANCE[mode],
                "",
                "Target schema:",
                descriptor.render(),
                "",
                "Output requirements:",
                *requirements,
            ]
        )

        user_parts = [f"Input:\n{normalize_input(input)}"]
        steps = [line for line in instructions if line]
        if steps:
            user_parts.append("Instructions:\n" + "\n".join(steps))
        user = append_context("\n\n".join(user_parts), steering)

        log.debug("Composed %s prompt (%d/%d chars)", verb, len(system), len(user))
        return PromptPair(system=system, user=user)
