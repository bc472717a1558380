"""Model selection and generation parameters per provider, tier and mode."""

from collections.abc import Mapping

from schemaflow.constants import (
    DEFAULT_PROVIDER,
    MAX_TOKENS_FAST,
    MAX_TOKENS_QUICK,
    MAX_TOKENS_SMART,
    TEMPERATURE_CREATIVE,
    TEMPERATURE_STRICT,
    TEMPERATURE_TRANSFORM,
)
from schemaflow.core.types import Intelligence, Mode

# Provider -> tier -> model identifier. Unknown providers use the default row.
MODEL_TABLE: Mapping[str, Mapping[Intelligence, str]] = {
    DEFAULT_PROVIDER: {
        Intelligence.SMART: "gpt-5-2025-08-07",
        Intelligence.FAST: "gpt-5-nano-2025-08-07",
        Intelligence.QUICK: "gpt-5-mini-2025-08-07",
    },
    "anthropic": {
        Intelligence.SMART: "claude-3-5-sonnet-20240620",
        Intelligence.FAST: "claude-3-haiku-20240307",
        Intelligence.QUICK: "claude-3-haiku-20240307",
    },
    "openrouter": {
        Intelligence.SMART: "openai/gpt-4o",
        Intelligence.FAST: "openai/gpt-4o-mini",
        Intelligence.QUICK: "openai/gpt-4o-mini",
    },
    "cerebras": {
        Intelligence.SMART: "llama-3.3-70b",
        Intelligence.FAST: "llama3.1-8b",
        Intelligence.QUICK: "llama3.1-8b",
    },
}

_MAX_TOKENS: Mapping[Intelligence, int] = {
    Intelligence.SMART: MAX_TOKENS_SMART,
    Intelligence.FAST: MAX_TOKENS_FAST,
    Intelligence.QUICK: MAX_TOKENS_QUICK,
}

_TEMPERATURES: Mapping[Mode, float] = {
    Mode.STRICT: TEMPERATURE_STRICT,
    Mode.TRANSFORM: TEMPERATURE_TRANSFORM,
    Mode.CREATIVE: TEMPERATURE_CREATIVE,
}


def get_model(
    intelligence: Intelligence,
    provider: str = DEFAULT_PROVIDER,
    overrides: Mapping[Intelligence, str | None] | None = None,
    default_model: str | None = None,
) -> str:
    """Pick the model for a tier.

    Precedence: a per-tier override, then a single configured model, then the
    provider table.
    """
    if overrides and overrides.get(intelligence):
        return str(overrides[intelligence])
    if default_model:
        return default_model
    row = MODEL_TABLE.get(provider.lower(), MODEL_TABLE[DEFAULT_PROVIDER])
    return row[intelligence]


def get_max_tokens(intelligence: Intelligence) -> int:
    """Completion token ceiling for a tier."""
    return _MAX_TOKENS[intelligence]


def get_temperature(mode: Mode) -> float:
    """Sampling temperature for a mode."""
    return _TEMPERATURES[mode]
