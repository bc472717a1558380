"""Prompt composition and steering presets."""

from .base import BasePromptBuilder, PromptPair
from .composer import PromptComposer, normalize_input, number_items
from .steering import SteeringPresets, append_context

__all__ = [
    "BasePromptBuilder",
    "PromptComposer",
    "PromptPair",
    "SteeringPresets",
    "append_context",
    "normalize_input",
    "number_items",
]
