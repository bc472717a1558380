"""
Per-model token pricing and cost calculation
"""  # noqa: D200, D212, D415

from collections.abc import Mapping
from dataclasses import dataclass
import logging

from schemaflow.constants import TOKENS_PER_PRICING_UNIT
from schemaflow.core.types import CostInfo, TokenUsage

log = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class PricingModel:
    """USD rates per 1,000 tokens for one model"""  # noqa: D415

    provider: str
    model: str
    prompt_per_1k: float
    completion_per_1k: float
    cached_per_1k: float = 0.0
    reasoning_per_1k: float = 0.0
    currency: str = "USD"


def _table(*models: PricingModel) -> dict[str, PricingModel]:
    return {m.model: m for m in models}


PRICING: Mapping[str, PricingModel] = _table(
    # OpenAI
    PricingModel("openai", "gpt-5-2025-08-07", 0.02, 0.06),
    PricingModel("openai", "gpt-5-nano-2025-08-07", 0.001, 0.003),
    PricingModel("openai", "gpt-5-mini-2025-08-07", 0.005, 0.015),
    PricingModel("openai", "gpt-4-turbo-preview", 0.01, 0.03),
    PricingModel("openai", "gpt-4", 0.03, 0.06),
    PricingModel("openai", "gpt-4-32k", 0.06, 0.12),
    PricingModel("openai", "gpt-3.5-turbo", 0.0005, 0.0015),
    PricingModel("openai", "gpt-3.5-turbo-16k", 0.003, 0.004),
    PricingModel("openai", "o1-preview", 0.015, 0.06, reasoning_per_1k=0.015),
    PricingModel("openai", "o1-mini", 0.003, 0.012, reasoning_per_1k=0.003),
    # Anthropic
    PricingModel("anthropic", "claude-3-opus", 0.015, 0.075, cached_per_1k=0.00187),
    PricingModel("anthropic", "claude-3-sonnet", 0.003, 0.015, cached_per_1k=0.00038),
    PricingModel("anthropic", "claude-3-haiku", 0.00025, 0.00125, cached_per_1k=0.00003),
    # Google
    PricingModel("google", "gemini-2.0-flash", 0.0001, 0.0004, cached_per_1k=0.000025),
    PricingModel("google", "gemini-1.5-pro", 0.00125, 0.005, cached_per_1k=0.0003125),
)

# Used when neither the model nor the provider is known.
DEFAULT_PRICING = PricingModel("default", "default", 0.001, 0.002)

PROVIDER_DEFAULT_MODELS: Mapping[str, str] = {
    "openai": "gpt-5-nano-2025-08-07",
    "anthropic": "claude-3-haiku",
    "google": "gemini-2.0-flash",
}


def lookup_pricing(model: str, provider: str = "") -> PricingModel:
    """Rates for ``model`` under ``provider``.

    Lookup order: exact model, longest table key prefixing ``model`` (dated
    snapshots such as ``claude-3-haiku-20240307``), the provider's default
    model, then ``DEFAULT_PRICING``.
    """
    provider = provider.lower()

    def _provider_ok(p: PricingModel) -> bool:
        return not provider or p.provider == provider

    exact = PRICING.get(model)
    if exact is not None and _provider_ok(exact):
        return exact

    prefixed = [
        p for key, p in PRICING.items() if model.startswith(key) and _provider_ok(p)
    ]
    if prefixed:
        return max(prefixed, key=lambda p: len(p.model))

    fallback_model = PROVIDER_DEFAULT_MODELS.get(provider)
    if fallback_model is not None:
        log.warning(
            "No pricing for model %r; using %s default %r",
            model,
            provider,
            fallback_model,
        )
        return PRICING[fallback_model]

    log.warning(
        "No pricing for model %r (provider %r); using default rate", model, provider
    )
    return DEFAULT_PRICING


def calculate_cost(usage: TokenUsage, model: str, provider: str = "") -> CostInfo:
    """Cost of ``usage``; prompt and completion tokens are priced separately.

    Cached prompt tokens are billed at the cached rate when the model has
    one, and reasoning tokens at the reasoning rate.
    """
    pricing = lookup_pricing(model, provider)
    unit = TOKENS_PER_PRICING_UNIT

    cached = min(usage.cached_tokens, usage.prompt_tokens) if pricing.cached_per_1k else 0
    prompt_cost = (usage.prompt_tokens - cached) / unit * pricing.prompt_per_1k
    cached_cost = cached / unit * pricing.cached_per_1k
    completion_cost = usage.completion_tokens / unit * pricing.completion_per_1k
    reasoning_cost = usage.reasoning_tokens / unit * pricing.reasoning_per_1k

    return CostInfo(
        total=prompt_cost + cached_cost + completion_cost + reasoning_cost,
        prompt_cost=prompt_cost,
        completion_cost=completion_cost,
        cached_cost=cached_cost,
        reasoning_cost=reasoning_cost,
        currency=pricing.currency,
        model=model,
        provider=provider or pricing.provider,
    )
