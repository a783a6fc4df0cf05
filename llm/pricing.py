"""Per-model token prices (USD per 1,000 tokens) and cost computation."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class ModelPrice:
    prompt_per_1k: float
    completion_per_1k: float


_PRICES: dict[str, ModelPrice] = {
    # OpenAI
    "gpt-4o-mini": ModelPrice(0.00015, 0.0006),
    "gpt-4o": ModelPrice(0.0025, 0.01),
    "gpt-4.1": ModelPrice(0.002, 0.008),
    "gpt-4.1-mini": ModelPrice(0.0004, 0.0016),
    "gpt-4-turbo": ModelPrice(0.01, 0.03),
    "gpt-3.5-turbo": ModelPrice(0.0005, 0.0015),
    # Anthropic
    "claude-sonnet-4-6": ModelPrice(0.003, 0.015),
    "claude-sonnet-4-20250514": ModelPrice(0.003, 0.015),
    "claude-3-5-sonnet-20241022": ModelPrice(0.003, 0.015),
    "claude-haiku-4-5-20251001": ModelPrice(0.001, 0.005),
    "claude-3-5-haiku-20241022": ModelPrice(0.0008, 0.004),
    "claude-opus-4-20250514": ModelPrice(0.015, 0.075),
    # Google
    "gemini-2.5-pro": ModelPrice(0.00125, 0.01),
    "gemini-2.5-flash": ModelPrice(0.0003, 0.0025),
    "gemini-2.0-flash": ModelPrice(0.0001, 0.0004),
    "gemini-1.5-pro": ModelPrice(0.00125, 0.005),
    "gemini-1.5-flash": ModelPrice(0.000075, 0.0003),
}

# Used for models missing from the table above.
_PROVIDER_FALLBACK: dict[str, ModelPrice] = {
    "openai": _PRICES["gpt-4o-mini"],
    "anthropic": _PRICES["claude-sonnet-4-6"],
    "google": _PRICES["gemini-2.5-flash"],
}


def price_for(provider: str, model: str) -> ModelPrice:
    if model in _PRICES:
        return _PRICES[model]
    # Dated snapshots ("gpt-4o-mini-2024-07-18") price like their base model.
    for name in sorted(_PRICES, key=len, reverse=True):
        if model.startswith(name):
            return _PRICES[name]
    return _PROVIDER_FALLBACK.get(provider, _PRICES["gpt-4o-mini"])


def compute_cost(prompt_tokens: int, completion_tokens: int, price: ModelPrice) -> float:
    """cost = prompt/1000 * prompt price + completion/1000 * completion price."""
    return (
        prompt_tokens / 1000 * price.prompt_per_1k
        + completion_tokens / 1000 * price.completion_per_1k
    )
