"""Static per-model pricing used for cost estimates."""

from __future__ import annotations

# USD per 1K tokens: (input, output)
MODEL_PRICING: dict[str, tuple[float, float]] = {
    "openai/gpt-4o": (0.005, 0.015),
    "openai/gpt-4o-mini": (0.00015, 0.0006),
    "openai/gpt-4-turbo": (0.01, 0.03),
    "anthropic/claude-3-opus-20240229": (0.015, 0.075),
    "anthropic/claude-3-sonnet-20240229": (0.003, 0.015),
    "anthropic/claude-3-haiku-20240307": (0.00025, 0.00125),
    "meta-llama/llama-3-70b-instruct": (0.0009, 0.0009),
    "meta-llama/llama-3-8b-instruct": (0.0002, 0.0002),
    "google/gemini-1.5-pro-latest": (0.0035, 0.0105),
    "google/gemini-1.5-flash-latest": (0.00035, 0.00105),
}


def estimate_cost(model: str, input_tokens: int, output_tokens: int) -> float:
    """Estimated USD cost of a request, or 0.0 for an unknown model."""
    pricing = MODEL_PRICING.get(model)
    if pricing is None:
        return 0.0
    input_price, output_price = pricing
    return (input_tokens / 1000) * input_price + (output_tokens / 1000) * output_price
