"""Model pricing table and cost estimation."""

from __future__ import annotations

from dataclasses import dataclass

from vision_attrs.catalog.attributes import TokenUsage


@dataclass(frozen=True, slots=True)
class ModelPricing:
    """USD per 1K tokens."""

    model: str
    input_per_1k: float
    output_per_1k: float


PRICING: dict[str, ModelPricing] = {
    "gpt-4o": ModelPricing("gpt-4o", 0.0025, 0.01),
    "gpt-4o-mini": ModelPricing("gpt-4o-mini", 0.00015, 0.0006),
    "gpt-4.1": ModelPricing("gpt-4.1", 0.002, 0.008),
    "gpt-4.1-mini": ModelPricing("gpt-4.1-mini", 0.0004, 0.0016),
}


def estimate_cost(model: str, usage: TokenUsage) -> float:
    """Return the estimated USD cost of one call; unknown models cost nothing."""

    pricing = PRICING.get(model)
    if pricing is None:
        return 0.0

    prompt_tokens = usage.prompt_tokens
    completion_tokens = usage.completion_tokens
    if usage.total_tokens and not (prompt_tokens or completion_tokens):
        # No split reported: assume 60/40 input/output.
        prompt_tokens = int(usage.total_tokens * 0.6)
        completion_tokens = usage.total_tokens - prompt_tokens

    cost = (prompt_tokens / 1000) * pricing.input_per_1k + (completion_tokens / 1000) * pricing.output_per_1k
    return round(cost, 6)
