"""Rough per-provider cost estimates.

Prices drift; these figures are only meant to rank interactions by spend.
"""

from .types import InteractionCost

# (input per token, output per token, per image)
_PRICING = {
    "gemini": (0.000001, 0.000002, 0.002),
    "openai": (0.000001, 0.000002, 0.02),
    "azure": (0.000001, 0.000002, 0.02),
    "claude": (0.000008, 0.000024, 0.0),
}
_GPT4_PRICING = (0.00003, 0.00006, 0.02)
_LOCAL_PROVIDERS = {"lmstudio", "fooocus"}


def calculate_estimated_cost(
    provider: str,
    model: str,
    input_tokens: int = 0,
    output_tokens: int = 0,
    image_count: int = 0,
    video_seconds: float = 0.0,
) -> InteractionCost:
    """Estimate the USD cost of an interaction.

    Local providers and unknown providers are free.
    """
    key = provider.lower()
    estimated = 0.0

    if key not in _LOCAL_PROVIDERS and key in _PRICING:
        rates = _PRICING[key]
        if key in ("openai", "azure") and "gpt-4" in model:
            rates = _GPT4_PRICING
        input_rate, output_rate, image_rate = rates
        estimated = input_tokens * input_rate + output_tokens * output_rate
        if image_count > 0:
            estimated += image_count * image_rate

    return InteractionCost(
        provider=provider,
        model=model,
        input_tokens=input_tokens,
        output_tokens=output_tokens,
        image_count=image_count,
        video_seconds=video_seconds,
        estimated_cost=estimated,
        currency="USD",
    )
