"""
Output-token budget planning.

Translation length is hard to predict and vendor ceilings vary by model
family, so the planner sizes the requested output from the model's limits,
the configured maximum, the thinking budget and the input size.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


SAFETY_MARGIN_RATIO = 0.05
MIN_OUTPUT_TOKENS = 1024
MIN_CONTENT_OUTPUT_TOKENS = 8192
CONTENT_EXPANSION_FACTOR = 3.5

DYNAMIC_THINKING = -1


@dataclass(frozen=True, slots=True)
class ModelLimits:
    output_token_limit: int
    input_token_limit: Optional[int] = None

    def __post_init__(self) -> None:
        if self.output_token_limit <= 0:
            raise ValueError("output_token_limit must be positive")


@dataclass(frozen=True, slots=True)
class GenerationBudget:
    output_ceiling: int
    thinking_reserve: int
    total_requested_tokens: int
    thinking_enabled: bool


def plan_generation_budget(
    limits: ModelLimits,
    *,
    thinking_budget: int,
    max_output_tokens: int,
    content_tokens: int,
) -> GenerationBudget:
    """Compute the output ceiling and the token count to request on the wire.

    ``thinking_budget`` of -1 means dynamic thinking: the feature is on but no
    fixed amount is reserved. The returned total never exceeds
    ``limits.output_token_limit``.
    """
    limit = limits.output_token_limit
    safety_margin = int(limit * SAFETY_MARGIN_RATIO)
    headroom = max(1, limit - safety_margin)

    # Small models cannot honour the usual floor
    floor = min(MIN_OUTPUT_TOKENS, headroom)

    thinking_reserve = thinking_budget if thinking_budget > 0 else 0
    # Reasoning never starves the visible output floor
    thinking_reserve = min(thinking_reserve, headroom - floor)

    available = max(floor, min(max_output_tokens, headroom - thinking_reserve))

    thinking_enabled = thinking_budget != 0
    if thinking_enabled:
        # Reasoning draws from the same pool unpredictably, keep full headroom
        output_ceiling = available
    else:
        proportional = int(max(MIN_CONTENT_OUTPUT_TOKENS, content_tokens * CONTENT_EXPANSION_FACTOR))
        output_ceiling = min(available, proportional)

    return GenerationBudget(
        output_ceiling=output_ceiling,
        thinking_reserve=thinking_reserve,
        total_requested_tokens=output_ceiling + thinking_reserve,
        thinking_enabled=thinking_enabled,
    )
