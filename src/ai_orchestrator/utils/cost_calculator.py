"""Cost estimation helpers for provider usage.

Figures are approximations for budgeting and observability only. They are not a
billing source of truth: provider invoices remain authoritative.
"""

from __future__ import annotations

from typing import Mapping, Optional, Union

from ai_orchestrator.domain.models import Provider

# USD per 1K tokens
PRICING: Mapping[Provider, Mapping[str, float]] = {
    Provider.OPENAI: {"prompt": 0.00015, "completion": 0.0006},
    Provider.GEMINI: {"prompt": 0.00125, "completion": 0.005},
}


def estimate_cost(
    provider: Union[Provider, str],
    prompt_tokens: Optional[int],
    completion_tokens: Optional[int],
) -> Optional[float]:
    """Return estimated USD cost, or ``None`` when usage is unknown."""

    if prompt_tokens is None or completion_tokens is None:
        return None
    pricing = PRICING.get(Provider(provider))
    if pricing is None:
        return None
    cost = (prompt_tokens / 1000) * pricing["prompt"] + (
        completion_tokens / 1000
    ) * pricing["completion"]
    return round(cost, 6)
