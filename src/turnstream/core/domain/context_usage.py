"""Prompt size accounting for the ``context_usage`` event.

Uses the same heuristic as the rest of the codebase: about four characters
per token, rounded up per message.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any, Sequence

from turnstream.core.domain.enums import UsageStatus

CHARS_PER_TOKEN = 4
DEFAULT_TOKEN_BUDGET = 16000
NEAR_LIMIT_PERCENT = 85
_MAX_PERCENT = 999


def estimate_tokens(text: str | None) -> int:
    """Estimate tokens for a single text."""
    return math.ceil(len(text or "") / CHARS_PER_TOKEN)


@dataclass
class ContextUsageSnapshot:
    """Token/size accounting for the assembled prompt."""

    estimated_tokens: int
    token_budget: int
    usage_percent: int
    tokens_remaining: int
    status: UsageStatus
    breakdown: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "estimated_tokens": self.estimated_tokens,
            "token_budget": self.token_budget,
            "usage_percent": self.usage_percent,
            "tokens_remaining": self.tokens_remaining,
            "status": self.status.value,
            "breakdown": dict(self.breakdown),
        }


def build_context_usage_snapshot(
    *,
    system_prompt: str,
    history: Sequence[dict[str, Any]],
    user_message: str,
    token_budget: int = DEFAULT_TOKEN_BUDGET,
) -> ContextUsageSnapshot:
    """Estimate the prompt size and compare it against ``token_budget``."""
    system_tokens = estimate_tokens(system_prompt)
    history_tokens = sum(estimate_tokens(str(m.get("content") or "")) for m in history)
    message_tokens = estimate_tokens(user_message)
    estimated = system_tokens + history_tokens + message_tokens

    budget = max(1, token_budget)
    usage_percent = min(round(estimated / budget * 100), _MAX_PERCENT)
    if estimated > budget:
        status = UsageStatus.OVER_BUDGET
    elif usage_percent >= NEAR_LIMIT_PERCENT:
        status = UsageStatus.NEAR_LIMIT
    else:
        status = UsageStatus.OK

    return ContextUsageSnapshot(
        estimated_tokens=estimated,
        token_budget=budget,
        usage_percent=usage_percent,
        tokens_remaining=max(budget - estimated, 0),
        status=status,
        breakdown={
            "system_prompt": system_tokens,
            "history": history_tokens,
            "user_message": message_tokens,
        },
    )
