"""Token estimation and packing mode selection."""

from __future__ import annotations

import math

from nara.qa.models import MODE_HINTS, PackingMode


CHARS_PER_TOKEN = 4
COMPRESSED_OVERFLOW_RATIO = 2.0
MIN_TOKEN_BUDGET = 1_000
MAX_TOKEN_BUDGET = 500_000


def estimate_tokens(text: str) -> int:
    """Approximate token count as characters / 4, rounded up."""

    if not text:
        return 0
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def validate_budget(budget: int) -> int:
    if not MIN_TOKEN_BUDGET <= budget <= MAX_TOKEN_BUDGET:
        raise ValueError(f"token budget must be between {MIN_TOKEN_BUDGET} and {MAX_TOKEN_BUDGET}")
    return budget


def decide_mode(*, text_tokens: int, budget: int, hint: str = "auto") -> PackingMode:
    """Pick a packing mode; explicit hints win, ``auto`` compares size to budget."""

    if hint not in MODE_HINTS:
        raise ValueError(f"Unsupported mode hint: {hint}")
    if text_tokens < 0:
        raise ValueError("text_tokens cannot be negative")
    if budget <= 0:
        raise ValueError("budget must be positive")

    if hint != "auto":
        return hint  # type: ignore[return-value]

    if text_tokens <= budget:
        return "full"
    if text_tokens <= budget * COMPRESSED_OVERFLOW_RATIO:
        return "compressed"
    return "focused"
