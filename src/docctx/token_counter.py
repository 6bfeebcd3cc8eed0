"""Token estimation for context budget management.

The default estimator divides character length by a fixed ratio. It is an
approximation, not a tokenizer: counts are safe upper-bound estimates for
budgeting, not exact figures. ``TiktokenEstimator`` is available when real
token counts are wanted; both satisfy the same ``estimate(text)`` contract
so the assembly algorithm never needs to know which one is in use.
"""

from __future__ import annotations

import math
from functools import lru_cache
from typing import Optional

import tiktoken

DEFAULT_CHARS_PER_TOKEN = 3.5
TRUNCATION_MARKER = "\n...\n[Content truncated due to token limits]"

# Calibration factors: cl100k_base tokens * factor = provider tokens.
_PROVIDER_CALIBRATION = {
    "anthropic": 1.10,
    "openai": 1.0,
    "default": 1.05,
}


class TokenEstimator:
    """Strategy interface: text in, token count out."""

    name = "base"

    def estimate(self, text: str) -> int:
        raise NotImplementedError


class CharRatioEstimator(TokenEstimator):
    """Length-based estimate: ``ceil(len(text) / chars_per_token)``."""

    name = "chars"

    def __init__(self, chars_per_token: float = DEFAULT_CHARS_PER_TOKEN):
        if chars_per_token <= 0:
            raise ValueError("chars_per_token must be positive")
        self.chars_per_token = chars_per_token

    def estimate(self, text: str) -> int:
        if not text:
            return 0
        return math.ceil(len(text) / self.chars_per_token)

    def __repr__(self) -> str:
        return f"CharRatioEstimator(chars_per_token={self.chars_per_token})"


@lru_cache(maxsize=4)
def _get_tokenizer(encoding: str = "cl100k_base") -> tiktoken.Encoding:
    """Get cached tokenizer instance."""
    return tiktoken.get_encoding(encoding)


class TiktokenEstimator(TokenEstimator):
    """tiktoken (cl100k_base) count with provider-specific calibration.

    Claude's tokenizer produces ~5-15% more tokens than cl100k_base, so
    counts are scaled by a per-provider factor.
    """

    name = "tiktoken"

    def __init__(self, provider: str = "default", encoding: str = "cl100k_base"):
        self.provider = provider
        self.encoding = encoding
        self.factor = _PROVIDER_CALIBRATION.get(provider, _PROVIDER_CALIBRATION["default"])

    def estimate(self, text: str) -> int:
        if not text:
            return 0
        raw_count = len(_get_tokenizer(self.encoding).encode(text))
        return max(1, math.ceil(raw_count * self.factor))


def get_estimator(
    kind: str = "chars",
    chars_per_token: float = DEFAULT_CHARS_PER_TOKEN,
    provider: str = "default",
) -> TokenEstimator:
    """Build an estimator by name ("chars" or "tiktoken")."""
    if kind == "tiktoken":
        return TiktokenEstimator(provider=provider)
    if kind == "chars":
        return CharRatioEstimator(chars_per_token)
    raise ValueError(f"Unknown tokenizer: {kind!r}")


def count_tokens(text: str, estimator: Optional[TokenEstimator] = None) -> int:
    """Estimate tokens for *text* (character ratio unless told otherwise)."""
    return (estimator or CharRatioEstimator()).estimate(text)


def truncate_to_budget(
    text: str,
    budget: int,
    estimator: Optional[TokenEstimator] = None,
    marker: str = TRUNCATION_MARKER,
) -> str:
    """Truncate text so that it, plus *marker*, fits within a token budget.

    Args:
        text: Text to truncate.
        budget: Maximum tokens for the returned string.
        estimator: Token estimator (defaults to the character ratio).
        marker: Appended whenever anything was cut.

    Returns:
        *text* unchanged when it already fits, otherwise a prefix followed
        by *marker*. Returns "" when not even the marker fits.
    """
    estimator = estimator or CharRatioEstimator()
    if budget <= 0:
        return ""
    if estimator.estimate(text) <= budget:
        return text

    target = budget - estimator.estimate(marker)
    if target <= 0:
        return ""

    # Binary search for the right cutoff point, by whole lines first
    lines = text.split("\n")
    lo, hi = 0, len(lines)
    while lo < hi:
        mid = (lo + hi + 1) // 2
        if estimator.estimate("\n".join(lines[:mid])) <= target:
            lo = mid
        else:
            hi = mid - 1

    if lo > 0:
        head = "\n".join(lines[:lo])
    else:
        # Even one line exceeds the budget: cut by characters
        lo, hi = 0, len(text)
        while lo < hi:
            mid = (lo + hi + 1) // 2
            if estimator.estimate(text[:mid]) <= target:
                lo = mid
            else:
                hi = mid - 1
        head = text[:lo]

    result = head + marker
    while head and estimator.estimate(result) > budget:
        head = head[: int(len(head) * 0.9)]
        result = head + marker
    if not head:
        return ""
    return result


def format_budget(used: int, total: int) -> str:
    """Format budget utilization string.

    Args:
        used: Tokens used.
        total: Total budget.

    Returns:
        Formatted string like "6,234 / 8,000 (78%)"
    """
    pct = int(used / total * 100) if total > 0 else 0
    return f"{used:,} / {total:,} ({pct}%)"
