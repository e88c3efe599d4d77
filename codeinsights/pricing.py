"""Static model pricing table and token cost estimation.

Prices are USD per 1M tokens. Cache reads are billed at 10% of the input
rate and cache writes at 125% of it.
"""
from __future__ import annotations

import re
from typing import Any, Iterable, NamedTuple

_DATE_SUFFIX_PATTERN = re.compile(r"(?:-\d{8}|-\d{4}-\d{2}-\d{2})+$")

CACHE_WRITE_MULTIPLIER = 1.25
CACHE_READ_MULTIPLIER = 0.1


class ModelPricing(NamedTuple):
    input: float
    output: float


MODEL_PRICING: dict[str, ModelPricing] = {
    # Claude 4.x family
    "claude-opus-4-6": ModelPricing(15.0, 75.0),
    "claude-opus-4-5": ModelPricing(5.0, 25.0),
    "claude-opus-4-1": ModelPricing(15.0, 75.0),
    "claude-opus-4": ModelPricing(15.0, 75.0),
    "claude-sonnet-4-5": ModelPricing(3.0, 15.0),
    "claude-sonnet-4": ModelPricing(3.0, 15.0),
    "claude-haiku-4-5": ModelPricing(0.8, 4.0),
    # Claude 3.x family
    "claude-3-7-sonnet": ModelPricing(3.0, 15.0),
    "claude-3-5-sonnet-20241022": ModelPricing(3.0, 15.0),
    "claude-3-5-haiku-20241022": ModelPricing(0.8, 4.0),
    "claude-3-opus-20240229": ModelPricing(15.0, 75.0),
    "claude-3-sonnet-20240229": ModelPricing(3.0, 15.0),
    "claude-3-haiku-20240307": ModelPricing(0.25, 1.25),
    # OpenAI models seen in Codex CLI rollouts
    "gpt-5-codex": ModelPricing(1.25, 10.0),
    "gpt-5-mini": ModelPricing(0.25, 2.0),
    "gpt-5": ModelPricing(1.25, 10.0),
    "gpt-4.1": ModelPricing(2.0, 8.0),
    "o4-mini": ModelPricing(1.1, 4.4),
}

# Sonnet-level fallback for unknown models.
DEFAULT_PRICING = ModelPricing(3.0, 15.0)

# Longest keys first so "gpt-5-mini" wins over "gpt-5".
_PREFIX_ORDER = sorted(MODEL_PRICING, key=len, reverse=True)


def canonical_model_name(raw_model: str | None) -> str:
    """Return a canonical model identifier with build/date suffixes removed.

    Example:
      claude-opus-4-5-20251101 -> claude-opus-4-5
    """
    raw = (raw_model or "").strip().lower()
    if not raw:
        return ""
    normalized = re.sub(r"[\s_]+", "-", raw)
    normalized = re.sub(r"-{2,}", "-", normalized).strip("-")
    stripped = _DATE_SUFFIX_PATTERN.sub("", normalized).strip("-")
    return stripped or normalized


def get_model_pricing(model: str | None) -> ModelPricing:
    """Exact match first, then prefix match, then the default rate."""
    raw = (model or "").strip()
    if raw in MODEL_PRICING:
        return MODEL_PRICING[raw]

    candidates = [raw.lower()]
    canonical = canonical_model_name(raw)
    if canonical and canonical not in candidates:
        candidates.append(canonical)

    for candidate in candidates:
        for key in _PREFIX_ORDER:
            if candidate.startswith(key):
                return MODEL_PRICING[key]
    return DEFAULT_PRICING


class UsageEntry(NamedTuple):
    model: str
    usage: dict[str, Any]


def token_count(usage: dict[str, Any], key: str) -> int:
    try:
        return max(0, int(usage.get(key) or 0))
    except (TypeError, ValueError):
        return 0


def calculate_cost(entries: Iterable[UsageEntry]) -> float:
    """Total estimated cost in USD, rounded to 4 decimal places."""
    total = 0.0
    for model, usage in entries:
        pricing = get_model_pricing(model)
        total += token_count(usage, "input_tokens") / 1_000_000 * pricing.input
        total += token_count(usage, "output_tokens") / 1_000_000 * pricing.output
        total += (
            token_count(usage, "cache_creation_input_tokens") / 1_000_000
            * pricing.input * CACHE_WRITE_MULTIPLIER
        )
        total += (
            token_count(usage, "cache_read_input_tokens") / 1_000_000
            * pricing.input * CACHE_READ_MULTIPLIER
        )
    return round(total, 4)
