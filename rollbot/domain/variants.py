from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class RollVariant:
    emoji: str
    label: str
    min_value: int = 1
    max_value: int = 6


DEFAULT_VARIANT = "🎲"

# Telegram animated emoji whose values stay inside the 1..6 outcome range.
SUPPORTED_VARIANTS: dict[str, RollVariant] = {
    "🎲": RollVariant(emoji="🎲", label="dice"),
    "🎯": RollVariant(emoji="🎯", label="darts"),
    "🎳": RollVariant(emoji="🎳", label="bowling"),
    "🏀": RollVariant(emoji="🏀", label="basketball", max_value=5),
    "⚽": RollVariant(emoji="⚽", label="football", max_value=5),
}

OUTCOME_MIN = 1
OUTCOME_MAX = 6


def resolve_variant(variant: str | None) -> str:
    if variant is None:
        return DEFAULT_VARIANT
    stripped = variant.strip()
    return stripped or DEFAULT_VARIANT


def is_supported_variant(variant: str) -> bool:
    return variant in SUPPORTED_VARIANTS


def is_valid_outcome(value: object, variant: str | None = None) -> bool:
    # bool is an int subclass; a True/False payload is not a roll.
    if not isinstance(value, int) or isinstance(value, bool):
        return False
    known = SUPPORTED_VARIANTS.get(variant) if variant is not None else None
    low = max(OUTCOME_MIN, known.min_value) if known else OUTCOME_MIN
    high = min(OUTCOME_MAX, known.max_value) if known else OUTCOME_MAX
    return low <= value <= high
