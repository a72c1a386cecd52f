from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any

from ..config import CATEGORY_WEIGHTS, validate_weights
from ..traits import CATEGORY_TRAITS, COMPLEMENTARY, SIMILARITY, TRAIT_MAX, TRAIT_MIN, TraitBundle

_SPAN = float(TRAIT_MAX - TRAIT_MIN)


@dataclass(frozen=True)
class CompatibilityResult:
    total: int
    factors: dict[str, int]

    def to_dict(self) -> dict[str, Any]:
        return {"total": self.total, "factors": dict(self.factors)}


def _normalize(value: int) -> float:
    return (float(value) - TRAIT_MIN) / _SPAN


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def similarity_score(a: int, b: int) -> float:
    return 1.0 - abs(_normalize(a) - _normalize(b))


def complementary_score(a: int, b: int) -> float:
    return abs(_normalize(a) - _normalize(b))


def trait_score(a: int, b: int, mode: str) -> float:
    if mode == SIMILARITY:
        return similarity_score(a, b)
    if mode == COMPLEMENTARY:
        return complementary_score(a, b)
    raise ValueError(f"unknown scoring mode: {mode}")


def category_score(name: str, u: TraitBundle, v: TraitBundle) -> float:
    traits = CATEGORY_TRAITS[name]
    u_group = u.category(name)
    v_group = v.category(name)
    total = sum(trait_score(u_group[trait], v_group[trait], mode) for trait, mode in traits)
    return total / len(traits)


def interests_score(a: frozenset[str] | set[str], b: frozenset[str] | set[str]) -> float:
    union = set(a) | set(b)
    if not union:
        return 0.0
    return len(set(a) & set(b)) / len(union)


def category_scores(u: TraitBundle, v: TraitBundle) -> dict[str, float]:
    out = {name: category_score(name, u, v) for name in CATEGORY_TRAITS}
    out["interests"] = interests_score(u.interests, v.interests)
    return out


def compute_compatibility(
    u: TraitBundle,
    v: TraitBundle,
    weights: dict[str, float] | None = None,
) -> CompatibilityResult:
    """Score two bundles on a 0-100 scale.

    The total is taken from the unrounded category scores; each factor is
    rounded on its own, so the total can drift by one from a weighted sum of
    the displayed factors.
    """
    w = validate_weights(weights) if weights is not None else CATEGORY_WEIGHTS
    scores = category_scores(u, v)
    total = sum(scores[name] * w[name] for name in w) * 100.0
    return CompatibilityResult(
        total=max(0, min(100, _round_half_up(total))),
        factors={name: max(0, min(100, _round_half_up(s * 100.0))) for name, s in scores.items()},
    )
