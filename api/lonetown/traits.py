from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from .errors import InvalidTraits


TRAIT_MIN = 1
TRAIT_MAX = 10

SIMILARITY = "similarity"
COMPLEMENTARY = "complementary"

# category -> ordered (trait, scoring mode)
CATEGORY_TRAITS: dict[str, tuple[tuple[str, str], ...]] = {
    "personality": (
        ("openness", SIMILARITY),
        ("conscientiousness", SIMILARITY),
        ("extraversion", COMPLEMENTARY),
        ("agreeableness", SIMILARITY),
        ("neuroticism", COMPLEMENTARY),
    ),
    "emotional_intelligence": (
        ("self_awareness", SIMILARITY),
        ("empathy", SIMILARITY),
        ("social_skills", SIMILARITY),
        ("emotional_regulation", SIMILARITY),
    ),
    "relationship_values": (
        ("commitment", SIMILARITY),
        ("loyalty", SIMILARITY),
        ("honesty", SIMILARITY),
        ("communication", SIMILARITY),
        ("independence", SIMILARITY),
        ("affection", SIMILARITY),
    ),
    "life_goals": (
        ("career", SIMILARITY),
        ("family", SIMILARITY),
        ("personal_growth", SIMILARITY),
        ("adventure", COMPLEMENTARY),
        ("stability", COMPLEMENTARY),
    ),
    "communication_style": (
        ("directness", COMPLEMENTARY),
        ("conflict_resolution", SIMILARITY),
        ("expressiveness", COMPLEMENTARY),
        ("listening", SIMILARITY),
    ),
}

TRAIT_CATEGORIES = tuple(CATEGORY_TRAITS)
FACTOR_NAMES = TRAIT_CATEGORIES + ("interests",)
MATCH_TYPE: dict[str, str] = {
    trait: mode for traits in CATEGORY_TRAITS.values() for trait, mode in traits
}


@dataclass(frozen=True)
class TraitBundle:
    personality: dict[str, int]
    emotional_intelligence: dict[str, int]
    relationship_values: dict[str, int]
    life_goals: dict[str, int]
    communication_style: dict[str, int]
    interests: frozenset[str] = field(default_factory=frozenset)

    def category(self, name: str) -> dict[str, int]:
        return getattr(self, name)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {name: dict(self.category(name)) for name in TRAIT_CATEGORIES}
        out["interests"] = sorted(self.interests)
        return out


def _coerce_trait(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        v = value
    elif isinstance(value, float) and value.is_integer():
        v = int(value)
    elif isinstance(value, str) and value.strip().isdigit():
        v = int(value.strip())
    else:
        return None
    if TRAIT_MIN <= v <= TRAIT_MAX:
        return v
    return None


def _normalize_interests(values: Any) -> frozenset[str]:
    if values is None:
        return frozenset()
    if isinstance(values, str) or not hasattr(values, "__iter__"):
        raise InvalidTraits("interests must be a list of strings", field="interests")
    out: set[str] = set()
    for item in values:
        v = str(item or "").strip().lower()
        if v:
            out.add(v)
    return frozenset(out)


def parse_trait_bundle(raw: dict[str, Any]) -> TraitBundle:
    """Build a validated bundle from a profile payload; every trait is required."""
    if not isinstance(raw, dict):
        raise InvalidTraits("traits must be an object")
    categories: dict[str, dict[str, int]] = {}
    for name, traits in CATEGORY_TRAITS.items():
        group = raw.get(name)
        if not isinstance(group, dict):
            raise InvalidTraits(f"{name} must be an object", field=name)
        parsed: dict[str, int] = {}
        for trait, _ in traits:
            v = _coerce_trait(group.get(trait))
            if v is None:
                raise InvalidTraits(
                    f"{name}.{trait} must be an integer {TRAIT_MIN}-{TRAIT_MAX}",
                    field=f"{name}.{trait}",
                )
            parsed[trait] = v
        categories[name] = parsed
    return TraitBundle(interests=_normalize_interests(raw.get("interests")), **categories)


def neutral_bundle(value: int = 5, interests: set[str] | None = None) -> TraitBundle:
    categories = {name: {trait: value for trait, _ in traits} for name, traits in CATEGORY_TRAITS.items()}
    return TraitBundle(interests=frozenset(interests or ()), **categories)
