import logging
import random
from datetime import datetime
from typing import Any

from ..clock import utc_now
from ..repo import Repository
from ..traits import CATEGORY_TRAITS, TRAIT_MAX, TRAIT_MIN, TraitBundle

logger = logging.getLogger(__name__)


# Rough personality archetypes so seeded pools have visible structure
# instead of uniform noise. Means are on the 1-10 trait scale.
CLUSTERS = {
    "grounded": {
        "weight": 0.35,
        "means": {"openness": 5.0, "conscientiousness": 8.0, "extraversion": 4.0, "neuroticism": 3.0, "stability": 8.0},
    },
    "social": {
        "weight": 0.35,
        "means": {"openness": 7.5, "extraversion": 8.5, "social_skills": 8.0, "expressiveness": 8.0, "adventure": 7.0},
    },
    "intense": {
        "weight": 0.30,
        "means": {"openness": 8.0, "career": 8.5, "neuroticism": 6.5, "directness": 8.0, "independence": 8.0},
    },
}

GENDER_OPTIONS = ["man", "woman", "nonbinary", "other"]
SEEKING_PROFILES: dict[str, list[list[str]]] = {
    "man": [["woman"], ["man"], ["woman", "man"], ["woman", "man", "nonbinary"]],
    "woman": [["man"], ["woman"], ["man", "woman"], ["man", "woman", "nonbinary"]],
    "nonbinary": [["man"], ["woman"], ["nonbinary"], ["man", "woman", "nonbinary"]],
    "other": [["man"], ["woman"], ["nonbinary"], ["man", "woman", "nonbinary", "other"]],
}

INTEREST_POOL = [
    "hiking", "cooking", "film", "running", "jazz", "board games", "travel", "photography",
    "yoga", "reading", "climbing", "gardening", "museums", "cycling", "poetry", "coffee",
]

DEFAULT_TRAIT_MEAN = 5.5


def _pick_cluster(rng: random.Random) -> str:
    names = list(CLUSTERS.keys())
    weights = [CLUSTERS[n]["weight"] for n in names]
    return rng.choices(names, weights=weights, k=1)[0]


def _bounded_trait(v: float) -> int:
    return max(TRAIT_MIN, min(TRAIT_MAX, int(round(v))))


def _generate_gender_preferences(rng: random.Random) -> tuple[str, list[str]]:
    gender = rng.choices(GENDER_OPTIONS, weights=[0.42, 0.42, 0.12, 0.04], k=1)[0]
    options = SEEKING_PROFILES.get(gender) or [["man", "woman"]]
    return gender, rng.choice(options)


def _generate_matchable_gender_preferences(index: int, rng: random.Random) -> tuple[str, list[str]]:
    """
    Keep seeded pools broadly matchable.
    Most rows are reciprocal man<->woman preference pairs, with a minority
    sampled from the broader distribution for realism.
    """
    if index % 5 != 0:
        if index % 2 == 0:
            return "man", ["woman"]
        return "woman", ["man"]
    return _generate_gender_preferences(rng)


def generate_traits(rng: random.Random, cluster_name: str | None = None) -> TraitBundle:
    means = CLUSTERS[cluster_name]["means"] if cluster_name else {}
    categories = {
        name: {
            trait: _bounded_trait(rng.normalvariate(means.get(trait, DEFAULT_TRAIT_MEAN), 1.8))
            for trait, _ in traits
        }
        for name, traits in CATEGORY_TRAITS.items()
    }
    interests = frozenset(rng.sample(INTEREST_POOL, rng.randint(2, 6)))
    return TraitBundle(interests=interests, **categories)


def seed_dummy_profiles(
    repo: Repository,
    n_users: int = 100,
    seed: int = 42,
    clustered: bool = False,
    id_prefix: str = "seed",
    now: datetime | None = None,
) -> dict[str, Any]:
    rng = random.Random(seed)
    now = now or utc_now()
    clusters: dict[str, int] = {}
    genders: dict[str, int] = {}
    for idx in range(n_users):
        cluster_name = _pick_cluster(rng) if clustered else None
        gender, seeking = _generate_matchable_gender_preferences(idx, rng)
        repo.save_profile(
            f"{id_prefix}-{idx:05d}",
            generate_traits(rng, cluster_name),
            gender,
            set(seeking),
            now,
        )
        if cluster_name:
            clusters[cluster_name] = clusters.get(cluster_name, 0) + 1
        genders[gender] = genders.get(gender, 0) + 1

    logger.info(f"[seed] created or refreshed {n_users} profiles seed={seed} clustered={clustered}")
    return {
        "users": n_users,
        "seed": seed,
        "clustered": clustered,
        "clusters": clusters,
        "genders": genders,
    }
