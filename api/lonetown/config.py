import json
import os
from typing import Any

DATABASE_URL = os.getenv("DATABASE_URL", "postgresql+psycopg2://postgres:postgres@db:5432/lonetown")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
ADMIN_TOKEN = os.getenv("ADMIN_TOKEN", "")

FREEZE_HOURS = int(os.getenv("FREEZE_HOURS", "24"))
PARTNER_GRACE_HOURS = int(os.getenv("PARTNER_GRACE_HOURS", "2"))
ENGAGEMENT_WINDOW_HOURS = int(os.getenv("ENGAGEMENT_WINDOW_HOURS", "48"))
VIDEO_UNLOCK_MESSAGE_THRESHOLD = int(os.getenv("VIDEO_UNLOCK_MESSAGE_THRESHOLD", "100"))

TXN_RETRY_LIMIT = int(os.getenv("TXN_RETRY_LIMIT", "3"))
ASSIGNMENT_RETRY_LIMIT = int(os.getenv("ASSIGNMENT_RETRY_LIMIT", "1"))

CATEGORY_WEIGHTS: dict[str, float] = {
    "personality": float(os.getenv("PERSONALITY_W", "0.25")),
    "emotional_intelligence": float(os.getenv("EMOTIONAL_INTELLIGENCE_W", "0.20")),
    "relationship_values": float(os.getenv("RELATIONSHIP_VALUES_W", "0.25")),
    "life_goals": float(os.getenv("LIFE_GOALS_W", "0.15")),
    "communication_style": float(os.getenv("COMMUNICATION_STYLE_W", "0.10")),
    "interests": float(os.getenv("INTERESTS_W", "0.05")),
}

if os.getenv("MATCHING_WEIGHTS_JSON"):
    try:
        CATEGORY_WEIGHTS.update(json.loads(os.getenv("MATCHING_WEIGHTS_JSON", "{}")))
    except json.JSONDecodeError:
        pass


def validate_weights(weights: dict[str, Any]) -> dict[str, float]:
    out = {k: float(v) for k, v in weights.items()}
    if set(out) != set(CATEGORY_WEIGHTS):
        raise ValueError(f"weights must cover exactly: {', '.join(sorted(CATEGORY_WEIGHTS))}")
    if abs(sum(out.values()) - 1.0) > 1e-9:
        raise ValueError(f"weights must sum to 1.0, got {sum(out.values()):.6f}")
    return out


CATEGORY_WEIGHTS = validate_weights(CATEGORY_WEIGHTS)
