from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from .traits import TraitBundle

AVAILABLE = "available"
MATCHED = "matched"
PINNED = "pinned"
FROZEN = "frozen"
USER_STATES = {AVAILABLE, MATCHED, PINNED, FROZEN}

ACTIVE = "active"
ENDED = "ended"
MATCH_STATUSES = {ACTIVE, PINNED, ENDED}
OPEN_STATUSES = {ACTIVE, PINNED}

END_UNPIN = "unpin"
END_TIMEOUT = "timeout"
END_ADMIN = "admin"
END_MUTUAL = "mutual"
END_REASONS = {END_UNPIN, END_TIMEOUT, END_ADMIN, END_MUTUAL}


@dataclass
class User:
    id: str
    traits: TraitBundle
    gender_identity: str | None = None
    interested_in: frozenset[str] = field(default_factory=frozenset)
    state: str = AVAILABLE
    available_since: datetime | None = None
    frozen_until: datetime | None = None
    last_matched: datetime | None = None
    last_pinned: datetime | None = None
    current_match_id: str | None = None
    version: int = 0


@dataclass
class Feedback:
    from_user: str
    content: str
    categories: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"from_user": self.from_user, "content": self.content, "categories": list(self.categories)}

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> Feedback | None:
        if not data:
            return None
        return cls(
            from_user=str(data["from_user"]),
            content=str(data.get("content") or ""),
            categories=[str(c) for c in data.get("categories") or []],
        )


@dataclass
class Match:
    id: str
    users: tuple[str, str]
    compatibility_score: int
    compatibility_factors: dict[str, int]
    created_at: datetime
    status: str = ACTIVE
    pinned_by: set[str] = field(default_factory=set)
    message_count: int = 0
    last_message_at: datetime | None = None
    video_call_unlocked: bool = False
    end_reason: str | None = None
    unpinned_by: str | None = None
    feedback: Feedback | None = None
    pinned_at: datetime | None = None
    ended_at: datetime | None = None
    version: int = 0

    def has_user(self, user_id: str) -> bool:
        return user_id in self.users

    def partner_of(self, user_id: str) -> str:
        a, b = self.users
        if user_id == a:
            return b
        if user_id == b:
            return a
        raise ValueError(f"{user_id} is not part of match {self.id}")

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_STATUSES
