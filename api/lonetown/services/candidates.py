from __future__ import annotations

from datetime import datetime, timezone

from ..entities import AVAILABLE, FROZEN, User
from ..repo import Repository
from .state_machine import is_assignable

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


def gender_preference_compatible(u: User, v: User) -> bool:
    if not u.gender_identity or not v.gender_identity:
        return False
    if not u.interested_in or not v.interested_in:
        return False
    return (v.gender_identity in u.interested_in) and (u.gender_identity in v.interested_in)


def pool_order(user: User) -> tuple[datetime, str]:
    return (user.available_since or _EPOCH, user.id)


class CandidatePool:
    """Users that may be offered to a requester right now.

    Frozen users whose cooldown has run out count as available; users still
    inside a grace period do not. The result is ordered longest-waiting first,
    which is the order ties are broken in.
    """

    def __init__(self, repo: Repository) -> None:
        self._repo = repo

    def find_eligible(self, user: User, now: datetime) -> list[User]:
        out = [
            candidate
            for candidate in self._repo.list_users(states={AVAILABLE, FROZEN})
            if candidate.id != user.id
            and is_assignable(candidate, now)
            and gender_preference_compatible(user, candidate)
        ]
        return sorted(out, key=pool_order)
