from __future__ import annotations

import logging
import math
import uuid
from dataclasses import dataclass
from datetime import datetime

from ..clock import Clock, utc_now
from ..config import ASSIGNMENT_RETRY_LIMIT
from ..entities import AVAILABLE, FROZEN, Match, User
from ..errors import ConcurrentModification, NotEligible
from ..repo import Repository, lock_users, run_in_transaction
from .candidates import CandidatePool
from .events import EventSink, emit_all, match_created
from .scoring import CompatibilityResult, compute_compatibility
from .state_machine import (
    apply_assignment,
    available_at,
    cooldown_elapsed,
    effective_state,
    is_assignable,
    thaw_if_expired,
)

logger = logging.getLogger(__name__)

EXISTING = "existing"
CREATED = "created"
NO_MATCH = "no_match"
COOLDOWN = "frozen"


@dataclass
class AssignmentResult:
    kind: str
    match: Match | None = None
    frozen_until: datetime | None = None
    hours_remaining: int | None = None

    @property
    def message(self) -> str:
        if self.kind == EXISTING:
            return "You already have an active match."
        if self.kind == CREATED:
            return "New match found!"
        if self.kind == COOLDOWN:
            return f"You are in a reflection period. New matches will be available in {self.hours_remaining} hours."
        return "No compatible matches found today. Please check back later."


def select_best_candidate(
    user: User,
    candidates: list[User],
    weights: dict[str, float] | None = None,
) -> tuple[User, CompatibilityResult] | None:
    best: tuple[User, CompatibilityResult] | None = None
    for candidate in candidates:
        result = compute_compatibility(user.traits, candidate.traits, weights=weights)
        # strict comparison keeps the first-seen candidate on ties
        if best is None or result.total > best[1].total:
            best = (candidate, result)
    return best


class Matchmaker:
    def __init__(
        self,
        repo: Repository,
        pool: CandidatePool,
        sink: EventSink,
        clock: Clock = utc_now,
        weights: dict[str, float] | None = None,
        retry_limit: int = ASSIGNMENT_RETRY_LIMIT,
    ) -> None:
        self._repo = repo
        self._pool = pool
        self._sink = sink
        self._clock = clock
        self._weights = weights
        self._retry_limit = retry_limit

    def assign_daily_match(self, user_id: str) -> AssignmentResult:
        attempt = 0
        while True:
            try:
                result = self._assign_once(user_id, self._clock())
                break
            except ConcurrentModification as exc:
                attempt += 1
                if attempt > self._retry_limit:
                    logger.warning(f"[match] assignment for {user_id} kept conflicting: {exc.message}")
                    raise
                logger.info(f"[match] assignment for {user_id} conflicted, reselecting: {exc.message}")
        if result.kind == CREATED and result.match is not None:
            emit_all(self._sink, [match_created(result.match, result.match.created_at)])
        return result

    def _assign_once(self, user_id: str, now: datetime) -> AssignmentResult:
        existing = self._repo.find_active_match(user_id)
        if existing is not None:
            logger.info(f"[match] user {user_id} already in match {existing.id}")
            return AssignmentResult(EXISTING, match=existing)

        user = self._repo.get_user(user_id)
        if user.state == FROZEN:
            if not cooldown_elapsed(user, now):
                remaining = (user.frozen_until - now).total_seconds() / 3600.0
                return AssignmentResult(
                    COOLDOWN,
                    frozen_until=user.frozen_until,
                    hours_remaining=max(1, math.ceil(remaining)),
                )
            user = self._thaw(user_id, now)

        if user.current_match_id is not None:
            # matched by someone else's request since the first lookup
            existing = self._repo.find_active_match(user_id)
            if existing is not None:
                return AssignmentResult(EXISTING, match=existing)

        if not is_assignable(user, now):
            state = effective_state(user, now)
            reason = "grace_period" if state == AVAILABLE else f"state_{state}"
            raise NotEligible(
                "user is not available for a new match",
                user_id=user_id,
                state=state,
                reason=reason,
                available_at=available_at(user, now),
            )

        candidates = self._pool.find_eligible(user, now)
        logger.info(f"[match] user {user_id} has {len(candidates)} candidates")
        best = select_best_candidate(user, candidates, self._weights)
        if best is None:
            return AssignmentResult(NO_MATCH)

        candidate, compat = best
        match = self._commit(user_id, candidate.id, compat, now)
        logger.info(f"[match] created {match.id} for {user_id} and {candidate.id} score={match.compatibility_score}")
        return AssignmentResult(CREATED, match=match)

    def _thaw(self, user_id: str, now: datetime) -> User:
        def _apply(uow) -> User:
            user = uow.get_user(user_id)
            if thaw_if_expired(user, now):
                uow.save_user(user)
                logger.info(f"[match] cooldown over for {user_id}, back to available")
            return user

        return run_in_transaction(self._repo, _apply)

    def _commit(self, user_id: str, candidate_id: str, compat: CompatibilityResult, now: datetime) -> Match:
        with self._repo.transaction() as uow:
            locked = lock_users(uow, (user_id, candidate_id))
            requester, candidate = locked[user_id], locked[candidate_id]
            for u in (requester, candidate):
                if not is_assignable(u, now) or uow.find_active_match(u.id) is not None:
                    raise ConcurrentModification(f"user {u.id} is no longer available")
            match = Match(
                id=str(uuid.uuid4()),
                users=(requester.id, candidate.id),
                compatibility_score=compat.total,
                compatibility_factors=dict(compat.factors),
                created_at=now,
            )
            apply_assignment(match, requester, candidate, now)
            uow.add_match(match)
            uow.save_user(requester)
            uow.save_user(candidate)
        return match
