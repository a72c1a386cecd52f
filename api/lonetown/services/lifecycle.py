from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from ..clock import Clock, utc_now
from ..config import FREEZE_HOURS, PARTNER_GRACE_HOURS
from ..entities import ENDED, Feedback, Match, User
from ..errors import NotFound
from ..repo import Repository, lock_users, run_in_transaction
from .events import EventSink, emit_all, match_ended, match_pinned
from .state_machine import (
    apply_end,
    apply_pin,
    apply_unpin,
    attach_feedback,
    require_participant,
    thaw_if_expired,
)

logger = logging.getLogger(__name__)


@dataclass
class PinResult:
    match: Match
    mutual: bool
    newly_pinned: bool

    @property
    def message(self) -> str:
        if self.match.status == "pinned":
            return "Match pinned by both users!"
        return "You pinned this match!"


@dataclass
class UnpinResult:
    match: Match
    frozen_until: datetime
    partner_id: str
    partner_available_at: datetime

    @property
    def message(self) -> str:
        return "Match unpinned. You will be in a reflection period for 24 hours."


class LifecycleService:
    def __init__(
        self,
        repo: Repository,
        sink: EventSink,
        clock: Clock = utc_now,
        freeze_hours: int = FREEZE_HOURS,
        grace_hours: int = PARTNER_GRACE_HOURS,
    ) -> None:
        self._repo = repo
        self._sink = sink
        self._clock = clock
        self._freeze_hours = freeze_hours
        self._grace_hours = grace_hours

    def _participants(self, match_id: str) -> tuple[str, str]:
        # users are fixed at creation, so an unlocked read is enough to know whom to lock
        return self._repo.get_match(match_id).users

    def pin(self, match_id: str, user_id: str) -> PinResult:
        now = self._clock()

        participants = self._participants(match_id)

        def _apply(uow) -> PinResult:
            users = lock_users(uow, participants)
            match = uow.get_match(match_id)
            require_participant(match, user_id, "pin")
            already = user_id in match.pinned_by
            mutual = apply_pin(match, user_id, users, now)
            if already:
                return PinResult(match, mutual=False, newly_pinned=False)
            uow.save_match(match)
            if mutual:
                for user in users.values():
                    uow.save_user(user)
            return PinResult(match, mutual=mutual, newly_pinned=True)

        result = run_in_transaction(self._repo, _apply)
        if result.newly_pinned:
            logger.info(f"[lifecycle] {user_id} pinned {match_id} mutual={result.mutual}")
            emit_all(self._sink, [match_pinned(result.match, user_id, now)])
        return result

    def unpin(self, match_id: str, user_id: str, feedback: dict | None = None) -> UnpinResult:
        now = self._clock()
        fb = None
        if feedback:
            fb = Feedback(
                from_user=user_id,
                content=str(feedback.get("content") or ""),
                categories=[str(c) for c in feedback.get("categories") or []],
            )

        participants = self._participants(match_id)

        def _apply(uow) -> UnpinResult:
            users = lock_users(uow, participants)
            match = uow.get_match(match_id)
            require_participant(match, user_id, "unpin")
            actor = users[user_id]
            partner = users[match.partner_of(user_id)]
            apply_unpin(
                match,
                actor,
                partner,
                now,
                feedback=fb,
                freeze_hours=self._freeze_hours,
                grace_hours=self._grace_hours,
            )
            uow.save_match(match)
            uow.save_user(actor)
            uow.save_user(partner)
            return UnpinResult(match, actor.frozen_until, partner.id, partner.available_since)

        result = run_in_transaction(self._repo, _apply)
        logger.info(f"[lifecycle] {user_id} unpinned {match_id}, frozen until {result.frozen_until.isoformat()}")
        cooldowns = {
            user_id: {"state": "frozen", "frozen_until": result.frozen_until.isoformat()},
            result.partner_id: {"state": "available", "available_since": result.partner_available_at.isoformat()},
        }
        emit_all(self._sink, [match_ended(result.match, now, cooldowns)])
        return result

    def end_match(self, match_id: str, reason: str) -> Match:
        now = self._clock()

        participants = self._participants(match_id)

        def _apply(uow) -> Match:
            users = lock_users(uow, participants)
            match = uow.get_match(match_id)
            apply_end(match, users, reason, now)
            uow.save_match(match)
            for user in users.values():
                uow.save_user(user)
            return match

        match = run_in_transaction(self._repo, _apply)
        logger.info(f"[lifecycle] match {match_id} ended reason={reason}")
        cooldowns = {uid: {"state": "available", "available_since": now.isoformat()} for uid in match.users}
        emit_all(self._sink, [match_ended(match, now, cooldowns)])
        return match

    def submit_feedback(self, match_id: str, user_id: str, content: str, categories: list[str] | None = None) -> Match:
        feedback = Feedback(from_user=user_id, content=content, categories=list(categories or []))

        def _apply(uow) -> Match:
            match = uow.get_match(match_id)
            attach_feedback(match, feedback)
            uow.save_match(match)
            return match

        return run_in_transaction(self._repo, _apply)

    def get_feedback(self, match_id: str, user_id: str) -> Feedback:
        match = self._repo.get_match(match_id)
        require_participant(match, user_id, "feedback")
        if match.feedback is None or match.feedback.from_user == user_id:
            raise NotFound("no feedback available", match_id=match_id)
        return match.feedback

    def get_user_state(self, user_id: str) -> User:
        """Current view of a user with an elapsed cooldown already lifted."""
        user = self._repo.get_user(user_id)
        thaw_if_expired(user, self._clock())
        return user

    def current_match(self, user_id: str) -> Match | None:
        self._repo.get_user(user_id)
        return self._repo.find_active_match(user_id)

    def match_history(self, user_id: str) -> list[Match]:
        matches = self._repo.list_matches_for_user(user_id, statuses={ENDED})
        return sorted(matches, key=lambda m: m.ended_at or m.created_at, reverse=True)

