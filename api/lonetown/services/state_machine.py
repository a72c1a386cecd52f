"""Transition rules for users and matches.

Everything here mutates the records it is handed and performs no I/O; callers
run these inside a repository unit of work so that every record touched by a
transition is committed together or not at all. Preconditions are checked
before the first mutation, so a refused transition leaves its inputs untouched.
"""

from __future__ import annotations

from datetime import datetime, timedelta

from ..config import FREEZE_HOURS, PARTNER_GRACE_HOURS
from ..entities import (
    ACTIVE,
    AVAILABLE,
    END_REASONS,
    END_UNPIN,
    ENDED,
    FROZEN,
    MATCHED,
    OPEN_STATUSES,
    PINNED,
    Feedback,
    Match,
    User,
)
from ..errors import InvalidTransition, NotParticipant


def cooldown_elapsed(user: User, now: datetime) -> bool:
    if user.state != FROZEN:
        return False
    return user.frozen_until is None or now >= user.frozen_until


def effective_state(user: User, now: datetime) -> str:
    if cooldown_elapsed(user, now):
        return AVAILABLE
    return user.state


def thaw_if_expired(user: User, now: datetime) -> bool:
    if not cooldown_elapsed(user, now):
        return False
    user.state = AVAILABLE
    user.available_since = now
    return True


def available_at(user: User, now: datetime) -> datetime | None:
    """When the user may next be matched, or None if not through waiting alone."""
    state = effective_state(user, now)
    if state == FROZEN:
        return user.frozen_until
    if state != AVAILABLE:
        return None
    if user.available_since and user.available_since > now:
        return user.available_since
    return now


def is_assignable(user: User, now: datetime) -> bool:
    if effective_state(user, now) != AVAILABLE:
        return False
    if user.current_match_id is not None:
        return False
    if cooldown_elapsed(user, now):
        return True
    return user.available_since is None or user.available_since <= now


def require_participant(match: Match, user_id: str, action: str) -> None:
    if not match.has_user(user_id):
        raise NotParticipant(
            f"user is not part of match {match.id}",
            user_id=user_id,
            reason=f"{action}_not_participant",
        )


def apply_assignment(match: Match, first: User, second: User, now: datetime) -> None:
    for user in (first, second):
        thaw_if_expired(user, now)
        user.state = MATCHED
        user.current_match_id = match.id
        user.last_matched = now


def apply_pin(match: Match, user_id: str, users: dict[str, User], now: datetime) -> bool:
    """Record one side's pin; returns True when this pin made the match mutual."""
    require_participant(match, user_id, "pin")
    if match.status != ACTIVE:
        raise InvalidTransition(
            f"cannot pin a match that is {match.status}",
            match_id=match.id,
            status=match.status,
            action="pin",
        )
    if user_id in match.pinned_by:
        return False
    match.pinned_by.add(user_id)
    if len(match.pinned_by) < 2:
        return False
    match.status = PINNED
    match.pinned_at = now
    for uid in match.users:
        user = users[uid]
        user.state = PINNED
        user.last_pinned = now
    return True


def apply_unpin(
    match: Match,
    actor: User,
    partner: User,
    now: datetime,
    feedback: Feedback | None = None,
    freeze_hours: int = FREEZE_HOURS,
    grace_hours: int = PARTNER_GRACE_HOURS,
) -> None:
    require_participant(match, actor.id, "unpin")
    if match.status not in OPEN_STATUSES:
        raise InvalidTransition(
            f"cannot unpin a match that is {match.status}",
            match_id=match.id,
            status=match.status,
            action="unpin",
        )
    match.status = ENDED
    match.end_reason = END_UNPIN
    match.unpinned_by = actor.id
    match.ended_at = now
    if feedback is not None:
        match.feedback = feedback

    actor.state = FROZEN
    actor.frozen_until = now + timedelta(hours=freeze_hours)
    actor.current_match_id = None

    partner.state = AVAILABLE
    partner.available_since = now + timedelta(hours=grace_hours)
    partner.current_match_id = None


def apply_end(match: Match, users: dict[str, User], reason: str, now: datetime) -> None:
    if reason not in END_REASONS or reason == END_UNPIN:
        raise ValueError(f"unsupported end reason: {reason}")
    if match.status not in OPEN_STATUSES:
        raise InvalidTransition(
            f"cannot end a match that is {match.status}",
            match_id=match.id,
            status=match.status,
            action="end",
        )
    match.status = ENDED
    match.end_reason = reason
    match.ended_at = now
    for uid in match.users:
        user = users[uid]
        # only release users still pointing at this match
        if user.current_match_id != match.id:
            continue
        user.state = AVAILABLE
        user.available_since = now
        user.current_match_id = None


def attach_feedback(match: Match, feedback: Feedback) -> None:
    require_participant(match, feedback.from_user, "feedback")
    if match.status != ENDED:
        raise InvalidTransition(
            "feedback can only be left on an ended match",
            match_id=match.id,
            status=match.status,
            action="feedback",
        )
    if match.feedback is not None:
        raise InvalidTransition(
            "feedback was already submitted for this match",
            match_id=match.id,
            status=match.status,
            action="feedback",
            reason="feedback_already_submitted",
        )
    match.feedback = feedback
