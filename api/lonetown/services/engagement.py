from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta

from ..clock import Clock, utc_now
from ..config import ENGAGEMENT_WINDOW_HOURS, TXN_RETRY_LIMIT, VIDEO_UNLOCK_MESSAGE_THRESHOLD
from ..entities import Match
from ..errors import InvalidTransition, MatchCoreError
from ..repo import Repository, run_in_transaction
from .events import EventSink, emit_all, video_call_unlocked
from .messages import ChatMessage, MessageLog
from .state_machine import require_participant

logger = logging.getLogger(__name__)


@dataclass
class EngagementStatus:
    message_count: int
    video_call_unlocked: bool
    windowed_count: int
    required: int = VIDEO_UNLOCK_MESSAGE_THRESHOLD

    @property
    def remaining(self) -> int:
        return max(0, self.required - self.windowed_count)


def _require_open(match: Match, action: str) -> None:
    if not match.is_open:
        raise InvalidTransition(
            f"{action} needs an open match, this one is {match.status}",
            match_id=match.id,
            status=match.status,
            action=action,
        )


class EngagementMonitor:
    """Counts messages per match and unlocks video calling.

    The unlock looks at the trailing window ending now, not at the match's
    age. Once unlocked the flag stays set no matter how the rate changes.
    """

    def __init__(
        self,
        repo: Repository,
        messages: MessageLog,
        sink: EventSink,
        clock: Clock = utc_now,
        window_hours: int = ENGAGEMENT_WINDOW_HOURS,
        threshold: int = VIDEO_UNLOCK_MESSAGE_THRESHOLD,
    ) -> None:
        self._repo = repo
        self._messages = messages
        self._sink = sink
        self._clock = clock
        self._window = timedelta(hours=window_hours)
        self._threshold = threshold

    def on_message_sent(self, match_id: str) -> EngagementStatus:
        now = self._clock()

        def _apply(uow) -> tuple[EngagementStatus, Match, bool]:
            match = uow.get_match(match_id)
            _require_open(match, "message")
            match.message_count += 1
            match.last_message_at = now
            a, b = match.users
            windowed = self._messages.count_messages(a, b, self._window, now)
            unlocked_now = False
            if windowed >= self._threshold and not match.video_call_unlocked:
                match.video_call_unlocked = True
                unlocked_now = True
            uow.save_match(match)
            status = EngagementStatus(match.message_count, match.video_call_unlocked, windowed, self._threshold)
            return status, match, unlocked_now

        status, match, unlocked_now = run_in_transaction(self._repo, _apply, retries=TXN_RETRY_LIMIT)
        if unlocked_now:
            logger.info(f"[engagement] video calling unlocked for {match_id} windowed={status.windowed_count}")
            emit_all(self._sink, [video_call_unlocked(match, status.windowed_count, now)])
        return status

    def record_message(
        self,
        match_id: str,
        sender_id: str,
        content: str,
        client_message_id: str | None = None,
    ) -> tuple[ChatMessage, EngagementStatus]:
        now = self._clock()
        match = self._repo.get_match(match_id)
        require_participant(match, sender_id, "message")
        _require_open(match, "message")
        message, created = self._messages.record(
            match_id,
            sender_id,
            match.partner_of(sender_id),
            content,
            now,
            client_message_id,
        )
        if not created:
            logger.info(f"[engagement] duplicate delivery of {client_message_id} on {match_id}")
        if not self._messages.claim_count(message.id):
            return message, self.video_status(match_id, sender_id)
        try:
            status = self.on_message_sent(match_id)
        except MatchCoreError:
            # a redelivery of the same client_message_id will count it
            self._messages.release_count(message.id)
            raise
        return message, status

    def video_status(self, match_id: str, user_id: str) -> EngagementStatus:
        match = self._repo.get_match(match_id)
        require_participant(match, user_id, "video_status")
        _require_open(match, "video_status")
        a, b = match.users
        windowed = self._messages.count_messages(a, b, self._window, self._clock())
        return EngagementStatus(match.message_count, match.video_call_unlocked, windowed, self._threshold)

    def list_messages(self, match_id: str, user_id: str) -> list[ChatMessage]:
        """The conversation with the partner, oldest first. Opening it marks the partner's messages read."""
        match = self._repo.get_match(match_id)
        require_participant(match, user_id, "read_messages")
        _require_open(match, "read_messages")
        partner_id = match.partner_of(user_id)
        marked = self._messages.mark_read(user_id, partner_id)
        if marked:
            logger.info(f"[engagement] {user_id} read {marked} messages on {match_id}")
        return self._messages.list_for_pair(user_id, partner_id)

    def mark_read(self, user_id: str, sender_id: str) -> int:
        return self._messages.mark_read(user_id, sender_id)

    def unread_count(self, user_id: str) -> int:
        return self._messages.unread_count(user_id)
