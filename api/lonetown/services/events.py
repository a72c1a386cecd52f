import json
import logging
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from sqlalchemy import text

logger = logging.getLogger(__name__)

MATCH_CREATED = "MatchCreated"
MATCH_PINNED = "MatchPinned"
MATCH_ENDED = "MatchEnded"
VIDEO_CALL_UNLOCKED = "VideoCallUnlocked"


@dataclass(frozen=True)
class MatchEvent:
    event_type: str
    match_id: str
    user_ids: tuple[str, ...]
    occurred_at: datetime
    payload: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "event_type": self.event_type,
            "match_id": self.match_id,
            "user_ids": list(self.user_ids),
            "occurred_at": self.occurred_at.isoformat(),
            "payload": self.payload,
        }


def match_created(match, occurred_at: datetime) -> MatchEvent:
    return MatchEvent(
        MATCH_CREATED,
        match.id,
        tuple(match.users),
        occurred_at,
        {"compatibility_score": match.compatibility_score, "compatibility_factors": dict(match.compatibility_factors)},
    )


def match_pinned(match, pinned_by: str, occurred_at: datetime) -> MatchEvent:
    return MatchEvent(
        MATCH_PINNED,
        match.id,
        tuple(match.users),
        occurred_at,
        {"pinned_by": pinned_by, "mutual": match.status == "pinned", "pinned_at": match.pinned_at.isoformat() if match.pinned_at else None},
    )


def match_ended(match, occurred_at: datetime, cooldowns: dict[str, Any] | None = None) -> MatchEvent:
    return MatchEvent(
        MATCH_ENDED,
        match.id,
        tuple(match.users),
        occurred_at,
        {"end_reason": match.end_reason, "unpinned_by": match.unpinned_by, "cooldowns": cooldowns or {}},
    )


def video_call_unlocked(match, windowed_count: int, occurred_at: datetime) -> MatchEvent:
    return MatchEvent(
        VIDEO_CALL_UNLOCKED,
        match.id,
        tuple(match.users),
        occurred_at,
        {"message_count": match.message_count, "windowed_count": windowed_count},
    )


class EventSink:
    def emit(self, event: MatchEvent) -> None:
        raise NotImplementedError


class InMemoryEventSink(EventSink):
    def __init__(self) -> None:
        self.events: list[MatchEvent] = []
        self._lock = threading.Lock()

    def emit(self, event: MatchEvent) -> None:
        with self._lock:
            self.events.append(event)

    def of_type(self, event_type: str) -> list[MatchEvent]:
        with self._lock:
            return [e for e in self.events if e.event_type == event_type]


class SqlEventSink(EventSink):
    def __init__(self, session_factory) -> None:
        self._session_factory = session_factory

    def emit(self, event: MatchEvent) -> None:
        with self._session_factory() as db:
            log_match_event(db, event)
            db.commit()


class FanoutEventSink(EventSink):
    def __init__(self, *sinks: EventSink) -> None:
        self._sinks = sinks

    def emit(self, event: MatchEvent) -> None:
        for sink in self._sinks:
            sink.emit(event)


def log_match_event(db, event: MatchEvent) -> None:
    db.execute(
        text(
            """
            INSERT INTO match_event (id, event_type, match_id, user_ids, payload)
            VALUES (:id, :event_type, :match_id, :user_ids, :payload)
            """
        ),
        {
            "id": str(uuid.uuid4()),
            "event_type": event.event_type,
            "match_id": event.match_id,
            "user_ids": ",".join(event.user_ids),
            "payload": json.dumps(event.payload),
        },
    )


def emit_all(sink: EventSink, events: list[MatchEvent]) -> None:
    for event in events:
        logger.info(f"[event] {event.event_type} match_id={event.match_id} users={','.join(event.user_ids)}")
        sink.emit(event)
