import json
from datetime import timedelta

from conftest import T0
from lonetown.entities import Match
from lonetown.services.events import (
    MATCH_ENDED,
    FanoutEventSink,
    InMemoryEventSink,
    emit_all,
    log_match_event,
    match_created,
    match_ended,
    video_call_unlocked,
)


class FakeDB:
    def __init__(self):
        self.calls = []

    def execute(self, stmt, params):
        self.calls.append((str(stmt), params))


def _match(**fields):
    return Match(
        id="m-1",
        users=("alice", "bob"),
        compatibility_score=81,
        compatibility_factors={"personality": 70, "interests": 50},
        created_at=T0,
        **fields,
    )


def test_log_match_event_inserts_expected_payload_shape():
    db = FakeDB()
    log_match_event(db, match_created(_match(), T0))

    assert len(db.calls) == 1
    sql, params = db.calls[0]
    assert "INSERT INTO match_event" in sql
    assert params["event_type"] == "MatchCreated"
    assert params["match_id"] == "m-1"
    assert params["user_ids"] == "alice,bob"
    assert json.loads(params["payload"])["compatibility_score"] == 81


def test_match_ended_carries_cooldowns():
    match = _match(status="ended", end_reason="unpin", unpinned_by="alice")
    cooldowns = {"alice": {"state": "frozen", "frozen_until": (T0 + timedelta(hours=24)).isoformat()}}
    event = match_ended(match, T0, cooldowns)

    assert event.event_type == MATCH_ENDED
    assert event.payload["unpinned_by"] == "alice"
    assert event.to_dict()["payload"]["cooldowns"] == cooldowns
    assert event.to_dict()["occurred_at"] == T0.isoformat()


def test_fanout_delivers_in_order_to_every_sink():
    left, right = InMemoryEventSink(), InMemoryEventSink()
    events = [match_created(_match(), T0), video_call_unlocked(_match(message_count=100), 100, T0)]
    emit_all(FanoutEventSink(left, right), events)

    assert left.events == events
    assert right.events == events
    assert right.events[1].payload == {"message_count": 100, "windowed_count": 100}
