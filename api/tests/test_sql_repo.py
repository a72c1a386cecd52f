from datetime import timedelta
from types import SimpleNamespace

import pytest
from sqlalchemy import text
from sqlalchemy.exc import OperationalError

from conftest import T0, FakeClock
from lonetown.database import init_schema, make_engine, make_session_factory
from lonetown.entities import AVAILABLE, ENDED, FROZEN, MATCHED, PINNED
from lonetown.errors import ConcurrentModification, NotFound, StoreUnavailable
from lonetown.repo import SqlRepository, run_in_transaction
from lonetown.services.events import InMemoryEventSink, SqlEventSink, match_created
from lonetown.services import messages as messages_module
from lonetown.services.messages import InMemoryMessageLog, SqlMessageLog
from lonetown.services.registry import build_services
from lonetown.traits import neutral_bundle


@pytest.fixture
def session_factory(tmp_path):
    engine = make_engine(f"sqlite:///{tmp_path / 'lonetown.db'}")
    init_schema(engine)
    return make_session_factory(engine)


@pytest.fixture
def sql_repo(session_factory):
    return SqlRepository(session_factory)


def _seed(repo, user_id, gender, seeking, now=T0 - timedelta(hours=1), interests=None):
    return repo.save_profile(user_id, neutral_bundle(interests=interests), gender, set(seeking), now)


def test_save_profile_round_trip(sql_repo):
    saved = _seed(sql_repo, "alice", " Woman ", {"Man", ""}, interests={"film"})
    loaded = sql_repo.get_user("alice")

    assert loaded == saved
    assert loaded.gender_identity == "woman"
    assert loaded.interested_in == frozenset({"man"})
    assert loaded.state == AVAILABLE
    assert loaded.available_since == T0 - timedelta(hours=1)
    assert loaded.traits.interests == frozenset({"film"})

    # re-saving updates the profile but keeps matching state
    _seed(sql_repo, "alice", "woman", {"man", "woman"}, now=T0 + timedelta(days=3))
    again = sql_repo.get_user("alice")
    assert again.interested_in == frozenset({"man", "woman"})
    assert again.available_since == T0 - timedelta(hours=1)
    assert again.version > loaded.version


def test_unknown_records_are_not_found(sql_repo):
    with pytest.raises(NotFound):
        sql_repo.get_user("ghost")
    with pytest.raises(NotFound):
        sql_repo.get_match("nope")
    with pytest.raises(NotFound):
        with sql_repo.transaction() as uow:
            uow.get_user("ghost")


def test_stale_write_is_rejected(sql_repo):
    _seed(sql_repo, "alice", "woman", {"man"})

    with pytest.raises(ConcurrentModification):
        with sql_repo.transaction() as slow:
            user = slow.get_user("alice")
            with sql_repo.transaction() as fast:
                other = fast.get_user("alice")
                other.last_pinned = T0
                fast.save_user(other)
            user.last_matched = T0
            slow.save_user(user)

    stored = sql_repo.get_user("alice")
    assert stored.last_pinned == T0
    assert stored.last_matched is None


def test_missing_schema_maps_to_store_unavailable(tmp_path):
    engine = make_engine(f"sqlite:///{tmp_path / 'empty.db'}")
    repo = SqlRepository(make_session_factory(engine))
    with pytest.raises(StoreUnavailable):
        repo.get_user("alice")
    with pytest.raises(StoreUnavailable):
        repo.list_users()


def test_full_lifecycle_over_sql(sql_repo):
    clock = FakeClock()
    services = build_services(sql_repo, InMemoryMessageLog(), InMemoryEventSink(), clock=clock)
    _seed(sql_repo, "alice", "woman", {"man"})
    _seed(sql_repo, "bob", "man", {"woman"})

    created = services.matchmaker.assign_daily_match("alice").match
    assert sql_repo.find_active_match("bob").id == created.id
    assert sql_repo.get_user("bob").state == MATCHED

    services.lifecycle.pin(created.id, "alice")
    services.lifecycle.pin(created.id, "bob")
    assert sql_repo.get_match(created.id).status == PINNED
    assert sql_repo.get_match(created.id).pinned_by == {"alice", "bob"}

    clock.advance(hours=1)
    services.lifecycle.unpin(created.id, "bob", feedback={"content": "timing", "categories": []})
    ended = sql_repo.get_match(created.id)
    assert ended.status == ENDED
    assert ended.feedback.from_user == "bob"
    assert ended.compatibility_factors == created.compatibility_factors
    bob = sql_repo.get_user("bob")
    assert bob.state == FROZEN
    assert bob.frozen_until == clock() + timedelta(hours=24)
    assert sql_repo.get_user("alice").available_since == clock() + timedelta(hours=2)
    assert sql_repo.find_active_match("alice") is None
    assert [m.id for m in sql_repo.list_matches_for_user("alice", statuses={ENDED})] == [created.id]


def test_sql_message_log_dedupes_and_counts_window(session_factory):
    log = SqlMessageLog(session_factory)
    first, created = log.record("m1", "alice", "bob", "hi", T0, "c-1")
    again, created_again = log.record("m1", "alice", "bob", "hi", T0, "c-1")
    log.record("m1", "bob", "alice", "hey", T0 + timedelta(hours=1))
    log.record("m1", "bob", "alice", "later", T0 + timedelta(hours=50))
    log.record("m2", "alice", "carl", "elsewhere", T0)

    assert created is True
    assert created_again is False
    assert again.id == first.id
    assert log.count_messages("alice", "bob", timedelta(hours=48), T0 + timedelta(hours=2)) == 2
    assert log.count_messages("bob", "alice", timedelta(hours=48), T0 + timedelta(hours=50)) == 1


def test_sql_event_sink_appends_rows(session_factory, sql_repo):
    clock = FakeClock()
    services = build_services(sql_repo, InMemoryMessageLog(), SqlEventSink(session_factory), clock=clock)
    _seed(sql_repo, "alice", "woman", {"man"})
    _seed(sql_repo, "bob", "man", {"woman"})
    match = services.matchmaker.assign_daily_match("alice").match

    SqlEventSink(session_factory).emit(match_created(match, T0))
    with session_factory() as db:
        rows = db.execute(
            text("SELECT event_type, user_ids FROM match_event WHERE match_id = :m"),
            {"m": match.id},
        ).all()
    assert [r[0] for r in rows] == ["MatchCreated", "MatchCreated"]
    assert rows[0][1] == "alice,bob"


class _DriverError(Exception):
    def __init__(self, message, pgcode):
        super().__init__(message)
        self.pgcode = pgcode


def test_deadlock_aborts_are_retryable_conflicts(sql_repo):
    with pytest.raises(ConcurrentModification):
        with sql_repo.transaction():
            raise OperationalError("UPDATE match", {}, _DriverError("deadlock detected", "40P01"))
    with pytest.raises(ConcurrentModification):
        with sql_repo.transaction():
            raise OperationalError("UPDATE match", {}, _DriverError("could not serialize access", "40001"))
    with pytest.raises(StoreUnavailable):
        with sql_repo.transaction():
            raise OperationalError("SELECT 1", {}, _DriverError("connection refused", "08006"))


def test_transaction_retried_after_deadlock(sql_repo):
    _seed(sql_repo, "alice", "woman", {"man"})
    attempts = []

    def _apply(uow):
        attempts.append(1)
        user = uow.get_user("alice")
        if len(attempts) == 1:
            raise OperationalError("UPDATE user_match_profile", {}, _DriverError("deadlock detected", "40P01"))
        user.last_pinned = T0
        uow.save_user(user)
        return user

    run_in_transaction(sql_repo, _apply)
    assert len(attempts) == 2
    assert sql_repo.get_user("alice").last_pinned == T0


def test_sql_message_log_read_state_and_counting_claims(session_factory):
    log = SqlMessageLog(session_factory)
    hi, _ = log.record("m1", "alice", "bob", "hi", T0, "c-1")
    log.record("m1", "bob", "alice", "hey", T0 + timedelta(minutes=1))
    log.record("m1", "alice", "bob", "you there?", T0 + timedelta(minutes=2))
    log.record("m2", "carl", "bob", "elsewhere", T0)

    assert log.claim_count(hi.id) is True
    assert log.claim_count(hi.id) is False
    log.release_count(hi.id)
    again, created = log.record("m1", "alice", "bob", "hi", T0, "c-1")
    assert created is False
    assert again.counted is False
    assert log.claim_count(hi.id) is True

    assert log.unread_count("bob") == 3
    assert [m.content for m in log.list_for_pair("bob", "alice")] == ["hi", "hey", "you there?"]
    assert log.mark_read("bob", "alice") == 2
    assert log.mark_read("bob", "alice") == 0
    assert log.unread_count("bob") == 1
    assert [m.read for m in log.list_for_pair("alice", "bob")] == [True, False, True]


def test_sql_message_log_maps_foreign_integrity_errors(session_factory, monkeypatch):
    log = SqlMessageLog(session_factory)
    monkeypatch.setattr(messages_module, "uuid", SimpleNamespace(uuid4=lambda: "same-id"))
    log.record("m1", "alice", "bob", "hi", T0)

    with pytest.raises(ConcurrentModification):
        log.record("m1", "bob", "alice", "hey", T0)
