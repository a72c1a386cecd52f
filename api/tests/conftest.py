from datetime import datetime, timedelta, timezone

import pytest

from lonetown.entities import User
from lonetown.memory_repo import InMemoryRepository
from lonetown.services.events import InMemoryEventSink
from lonetown.services.messages import InMemoryMessageLog
from lonetown.services.registry import build_services
from lonetown.traits import neutral_bundle

T0 = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, start: datetime = T0):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def repo():
    return InMemoryRepository()


@pytest.fixture
def sink():
    return InMemoryEventSink()


@pytest.fixture
def services(repo, sink, clock):
    return build_services(repo, InMemoryMessageLog(), sink, clock=clock)


@pytest.fixture
def add_user(repo):
    def _add(
        user_id: str,
        gender: str = "woman",
        seeking: tuple[str, ...] = ("man",),
        traits=None,
        **fields,
    ) -> User:
        fields.setdefault("available_since", T0 - timedelta(hours=1))
        user = User(
            id=user_id,
            traits=traits or neutral_bundle(),
            gender_identity=gender,
            interested_in=frozenset(seeking),
            **fields,
        )
        repo.put_user(user)
        return user

    return _add


@pytest.fixture
def matched_pair(services, add_user):
    """Two mutually interested users already sharing an active match."""
    add_user("alice", gender="woman", seeking=("man",))
    add_user("bob", gender="man", seeking=("woman",))
    result = services.matchmaker.assign_daily_match("alice")
    return result.match
