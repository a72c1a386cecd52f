from __future__ import annotations

import copy
import threading
from contextlib import contextmanager
from datetime import datetime
from typing import Iterator

from .entities import AVAILABLE, OPEN_STATUSES, Match, User
from .errors import ConcurrentModification, NotFound
from .repo import Repository, UnitOfWork, normalize_gender, normalize_genders
from .traits import TraitBundle


class _MemoryUnitOfWork(UnitOfWork):
    def __init__(self, repo: InMemoryRepository) -> None:
        self._repo = repo
        self._users: dict[str, User] = {}
        self._matches: dict[str, Match] = {}
        self._read_versions: dict[tuple[str, str], int] = {}
        self._dirty_users: set[str] = set()
        self._dirty_matches: set[str] = set()
        self._new_matches: set[str] = set()

    def get_user(self, user_id: str) -> User:
        if user_id not in self._users:
            user = self._repo._snapshot_user(user_id)
            self._users[user_id] = user
            self._read_versions[("user", user_id)] = user.version
        return self._users[user_id]

    def get_match(self, match_id: str) -> Match:
        if match_id not in self._matches:
            match = self._repo._snapshot_match(match_id)
            self._matches[match_id] = match
            self._read_versions[("match", match_id)] = match.version
        return self._matches[match_id]

    def find_active_match(self, user_id: str) -> Match | None:
        match_id = self._repo._open_match_id(user_id)
        if match_id is None:
            return None
        return self.get_match(match_id)

    def add_match(self, match: Match) -> None:
        self._matches[match.id] = match
        self._new_matches.add(match.id)

    def save_user(self, user: User) -> None:
        if self._users.get(user.id) is not user:
            raise ConcurrentModification(f"user {user.id} was not read in this transaction")
        self._dirty_users.add(user.id)

    def save_match(self, match: Match) -> None:
        if self._matches.get(match.id) is not match:
            raise ConcurrentModification(f"match {match.id} was not read in this transaction")
        self._dirty_matches.add(match.id)

    def commit(self) -> None:
        self._repo._commit(self)


class InMemoryRepository(Repository):
    """Process-local repository; commits are serialized behind one lock and
    validated against the versions each unit of work read."""

    def __init__(self) -> None:
        self._users: dict[str, User] = {}
        self._matches: dict[str, Match] = {}
        self._lock = threading.Lock()

    @contextmanager
    def transaction(self) -> Iterator[UnitOfWork]:
        uow = _MemoryUnitOfWork(self)
        yield uow
        uow.commit()

    def _snapshot_user(self, user_id: str) -> User:
        with self._lock:
            user = self._users.get(user_id)
            if user is None:
                raise NotFound(f"user {user_id} not found", user_id=user_id)
            return copy.deepcopy(user)

    def _snapshot_match(self, match_id: str) -> Match:
        with self._lock:
            match = self._matches.get(match_id)
            if match is None:
                raise NotFound(f"match {match_id} not found", match_id=match_id)
            return copy.deepcopy(match)

    def _open_match_id(self, user_id: str) -> str | None:
        with self._lock:
            for match in sorted(self._matches.values(), key=lambda m: m.created_at):
                if match.status in OPEN_STATUSES and match.has_user(user_id):
                    return match.id
        return None

    def _commit(self, uow: _MemoryUnitOfWork) -> None:
        with self._lock:
            for (kind, key), version in uow._read_versions.items():
                current = self._users.get(key) if kind == "user" else self._matches.get(key)
                if current is None or current.version != version:
                    raise ConcurrentModification(f"{kind} {key} changed before commit")
            for match_id in uow._new_matches:
                if match_id in self._matches:
                    raise ConcurrentModification(f"match {match_id} already exists")
            for user_id in uow._dirty_users:
                user = copy.deepcopy(uow._users[user_id])
                user.version += 1
                self._users[user_id] = user
            for match_id in uow._dirty_matches | uow._new_matches:
                match = copy.deepcopy(uow._matches[match_id])
                match.version += 1
                self._matches[match_id] = match

    def get_user(self, user_id: str) -> User:
        return self._snapshot_user(user_id)

    def get_match(self, match_id: str) -> Match:
        return self._snapshot_match(match_id)

    def find_active_match(self, user_id: str) -> Match | None:
        match_id = self._open_match_id(user_id)
        return self._snapshot_match(match_id) if match_id else None

    def list_users(self, states: set[str] | None = None) -> list[User]:
        with self._lock:
            users = [u for u in self._users.values() if not states or u.state in states]
            return [copy.deepcopy(u) for u in sorted(users, key=lambda u: u.id)]

    def list_matches_for_user(self, user_id: str, statuses: set[str] | None = None) -> list[Match]:
        with self._lock:
            matches = [
                m for m in self._matches.values()
                if m.has_user(user_id) and (not statuses or m.status in statuses)
            ]
            return [copy.deepcopy(m) for m in sorted(matches, key=lambda m: m.created_at)]

    def save_profile(
        self,
        user_id: str,
        traits: TraitBundle,
        gender_identity: str | None,
        interested_in: set[str],
        now: datetime,
    ) -> User:
        with self._lock:
            user = self._users.get(user_id)
            if user is None:
                user = User(id=user_id, traits=traits, state=AVAILABLE, available_since=now)
            else:
                user = copy.deepcopy(user)
            user.traits = traits
            user.gender_identity = normalize_gender(gender_identity)
            user.interested_in = normalize_genders(interested_in)
            user.version += 1
            self._users[user_id] = user
            return copy.deepcopy(user)

    def put_user(self, user: User) -> None:
        """Install a fully formed record, bypassing transitions; for seeding and tests."""
        with self._lock:
            self._users[user.id] = copy.deepcopy(user)

    def put_match(self, match: Match) -> None:
        with self._lock:
            self._matches[match.id] = copy.deepcopy(match)
