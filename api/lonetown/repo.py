"""Repository contract and the SQLAlchemy-backed implementation.

A unit of work reads records, lets the caller mutate them, and commits every
staged write together. Writes are compare-and-swap on the per-record
``version`` column: if anything committed a newer version between our read
and our commit, the whole unit is rolled back with ``ConcurrentModification``.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Callable, Iterator, TypeVar

from sqlalchemy import or_, select
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from .clock import as_utc
from .config import TXN_RETRY_LIMIT
from .entities import AVAILABLE, OPEN_STATUSES, Feedback, Match, User
from .errors import ConcurrentModification, NotFound, StoreUnavailable
from .models import MatchRow, UserProfileRow
from .traits import TraitBundle, parse_trait_bundle

logger = logging.getLogger(__name__)

T = TypeVar("T")


class UnitOfWork:
    def get_user(self, user_id: str) -> User:
        raise NotImplementedError

    def get_match(self, match_id: str) -> Match:
        raise NotImplementedError

    def find_active_match(self, user_id: str) -> Match | None:
        raise NotImplementedError

    def add_match(self, match: Match) -> None:
        raise NotImplementedError

    def save_user(self, user: User) -> None:
        raise NotImplementedError

    def save_match(self, match: Match) -> None:
        raise NotImplementedError


class Repository:
    def transaction(self):
        """Context manager yielding a ``UnitOfWork``; commits on clean exit."""
        raise NotImplementedError

    def get_user(self, user_id: str) -> User:
        raise NotImplementedError

    def get_match(self, match_id: str) -> Match:
        raise NotImplementedError

    def find_active_match(self, user_id: str) -> Match | None:
        raise NotImplementedError

    def list_users(self, states: set[str] | None = None) -> list[User]:
        raise NotImplementedError

    def list_matches_for_user(self, user_id: str, statuses: set[str] | None = None) -> list[Match]:
        raise NotImplementedError

    def save_profile(
        self,
        user_id: str,
        traits: TraitBundle,
        gender_identity: str | None,
        interested_in: set[str],
        now: datetime,
    ) -> User:
        raise NotImplementedError


def run_in_transaction(repo: Repository, fn: Callable[[UnitOfWork], T], retries: int = TXN_RETRY_LIMIT) -> T:
    attempt = 0
    while True:
        try:
            with repo.transaction() as uow:
                return fn(uow)
        except ConcurrentModification as exc:
            attempt += 1
            if attempt > retries:
                logger.warning(f"[repo] giving up after {attempt} conflicting attempts: {exc.message}")
                raise
            logger.info(f"[repo] retrying after conflict attempt={attempt}: {exc.message}")


def lock_users(uow: UnitOfWork, user_ids) -> dict[str, User]:
    """Read users in id order so concurrent units of work take row locks in the same order."""
    return {uid: uow.get_user(uid) for uid in sorted(set(user_ids))}


# deadlock_detected, serialization_failure
RETRYABLE_SQLSTATES = {"40P01", "40001"}


def is_retryable_store_error(exc: DBAPIError) -> bool:
    code = getattr(exc.orig, "pgcode", None) or getattr(exc.orig, "sqlstate", None)
    return code in RETRYABLE_SQLSTATES


def normalize_gender(value: Any) -> str | None:
    if value is None:
        return None
    v = str(value).strip().lower()
    return v or None


def normalize_genders(values: Any) -> frozenset[str]:
    if not values:
        return frozenset()
    out: set[str] = set()
    for item in values:
        g = normalize_gender(item)
        if g:
            out.add(g)
    return frozenset(out)


def _store_dt(value: datetime | None) -> datetime | None:
    return as_utc(value)


def _user_from_row(row: UserProfileRow) -> User:
    return User(
        id=row.id,
        traits=parse_trait_bundle(row.traits or {}),
        gender_identity=row.gender_identity,
        interested_in=normalize_genders(row.interested_in),
        state=row.state,
        available_since=as_utc(row.available_since),
        frozen_until=as_utc(row.frozen_until),
        last_matched=as_utc(row.last_matched),
        last_pinned=as_utc(row.last_pinned),
        current_match_id=row.current_match_id,
        version=row.version,
    )


def _copy_user_to_row(user: User, row: UserProfileRow) -> None:
    row.traits = user.traits.to_dict()
    row.gender_identity = user.gender_identity
    row.interested_in = sorted(user.interested_in)
    row.state = user.state
    row.available_since = _store_dt(user.available_since)
    row.frozen_until = _store_dt(user.frozen_until)
    row.last_matched = _store_dt(user.last_matched)
    row.last_pinned = _store_dt(user.last_pinned)
    row.current_match_id = user.current_match_id


def _match_from_row(row: MatchRow) -> Match:
    return Match(
        id=row.id,
        users=(row.user_a, row.user_b),
        compatibility_score=int(row.compatibility_score),
        compatibility_factors={k: int(v) for k, v in (row.compatibility_factors or {}).items()},
        created_at=as_utc(row.created_at),
        status=row.status,
        pinned_by=set(row.pinned_by or []),
        message_count=int(row.message_count or 0),
        last_message_at=as_utc(row.last_message_at),
        video_call_unlocked=bool(row.video_call_unlocked),
        end_reason=row.end_reason,
        unpinned_by=row.unpinned_by,
        feedback=Feedback.from_dict(row.feedback),
        pinned_at=as_utc(row.pinned_at),
        ended_at=as_utc(row.ended_at),
        version=row.version,
    )


def _copy_match_to_row(match: Match, row: MatchRow) -> None:
    # users, score and factors are fixed at creation
    row.status = match.status
    row.pinned_by = sorted(match.pinned_by)
    row.message_count = match.message_count
    row.last_message_at = _store_dt(match.last_message_at)
    row.video_call_unlocked = match.video_call_unlocked
    row.end_reason = match.end_reason
    row.unpinned_by = match.unpinned_by
    row.feedback = match.feedback.to_dict() if match.feedback else None
    row.pinned_at = _store_dt(match.pinned_at)
    row.ended_at = _store_dt(match.ended_at)


def _new_match_row(match: Match) -> MatchRow:
    row = MatchRow(
        id=match.id,
        user_a=match.users[0],
        user_b=match.users[1],
        compatibility_score=match.compatibility_score,
        compatibility_factors=dict(match.compatibility_factors),
        created_at=_store_dt(match.created_at),
    )
    _copy_match_to_row(match, row)
    return row


def _open_match_query(user_id: str):
    return (
        select(MatchRow)
        .where(or_(MatchRow.user_a == user_id, MatchRow.user_b == user_id))
        .where(MatchRow.status.in_(sorted(OPEN_STATUSES)))
        .order_by(MatchRow.created_at)
    )


class _SqlUnitOfWork(UnitOfWork):
    def __init__(self, db) -> None:
        self.db = db
        self._users: dict[str, tuple[User, UserProfileRow]] = {}
        self._matches: dict[str, tuple[Match, MatchRow]] = {}

    def get_user(self, user_id: str) -> User:
        if user_id in self._users:
            return self._users[user_id][0]
        row = self.db.get(UserProfileRow, user_id, with_for_update=True)
        if row is None:
            raise NotFound(f"user {user_id} not found", user_id=user_id)
        user = _user_from_row(row)
        self._users[user_id] = (user, row)
        return user

    def _track_match(self, row: MatchRow) -> Match:
        if row.id in self._matches:
            return self._matches[row.id][0]
        match = _match_from_row(row)
        self._matches[row.id] = (match, row)
        return match

    def get_match(self, match_id: str) -> Match:
        if match_id in self._matches:
            return self._matches[match_id][0]
        row = self.db.get(MatchRow, match_id, with_for_update=True)
        if row is None:
            raise NotFound(f"match {match_id} not found", match_id=match_id)
        return self._track_match(row)

    def find_active_match(self, user_id: str) -> Match | None:
        row = self.db.execute(_open_match_query(user_id).with_for_update()).scalars().first()
        return self._track_match(row) if row is not None else None

    def add_match(self, match: Match) -> None:
        row = _new_match_row(match)
        self.db.add(row)
        self._matches[match.id] = (match, row)

    def save_user(self, user: User) -> None:
        if user.id not in self._users:
            raise ConcurrentModification(f"user {user.id} was not read in this transaction")
        _, row = self._users[user.id]
        if row.version != user.version:
            raise ConcurrentModification(f"user {user.id} changed since it was read")
        _copy_user_to_row(user, row)

    def save_match(self, match: Match) -> None:
        if match.id not in self._matches:
            raise ConcurrentModification(f"match {match.id} was not read in this transaction")
        _, row = self._matches[match.id]
        _copy_match_to_row(match, row)


class SqlRepository(Repository):
    def __init__(self, session_factory) -> None:
        self._session_factory = session_factory

    @contextmanager
    def transaction(self) -> Iterator[UnitOfWork]:
        db = self._session_factory()
        try:
            yield _SqlUnitOfWork(db)
            db.commit()
        except StaleDataError as exc:
            db.rollback()
            raise ConcurrentModification("a record changed before commit") from exc
        except IntegrityError as exc:
            db.rollback()
            raise ConcurrentModification("conflicting write rejected by the store") from exc
        except DBAPIError as exc:
            db.rollback()
            if is_retryable_store_error(exc):
                logger.warning(f"[repo] transaction aborted by the store, will retry: {exc.orig}")
                raise ConcurrentModification("the store aborted a conflicting transaction") from exc
            logger.error(f"[repo] store unavailable: {exc}")
            raise StoreUnavailable("the store could not complete the transaction") from exc
        except BaseException:
            db.rollback()
            raise
        finally:
            db.close()

    @contextmanager
    def _read(self):
        try:
            with self._session_factory() as db:
                yield db
        except DBAPIError as exc:
            logger.error(f"[repo] store unavailable on read: {exc}")
            raise StoreUnavailable("the store could not complete the read") from exc

    def get_user(self, user_id: str) -> User:
        with self._read() as db:
            row = db.get(UserProfileRow, user_id)
            if row is None:
                raise NotFound(f"user {user_id} not found", user_id=user_id)
            return _user_from_row(row)

    def get_match(self, match_id: str) -> Match:
        with self._read() as db:
            row = db.get(MatchRow, match_id)
            if row is None:
                raise NotFound(f"match {match_id} not found", match_id=match_id)
            return _match_from_row(row)

    def find_active_match(self, user_id: str) -> Match | None:
        with self._read() as db:
            row = db.execute(_open_match_query(user_id)).scalars().first()
            return _match_from_row(row) if row is not None else None

    def list_users(self, states: set[str] | None = None) -> list[User]:
        stmt = select(UserProfileRow).order_by(UserProfileRow.id)
        if states:
            stmt = stmt.where(UserProfileRow.state.in_(sorted(states)))
        with self._read() as db:
            return [_user_from_row(row) for row in db.execute(stmt).scalars().all()]

    def list_matches_for_user(self, user_id: str, statuses: set[str] | None = None) -> list[Match]:
        stmt = select(MatchRow).where(or_(MatchRow.user_a == user_id, MatchRow.user_b == user_id))
        if statuses:
            stmt = stmt.where(MatchRow.status.in_(sorted(statuses)))
        with self._read() as db:
            return [_match_from_row(row) for row in db.execute(stmt.order_by(MatchRow.created_at)).scalars().all()]

    def save_profile(
        self,
        user_id: str,
        traits: TraitBundle,
        gender_identity: str | None,
        interested_in: set[str],
        now: datetime,
    ) -> User:
        with self.transaction() as uow:
            row = uow.db.get(UserProfileRow, user_id, with_for_update=True)
            if row is None:
                row = UserProfileRow(id=user_id, state=AVAILABLE, available_since=_store_dt(now))
                uow.db.add(row)
            row.traits = traits.to_dict()
            row.gender_identity = normalize_gender(gender_identity)
            row.interested_in = sorted(normalize_genders(interested_in))
        return self.get_user(user_id)
