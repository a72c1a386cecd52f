from __future__ import annotations

import threading
import uuid
from dataclasses import dataclass, replace
from datetime import datetime, timedelta

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.exc import DBAPIError, IntegrityError

from ..clock import as_utc
from ..errors import ConcurrentModification, StoreUnavailable
from ..models import ChatMessageRow


@dataclass(frozen=True)
class ChatMessage:
    id: str
    match_id: str
    sender_id: str
    recipient_id: str
    content: str
    sent_at: datetime
    client_message_id: str | None = None
    read: bool = False
    counted: bool = False


class MessageLog:
    def record(
        self,
        match_id: str,
        sender_id: str,
        recipient_id: str,
        content: str,
        sent_at: datetime,
        client_message_id: str | None = None,
    ) -> tuple[ChatMessage, bool]:
        """Store a message; the flag is False when ``client_message_id`` was already seen."""
        raise NotImplementedError

    def count_messages(self, user_a: str, user_b: str, window: timedelta, now: datetime) -> int:
        raise NotImplementedError

    def claim_count(self, message_id: str) -> bool:
        """Flip the counted flag; True only for the caller that flipped it."""
        raise NotImplementedError

    def release_count(self, message_id: str) -> None:
        raise NotImplementedError

    def list_for_pair(self, user_a: str, user_b: str) -> list[ChatMessage]:
        """Messages in either direction between two users, oldest first."""
        raise NotImplementedError

    def mark_read(self, recipient_id: str, sender_id: str) -> int:
        raise NotImplementedError

    def unread_count(self, recipient_id: str) -> int:
        raise NotImplementedError


class InMemoryMessageLog(MessageLog):
    def __init__(self) -> None:
        self._messages: dict[str, ChatMessage] = {}
        self._by_client_id: dict[tuple[str, str], str] = {}
        self._lock = threading.Lock()

    def record(self, match_id, sender_id, recipient_id, content, sent_at, client_message_id=None):
        with self._lock:
            if client_message_id and (sender_id, client_message_id) in self._by_client_id:
                return self._messages[self._by_client_id[(sender_id, client_message_id)]], False
            message = ChatMessage(
                id=str(uuid.uuid4()),
                match_id=match_id,
                sender_id=sender_id,
                recipient_id=recipient_id,
                content=content,
                sent_at=sent_at,
                client_message_id=client_message_id,
            )
            self._messages[message.id] = message
            if client_message_id:
                self._by_client_id[(sender_id, client_message_id)] = message.id
            return message, True

    def count_messages(self, user_a: str, user_b: str, window: timedelta, now: datetime) -> int:
        since = now - window
        pair = {user_a, user_b}
        with self._lock:
            return sum(
                1
                for m in self._messages.values()
                if {m.sender_id, m.recipient_id} == pair and since <= m.sent_at <= now
            )

    def claim_count(self, message_id: str) -> bool:
        with self._lock:
            message = self._messages[message_id]
            if message.counted:
                return False
            self._messages[message_id] = replace(message, counted=True)
            return True

    def release_count(self, message_id: str) -> None:
        with self._lock:
            self._messages[message_id] = replace(self._messages[message_id], counted=False)

    def list_for_pair(self, user_a: str, user_b: str) -> list[ChatMessage]:
        pair = {user_a, user_b}
        with self._lock:
            found = [m for m in self._messages.values() if {m.sender_id, m.recipient_id} == pair]
        return sorted(found, key=lambda m: m.sent_at)

    def mark_read(self, recipient_id: str, sender_id: str) -> int:
        marked = 0
        with self._lock:
            for message_id, m in self._messages.items():
                if m.recipient_id == recipient_id and m.sender_id == sender_id and not m.read:
                    self._messages[message_id] = replace(m, read=True)
                    marked += 1
        return marked

    def unread_count(self, recipient_id: str) -> int:
        with self._lock:
            return sum(1 for m in self._messages.values() if m.recipient_id == recipient_id and not m.read)


def _from_row(row: ChatMessageRow) -> ChatMessage:
    return ChatMessage(
        id=row.id,
        match_id=row.match_id,
        sender_id=row.sender_id,
        recipient_id=row.recipient_id,
        content=row.content,
        sent_at=as_utc(row.sent_at),
        client_message_id=row.client_message_id,
        read=bool(row.read),
        counted=bool(row.counted),
    )


def _between(user_a: str, user_b: str):
    return or_(
        and_(ChatMessageRow.sender_id == user_a, ChatMessageRow.recipient_id == user_b),
        and_(ChatMessageRow.sender_id == user_b, ChatMessageRow.recipient_id == user_a),
    )


class SqlMessageLog(MessageLog):
    def __init__(self, session_factory) -> None:
        self._session_factory = session_factory

    def _find_by_client_id(self, db, sender_id: str, client_message_id: str) -> ChatMessageRow | None:
        return db.execute(
            select(ChatMessageRow).where(
                ChatMessageRow.sender_id == sender_id,
                ChatMessageRow.client_message_id == client_message_id,
            )
        ).scalars().first()

    def record(self, match_id, sender_id, recipient_id, content, sent_at, client_message_id=None):
        try:
            with self._session_factory() as db:
                if client_message_id:
                    existing = self._find_by_client_id(db, sender_id, client_message_id)
                    if existing is not None:
                        return _from_row(existing), False
                row = ChatMessageRow(
                    id=str(uuid.uuid4()),
                    match_id=match_id,
                    sender_id=sender_id,
                    recipient_id=recipient_id,
                    content=content,
                    client_message_id=client_message_id,
                    sent_at=as_utc(sent_at),
                    read=False,
                    counted=False,
                )
                db.add(row)
                try:
                    db.commit()
                except IntegrityError:
                    db.rollback()
                    existing = self._find_by_client_id(db, sender_id, client_message_id or "")
                    if existing is None:
                        raise
                    return _from_row(existing), False
                return _from_row(row), True
        except IntegrityError as exc:
            raise ConcurrentModification("message write rejected by the store") from exc
        except DBAPIError as exc:
            raise StoreUnavailable("message store unavailable") from exc

    def _write(self, stmt) -> int:
        try:
            with self._session_factory() as db:
                result = db.execute(stmt)
                db.commit()
                return int(result.rowcount)
        except DBAPIError as exc:
            raise StoreUnavailable("message store unavailable") from exc

    def _scalar(self, stmt):
        try:
            with self._session_factory() as db:
                return db.execute(stmt).scalar_one()
        except DBAPIError as exc:
            raise StoreUnavailable("message store unavailable") from exc

    def count_messages(self, user_a: str, user_b: str, window: timedelta, now: datetime) -> int:
        since = as_utc(now - window)
        stmt = (
            select(func.count())
            .select_from(ChatMessageRow)
            .where(_between(user_a, user_b))
            .where(ChatMessageRow.sent_at >= since)
            .where(ChatMessageRow.sent_at <= as_utc(now))
        )
        return int(self._scalar(stmt))

    def claim_count(self, message_id: str) -> bool:
        stmt = (
            update(ChatMessageRow)
            .where(ChatMessageRow.id == message_id, ChatMessageRow.counted.is_(False))
            .values(counted=True)
        )
        return self._write(stmt) == 1

    def release_count(self, message_id: str) -> None:
        self._write(update(ChatMessageRow).where(ChatMessageRow.id == message_id).values(counted=False))

    def list_for_pair(self, user_a: str, user_b: str) -> list[ChatMessage]:
        stmt = select(ChatMessageRow).where(_between(user_a, user_b)).order_by(ChatMessageRow.sent_at, ChatMessageRow.id)
        try:
            with self._session_factory() as db:
                return [_from_row(row) for row in db.execute(stmt).scalars()]
        except DBAPIError as exc:
            raise StoreUnavailable("message store unavailable") from exc

    def mark_read(self, recipient_id: str, sender_id: str) -> int:
        stmt = (
            update(ChatMessageRow)
            .where(
                ChatMessageRow.recipient_id == recipient_id,
                ChatMessageRow.sender_id == sender_id,
                ChatMessageRow.read.is_(False),
            )
            .values(read=True)
        )
        return self._write(stmt)

    def unread_count(self, recipient_id: str) -> int:
        stmt = (
            select(func.count())
            .select_from(ChatMessageRow)
            .where(ChatMessageRow.recipient_id == recipient_id, ChatMessageRow.read.is_(False))
        )
        return int(self._scalar(stmt))
