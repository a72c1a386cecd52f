from sqlalchemy import JSON, Boolean, Column, DateTime, Index, Integer, String, Text, UniqueConstraint, func

from .database import Base


class UserProfileRow(Base):
    __tablename__ = "user_match_profile"

    id = Column(String(64), primary_key=True)
    traits = Column(JSON, nullable=False)
    gender_identity = Column(String(32), nullable=True)
    interested_in = Column(JSON, nullable=False, default=list)
    state = Column(String(16), nullable=False, default="available")
    available_since = Column(DateTime(timezone=True), nullable=True)
    frozen_until = Column(DateTime(timezone=True), nullable=True)
    last_matched = Column(DateTime(timezone=True), nullable=True)
    last_pinned = Column(DateTime(timezone=True), nullable=True)
    current_match_id = Column(String(64), nullable=True)
    version = Column(Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version}
    __table_args__ = (Index("idx_user_match_profile_state", "state"),)


class MatchRow(Base):
    __tablename__ = "match"

    id = Column(String(64), primary_key=True)
    user_a = Column(String(64), nullable=False)
    user_b = Column(String(64), nullable=False)
    status = Column(String(16), nullable=False, default="active")
    compatibility_score = Column(Integer, nullable=False)
    compatibility_factors = Column(JSON, nullable=False)
    pinned_by = Column(JSON, nullable=False, default=list)
    message_count = Column(Integer, nullable=False, default=0)
    last_message_at = Column(DateTime(timezone=True), nullable=True)
    video_call_unlocked = Column(Boolean, nullable=False, default=False)
    end_reason = Column(String(16), nullable=True)
    unpinned_by = Column(String(64), nullable=True)
    feedback = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
    pinned_at = Column(DateTime(timezone=True), nullable=True)
    ended_at = Column(DateTime(timezone=True), nullable=True)
    version = Column(Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version}
    __table_args__ = (
        Index("idx_match_user_a_status", "user_a", "status"),
        Index("idx_match_user_b_status", "user_b", "status"),
    )


class ChatMessageRow(Base):
    __tablename__ = "chat_message"

    id = Column(String(64), primary_key=True)
    match_id = Column(String(64), nullable=False)
    sender_id = Column(String(64), nullable=False)
    recipient_id = Column(String(64), nullable=False)
    content = Column(Text, nullable=False)
    client_message_id = Column(String(128), nullable=True)
    sent_at = Column(DateTime(timezone=True), nullable=False)
    read = Column(Boolean, nullable=False, default=False)
    counted = Column(Boolean, nullable=False, default=False)

    __table_args__ = (
        UniqueConstraint("sender_id", "client_message_id", name="uq_chat_message_client_id"),
        Index("idx_chat_message_pair_sent_at", "sender_id", "recipient_id", "sent_at"),
        Index("idx_chat_message_unread", "recipient_id", "read"),
    )


class MatchEventRow(Base):
    __tablename__ = "match_event"

    id = Column(String(64), primary_key=True)
    event_type = Column(String(32), nullable=False)
    match_id = Column(String(64), nullable=False, index=True)
    user_ids = Column(String(256), nullable=False)
    payload = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
