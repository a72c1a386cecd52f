from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field


class FeedbackIn(BaseModel):
    content: str = Field(min_length=1, max_length=2000)
    categories: list[str] = Field(default_factory=list)


class FeedbackOut(BaseModel):
    from_user: str
    content: str
    categories: list[str]


class UnpinRequest(BaseModel):
    feedback: FeedbackIn | None = None


class MessageIn(BaseModel):
    content: str = Field(min_length=1, max_length=4000)
    client_message_id: str | None = Field(default=None, max_length=128)


class EndMatchRequest(BaseModel):
    reason: Literal["timeout", "admin", "mutual"]


class ProfileIn(BaseModel):
    traits: dict[str, Any]
    gender_identity: str | None = None
    interested_in: list[str] = Field(default_factory=list)


class MatchOut(BaseModel):
    id: str
    users: list[str]
    partner_id: str | None = None
    status: str
    compatibility_score: int
    compatibility_factors: dict[str, int]
    pinned_by: list[str]
    message_count: int
    last_message_at: datetime | None = None
    video_call_unlocked: bool
    end_reason: str | None = None
    unpinned_by: str | None = None
    created_at: datetime
    pinned_at: datetime | None = None
    ended_at: datetime | None = None


class DailyMatchResponse(BaseModel):
    result: str
    message: str
    match: MatchOut | None = None
    frozen_until: datetime | None = None
    hours_remaining: int | None = None


class PinResponse(BaseModel):
    match: MatchOut
    mutual: bool
    message: str


class UnpinResponse(BaseModel):
    match: MatchOut
    frozen_until: datetime
    message: str


class EngagementOut(BaseModel):
    message_count: int
    video_call_unlocked: bool
    windowed_count: int
    required: int
    remaining: int


class MessageOut(BaseModel):
    id: str
    match_id: str
    sender_id: str
    recipient_id: str
    content: str
    sent_at: datetime
    engagement: EngagementOut


class ConversationMessageOut(BaseModel):
    id: str
    sender_id: str
    recipient_id: str
    content: str
    sent_at: datetime
    read: bool


class ConversationOut(BaseModel):
    match_id: str
    messages: list[ConversationMessageOut]


class CountOut(BaseModel):
    count: int


class UserStateOut(BaseModel):
    id: str
    state: str
    current_match_id: str | None = None
    available_since: datetime | None = None
    frozen_until: datetime | None = None
    last_matched: datetime | None = None
    last_pinned: datetime | None = None
    gender_identity: str | None = None
    interested_in: list[str] = Field(default_factory=list)
