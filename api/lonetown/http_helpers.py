from fastapi import HTTPException

from .entities import Match, User
from .errors import MatchCoreError
from .schemas import ConversationMessageOut, EngagementOut, MatchOut, UserStateOut
from .services.engagement import EngagementStatus
from .services.messages import ChatMessage


def to_http_error(exc: MatchCoreError) -> HTTPException:
    return HTTPException(status_code=exc.status_code, detail=exc.detail())


def match_out(match: Match, viewer_id: str | None = None) -> MatchOut:
    partner = match.partner_of(viewer_id) if viewer_id and match.has_user(viewer_id) else None
    return MatchOut(
        id=match.id,
        users=list(match.users),
        partner_id=partner,
        status=match.status,
        compatibility_score=match.compatibility_score,
        compatibility_factors=dict(match.compatibility_factors),
        pinned_by=sorted(match.pinned_by),
        message_count=match.message_count,
        last_message_at=match.last_message_at,
        video_call_unlocked=match.video_call_unlocked,
        end_reason=match.end_reason,
        unpinned_by=match.unpinned_by,
        created_at=match.created_at,
        pinned_at=match.pinned_at,
        ended_at=match.ended_at,
    )


def user_state_out(user: User) -> UserStateOut:
    return UserStateOut(
        id=user.id,
        state=user.state,
        current_match_id=user.current_match_id,
        available_since=user.available_since,
        frozen_until=user.frozen_until,
        last_matched=user.last_matched,
        last_pinned=user.last_pinned,
        gender_identity=user.gender_identity,
        interested_in=sorted(user.interested_in),
    )


def engagement_out(status: EngagementStatus) -> EngagementOut:
    return EngagementOut(
        message_count=status.message_count,
        video_call_unlocked=status.video_call_unlocked,
        windowed_count=status.windowed_count,
        required=status.required,
        remaining=status.remaining,
    )


def conversation_message_out(message: ChatMessage) -> ConversationMessageOut:
    return ConversationMessageOut(
        id=message.id,
        sender_id=message.sender_id,
        recipient_id=message.recipient_id,
        content=message.content,
        sent_at=message.sent_at,
        read=message.read,
    )
