import logging

from fastapi import APIRouter, Depends

from ..deps import current_user_id, get_services
from ..errors import MatchCoreError
from ..http_helpers import conversation_message_out, engagement_out, match_out, to_http_error
from ..schemas import (
    ConversationOut,
    CountOut,
    DailyMatchResponse,
    EngagementOut,
    FeedbackIn,
    FeedbackOut,
    MatchOut,
    MessageIn,
    MessageOut,
    PinResponse,
    UnpinRequest,
    UnpinResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter()
scaffold_router = APIRouter()


@scaffold_router.get("/health")
def match_scaffold_health() -> dict[str, str]:
    return {"status": "ok", "module": "match"}


@router.post("/matches/daily")
def request_daily_match(user_id: str = Depends(current_user_id), services=Depends(get_services)) -> DailyMatchResponse:
    try:
        result = services.matchmaker.assign_daily_match(user_id)
    except MatchCoreError as exc:
        raise to_http_error(exc) from exc
    return DailyMatchResponse(
        result=result.kind,
        message=result.message,
        match=match_out(result.match, user_id) if result.match else None,
        frozen_until=result.frozen_until,
        hours_remaining=result.hours_remaining,
    )


@router.get("/matches/current")
def get_current_match(user_id: str = Depends(current_user_id), services=Depends(get_services)) -> dict:
    try:
        match = services.lifecycle.current_match(user_id)
    except MatchCoreError as exc:
        raise to_http_error(exc) from exc
    if match is None:
        return {"match": None, "message": "No active match found"}
    return {"match": match_out(match, user_id)}


@router.get("/matches/history")
def get_match_history(user_id: str = Depends(current_user_id), services=Depends(get_services)) -> dict:
    try:
        matches = services.lifecycle.match_history(user_id)
    except MatchCoreError as exc:
        raise to_http_error(exc) from exc
    return {"history": [match_out(m, user_id) for m in matches]}


@router.post("/matches/{match_id}/pin")
def pin_match(match_id: str, user_id: str = Depends(current_user_id), services=Depends(get_services)) -> PinResponse:
    try:
        result = services.lifecycle.pin(match_id, user_id)
    except MatchCoreError as exc:
        raise to_http_error(exc) from exc
    return PinResponse(match=match_out(result.match, user_id), mutual=result.mutual, message=result.message)


@router.post("/matches/{match_id}/unpin")
def unpin_match(
    match_id: str,
    payload: UnpinRequest | None = None,
    user_id: str = Depends(current_user_id),
    services=Depends(get_services),
) -> UnpinResponse:
    feedback = payload.feedback.model_dump() if payload and payload.feedback else None
    try:
        result = services.lifecycle.unpin(match_id, user_id, feedback=feedback)
    except MatchCoreError as exc:
        raise to_http_error(exc) from exc
    return UnpinResponse(match=match_out(result.match, user_id), frozen_until=result.frozen_until, message=result.message)


@router.post("/matches/{match_id}/feedback")
def submit_feedback(
    match_id: str,
    payload: FeedbackIn,
    user_id: str = Depends(current_user_id),
    services=Depends(get_services),
) -> MatchOut:
    try:
        match = services.lifecycle.submit_feedback(match_id, user_id, payload.content, payload.categories)
    except MatchCoreError as exc:
        raise to_http_error(exc) from exc
    return match_out(match, user_id)


@router.get("/matches/{match_id}/feedback")
def get_feedback(match_id: str, user_id: str = Depends(current_user_id), services=Depends(get_services)) -> FeedbackOut:
    try:
        feedback = services.lifecycle.get_feedback(match_id, user_id)
    except MatchCoreError as exc:
        raise to_http_error(exc) from exc
    return FeedbackOut(**feedback.to_dict())


@router.post("/matches/{match_id}/messages", status_code=201)
def send_message(
    match_id: str,
    payload: MessageIn,
    user_id: str = Depends(current_user_id),
    services=Depends(get_services),
) -> MessageOut:
    try:
        message, status = services.engagement.record_message(
            match_id, user_id, payload.content, payload.client_message_id
        )
    except MatchCoreError as exc:
        raise to_http_error(exc) from exc
    return MessageOut(
        id=message.id,
        match_id=message.match_id,
        sender_id=message.sender_id,
        recipient_id=message.recipient_id,
        content=message.content,
        sent_at=message.sent_at,
        engagement=engagement_out(status),
    )


@router.get("/matches/{match_id}/video-status")
def get_video_status(match_id: str, user_id: str = Depends(current_user_id), services=Depends(get_services)) -> EngagementOut:
    try:
        status = services.engagement.video_status(match_id, user_id)
    except MatchCoreError as exc:
        raise to_http_error(exc) from exc
    return engagement_out(status)


@router.get("/matches/{match_id}/messages")
def list_messages(match_id: str, user_id: str = Depends(current_user_id), services=Depends(get_services)) -> ConversationOut:
    try:
        messages = services.engagement.list_messages(match_id, user_id)
    except MatchCoreError as exc:
        raise to_http_error(exc) from exc
    return ConversationOut(match_id=match_id, messages=[conversation_message_out(m) for m in messages])


@router.get("/messages/unread")
def get_unread_count(user_id: str = Depends(current_user_id), services=Depends(get_services)) -> CountOut:
    try:
        count = services.engagement.unread_count(user_id)
    except MatchCoreError as exc:
        raise to_http_error(exc) from exc
    return CountOut(count=count)


@router.put("/messages/read/{sender_id}")
def mark_messages_read(sender_id: str, user_id: str = Depends(current_user_id), services=Depends(get_services)) -> CountOut:
    try:
        count = services.engagement.mark_read(user_id, sender_id)
    except MatchCoreError as exc:
        raise to_http_error(exc) from exc
    logger.info(f"[match] {user_id} marked {count} messages from {sender_id} read")
    return CountOut(count=count)
