from datetime import datetime
from typing import Any


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


class MatchCoreError(Exception):
    """Base for refusals raised by the match core."""

    code = "match_core_error"
    status_code = 400

    def __init__(self, message: str, **context: Any):
        self.message = message
        self.context = context
        super().__init__(message)

    def detail(self) -> dict[str, Any]:
        out: dict[str, Any] = {"code": self.code, "message": self.message}
        for key, value in self.context.items():
            out[key] = _iso(value) if isinstance(value, datetime) else value
        return out


class NotFound(MatchCoreError):
    code = "not_found"
    status_code = 404


class NotEligible(MatchCoreError):
    code = "not_eligible"
    status_code = 409

    def __init__(
        self,
        message: str,
        *,
        user_id: str,
        state: str | None = None,
        reason: str,
        available_at: datetime | None = None,
    ):
        super().__init__(message, user_id=user_id, state=state, reason=reason, available_at=available_at)
        self.user_id = user_id
        self.state = state
        self.reason = reason
        self.available_at = available_at


class NotParticipant(NotEligible):
    status_code = 403


class InvalidTransition(MatchCoreError):
    code = "invalid_transition"
    status_code = 409

    def __init__(self, message: str, *, match_id: str, status: str, action: str, reason: str | None = None):
        super().__init__(message, match_id=match_id, status=status, action=action, reason=reason or f"{action}_on_{status}")
        self.match_id = match_id
        self.status = status
        self.action = action


class ConcurrentModification(MatchCoreError):
    code = "concurrent_modification"
    status_code = 409
    retryable = True


class StoreUnavailable(MatchCoreError):
    code = "store_unavailable"
    status_code = 503


class InvalidTraits(MatchCoreError):
    code = "invalid_traits"
    status_code = 422
