from fastapi import APIRouter, Depends, HTTPException

from ..deps import current_user_id, get_services, require_self
from ..errors import MatchCoreError
from ..http_helpers import to_http_error, user_state_out
from ..schemas import ProfileIn, UserStateOut
from ..traits import parse_trait_bundle

router = APIRouter()
scaffold_router = APIRouter()


@scaffold_router.get("/health")
def users_scaffold_health() -> dict[str, str]:
    return {"status": "ok", "module": "users"}


@router.get("/users/{user_id}/state")
def get_user_state(user_id: str, caller_id: str = Depends(current_user_id), services=Depends(get_services)) -> UserStateOut:
    require_self(user_id, caller_id)
    try:
        user = services.lifecycle.get_user_state(user_id)
    except MatchCoreError as exc:
        raise to_http_error(exc) from exc
    return user_state_out(user)


@router.put("/users/{user_id}/profile")
def put_user_profile(
    user_id: str,
    payload: ProfileIn,
    caller_id: str = Depends(current_user_id),
    services=Depends(get_services),
) -> UserStateOut:
    require_self(user_id, caller_id)
    if not (payload.gender_identity or "").strip():
        raise HTTPException(status_code=400, detail="gender_identity is required")
    try:
        traits = parse_trait_bundle(payload.traits)
        user = services.repo.save_profile(
            user_id,
            traits,
            payload.gender_identity,
            set(payload.interested_in),
            services.clock(),
        )
    except MatchCoreError as exc:
        raise to_http_error(exc) from exc
    return user_state_out(user)
