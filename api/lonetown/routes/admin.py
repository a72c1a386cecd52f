import logging

from fastapi import APIRouter, Depends, Header

from .. import config
from ..deps import get_services, validate_admin_token
from ..errors import MatchCoreError
from ..http_helpers import match_out, to_http_error
from ..schemas import EndMatchRequest, MatchOut

logger = logging.getLogger(__name__)

router = APIRouter()
scaffold_router = APIRouter()


def require_admin(x_admin_token: str | None = Header(default=None, alias="X-Admin-Token")) -> None:
    validate_admin_token(x_admin_token, config.ADMIN_TOKEN)


@scaffold_router.get("/health")
def admin_scaffold_health() -> dict[str, str]:
    return {"status": "ok", "module": "admin"}


@router.post("/admin/matches/{match_id}/end", dependencies=[Depends(require_admin)])
def admin_end_match(match_id: str, payload: EndMatchRequest, services=Depends(get_services)) -> MatchOut:
    try:
        match = services.lifecycle.end_match(match_id, payload.reason)
    except MatchCoreError as exc:
        raise to_http_error(exc) from exc
    logger.info(f"[admin] ended match {match_id} reason={payload.reason}")
    return match_out(match)
