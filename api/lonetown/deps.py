from fastapi import Header, HTTPException, Request


def get_services(request: Request):
    return request.app.state.services


def current_user_id(x_user_id: str | None = Header(default=None)) -> str:
    if not x_user_id:
        raise HTTPException(status_code=401, detail="X-User-Id header is required")
    value = x_user_id.strip()
    if not value or len(value) > 64:
        raise HTTPException(status_code=400, detail="X-User-Id must be 1-64 characters")
    return value


def validate_admin_token(token: str | None, admin_token: str | None) -> None:
    if not admin_token or not token or token != admin_token:
        raise HTTPException(status_code=401, detail="Invalid admin token")


def require_self(path_user_id: str, caller_id: str) -> None:
    if path_user_id != caller_id:
        raise HTTPException(status_code=403, detail="Cannot act on behalf of another user")
