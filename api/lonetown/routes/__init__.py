from fastapi import APIRouter, FastAPI

from .admin import router as admin_router, scaffold_router as admin_scaffold_router
from .match import router as match_router, scaffold_router as match_scaffold_router
from .users import router as users_router, scaffold_router as users_scaffold_router


def include_modular_routers(app: FastAPI) -> None:
    app.include_router(users_router, tags=["users"])
    app.include_router(match_router, tags=["matches"])
    app.include_router(admin_router, tags=["admin"])

    app.include_router(users_scaffold_router, prefix="/_scaffold/users", tags=["scaffold-users"])
    app.include_router(match_scaffold_router, prefix="/_scaffold/match", tags=["scaffold-match"])
    app.include_router(admin_scaffold_router, prefix="/_scaffold/admin", tags=["scaffold-admin"])


__all__ = ["include_modular_routers", "APIRouter"]
