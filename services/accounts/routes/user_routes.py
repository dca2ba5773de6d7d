from __future__ import annotations

from typing import Any

from fastapi import APIRouter

from .account_routes import register_account_routes
from .recovery_routes import register_recovery_routes


def build_router(container: Any) -> APIRouter:
    router = APIRouter(prefix="/api/users")
    register_recovery_routes(router, container)
    register_account_routes(router, container)
    return router
