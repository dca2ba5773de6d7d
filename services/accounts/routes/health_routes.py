from __future__ import annotations

import logging
import shutil
from pathlib import Path
from typing import Any

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from ..errors import AccountError

_log = logging.getLogger(__name__)
_DISK_MIN_BYTES = 100 * 1024 * 1024  # 100 MB


def _check_database(container: Any) -> dict:
    try:
        container.store.ping()
        return {"status": "ok"}
    except AccountError:
        _log.warning("health: account database unreachable", exc_info=True)
        return {"status": "error"}


def _check_disk(container: Any) -> dict:
    try:
        # statvfs needs an existing path
        check_path = Path(container.data_dir)
        while not check_path.exists() and check_path.parent != check_path:
            check_path = check_path.parent
        usage = shutil.disk_usage(str(check_path))
    except OSError as exc:
        _log.warning("health: disk check failed", exc_info=True)
        return {"status": "error", "detail": str(exc)}
    return {
        "status": "ok" if usage.free >= _DISK_MIN_BYTES else "degraded",
        "free_mb": int(usage.free / (1024 * 1024)),
    }


def build_router(container: Any) -> APIRouter:
    router = APIRouter()

    @router.get("/health")
    def health():
        checks = {"database": _check_database(container), "disk": _check_disk(container)}
        degraded = any(c.get("status") != "ok" for c in checks.values())
        payload = {"status": "degraded" if degraded else "ok", "checks": checks}
        return JSONResponse(content=payload, status_code=503 if degraded else 200)

    return router
