from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import CORS_ORIGINS
from .container import build_app_container
from .errors import AccountError, InternalError, ValidationError
from .rate_limit import rate_limit_middleware
from .request_context import request_id_middleware
from .routes import health_routes, user_routes
from .runtime.lifecycle import app_lifespan

_log = logging.getLogger(__name__)

_INVALID_FIELD_MESSAGE = "字段格式不正确"
_INVALID_ID_MESSAGE = "无效的用户ID"


def _field_errors(errors: List[Dict[str, Any]]) -> Dict[str, str]:
    fields: Dict[str, str] = {}
    for item in errors:
        loc = [str(part) for part in item.get("loc") or ()]
        if loc and loc[0] == "path":
            fields[loc[-1]] = _INVALID_ID_MESSAGE
            continue
        name = loc[-1] if len(loc) > 1 and item.get("type") != "json_invalid" else "body"
        fields.setdefault(name, _INVALID_FIELD_MESSAGE)
    return fields


async def _account_error_handler(_request: Request, exc: AccountError) -> JSONResponse:
    if exc.status_code >= 500:
        _log.error("request failed: %s", exc.message, exc_info=exc)
    return JSONResponse(status_code=exc.status_code, content=exc.to_payload())


async def _request_validation_handler(_request: Request, exc: RequestValidationError) -> JSONResponse:
    error = ValidationError(_field_errors(list(exc.errors())))
    return JSONResponse(status_code=error.status_code, content=error.to_payload())


async def _unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    _log.exception("unhandled error on %s %s", request.method, request.url.path)
    error = InternalError()
    return JSONResponse(status_code=error.status_code, content=error.to_payload())


def create_app(*, data_dir: Optional[Path] = None) -> FastAPI:
    app = FastAPI(title="Account Credential Service", version="0.1.0", lifespan=app_lifespan)
    app.state.container = build_app_container(data_dir=data_dir)

    app.add_exception_handler(AccountError, _account_error_handler)
    app.add_exception_handler(RequestValidationError, _request_validation_handler)
    app.add_exception_handler(Exception, _unhandled_error_handler)

    app.include_router(health_routes.build_router(app.state.container))
    app.include_router(user_routes.build_router(app.state.container))

    # last added runs first: request id wraps rate limiting
    app.middleware("http")(rate_limit_middleware)
    app.middleware("http")(request_id_middleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    return app
