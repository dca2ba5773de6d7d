"""Request ID propagation via ContextVar + logging filter.

The HTTP middleware binds a request id for each call (reusing an inbound
``x-request-id`` when it looks sane), the logging filter copies it onto every
record, and the same id is echoed back in the ``x-request-id`` response header.
"""
from __future__ import annotations

import logging
import re
import uuid
from contextvars import ContextVar
from typing import Awaitable, Callable

from fastapi import Request
from fastapi.responses import Response

REQUEST_ID: ContextVar[str] = ContextVar("request_id", default="")
REQUEST_ID_HEADER = "x-request-id"

_INBOUND_ID_PATTERN = re.compile(r"^[A-Za-z0-9._-]{1,64}$")


def new_request_id() -> str:
    return uuid.uuid4().hex[:16]


class RequestIdFilter(logging.Filter):
    """Inject ``request_id`` into every log record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = REQUEST_ID.get("") or "-"  # type: ignore[attr-defined]
        return True


async def request_id_middleware(request: Request, call_next: Callable[[Request], Awaitable[Response]]) -> Response:
    inbound = str(request.headers.get(REQUEST_ID_HEADER) or "").strip()
    rid = inbound if _INBOUND_ID_PATTERN.match(inbound) else new_request_id()
    token = REQUEST_ID.set(rid)
    try:
        response = await call_next(request)
    finally:
        REQUEST_ID.reset(token)
    response.headers[REQUEST_ID_HEADER] = rid
    return response
