from __future__ import annotations

import base64
import hashlib
import hmac
import json
import logging
import os
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Mapping, Optional

from . import settings as _settings
from .errors import AuthenticationError, InternalError

_log = logging.getLogger(__name__)

_ACCOUNT_ROLE = "account"


@dataclass(frozen=True)
class AuthPrincipal:
    user_id: int
    username: str
    token_version: int = 1
    exp: Optional[int] = None
    claims: Dict[str, Any] = field(default_factory=dict)


class TokenError(AuthenticationError):
    default_message = "未授权，请先登录"

    def __init__(self, reason: str):
        super().__init__()
        self.reason = str(reason or "invalid_token")

    def to_payload(self) -> Dict[str, Any]:
        payload = super().to_payload()
        payload["reason"] = self.reason
        return payload


def _b64url_encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("ascii").rstrip("=")


def _b64url_decode(text: str) -> bytes:
    raw = str(text or "")
    if not raw:
        return b""
    padding = "=" * (-len(raw) % 4)
    return base64.urlsafe_b64decode(raw + padding)


def _secret() -> str:
    secret = _settings.auth_token_secret()
    if not secret:
        _log.error("AUTH_TOKEN_SECRET is not configured")
        raise InternalError()
    return secret


def validate_auth_secret_policy(*, getenv: Callable[[str, Optional[str]], Optional[str]] | None = None) -> None:
    read = getenv or os.getenv
    if str(read("AUTH_TOKEN_SECRET", None) or "").strip():
        return
    if _settings.is_production(read):
        raise RuntimeError("AUTH_TOKEN_SECRET is required in production")


def sign_claims(claims: Dict[str, Any], *, secret: str) -> str:
    payload_json = json.dumps(claims or {}, ensure_ascii=False, separators=(",", ":"))
    payload_segment = _b64url_encode(payload_json.encode("utf-8"))
    digest = hmac.new(secret.encode("utf-8"), payload_segment.encode("ascii"), hashlib.sha256).digest()
    return f"{payload_segment}.{_b64url_encode(digest)}"


def decode_access_token(token: str, *, secret: str) -> AuthPrincipal:
    text = str(token or "").strip()
    if not text:
        raise TokenError("missing_bearer_token")

    parts = text.split(".")
    if len(parts) != 2:
        raise TokenError("invalid_token_format")

    payload_segment, sig_segment = parts
    try:
        expected = hmac.new(secret.encode("utf-8"), payload_segment.encode("ascii"), hashlib.sha256).digest()
        got = _b64url_decode(sig_segment)
    except ValueError:
        raise TokenError("invalid_token_signature")
    if not hmac.compare_digest(got, expected):
        raise TokenError("invalid_token_signature")

    try:
        payload = json.loads(_b64url_decode(payload_segment).decode("utf-8"))
    except ValueError:
        raise TokenError("invalid_token_payload")
    if not isinstance(payload, dict):
        raise TokenError("invalid_token_payload")

    if payload.get("role") != _ACCOUNT_ROLE:
        raise TokenError("invalid_token_claims")
    try:
        user_id = int(payload.get("sub"))
        token_version = int(payload.get("tv", 1))
    except (TypeError, ValueError):
        raise TokenError("invalid_token_claims")
    username = str(payload.get("username") or "").strip()
    if not username:
        raise TokenError("invalid_token_claims")

    exp_raw = payload.get("exp")
    exp: Optional[int] = None
    if exp_raw is not None:
        try:
            exp = int(exp_raw)
        except (TypeError, ValueError):
            raise TokenError("invalid_token_exp")
        if exp <= int(time.time()):
            raise TokenError("token_expired")

    return AuthPrincipal(
        user_id=user_id,
        username=username,
        token_version=token_version,
        exp=exp,
        claims=dict(payload),
    )


def mint_access_token(*, user_id: int, username: str, token_version: int = 1) -> str:
    now = int(time.time())
    claims: Dict[str, Any] = {
        "sub": str(int(user_id)),
        "username": str(username),
        "role": _ACCOUNT_ROLE,
        "tv": int(token_version),
        "iat": now,
        "exp": now + _settings.access_token_ttl_sec(),
    }
    return sign_claims(claims, secret=_secret())


def resolve_principal_from_headers(
    headers: Mapping[str, Any],
    *,
    token_version_matches: Callable[..., bool],
) -> AuthPrincipal:
    authz = str(headers.get("authorization") or headers.get("Authorization") or "").strip()
    if not authz:
        raise TokenError("missing_authorization")
    if not authz.lower().startswith("bearer "):
        raise TokenError("invalid_authorization_scheme")
    principal = decode_access_token(authz[7:].strip(), secret=_secret())
    if not token_version_matches(user_id=principal.user_id, token_version=principal.token_version):
        raise TokenError("token_revoked")
    return principal


__all__ = [
    "AuthPrincipal",
    "TokenError",
    "decode_access_token",
    "mint_access_token",
    "resolve_principal_from_headers",
    "sign_claims",
    "validate_auth_secret_policy",
]
