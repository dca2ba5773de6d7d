from __future__ import annotations

import logging
from typing import Any, Dict, Mapping, Optional

from . import settings as _settings
from .account_store import AccountStore
from .auth_service import AuthPrincipal, mint_access_token, resolve_principal_from_headers
from .errors import AuthenticationError, AuthorizationError, NotFoundError, ValidationError
from .password_hasher import consume_dummy_verify, hash_secret, verify_secret
from .validation import (
    normalize_email,
    normalize_phone,
    raise_for_errors,
    validate_login_form,
    validate_nickname,
    validate_registration_form,
)

_log = logging.getLogger(__name__)

ACCOUNT_DISABLED_MESSAGE = "账号已被禁用"


class AccountService:
    """Registration, login, profile lookup and nickname management."""

    def __init__(self, store: AccountStore):
        self.store = store

    def register(self, form: Mapping[str, Any]) -> int:
        """Validate the form, hash both secrets and persist account + profile atomically.

        Conflicts are pre-checked for a friendly message; the store re-checks
        inside its transaction and the unique indexes settle any race.
        """
        raise_for_errors(validate_registration_form(form))

        username = str(form.get("username") or "").strip()
        nickname = str(form.get("nickname") or "").strip()
        email = normalize_email(form.get("email"))
        phone = normalize_phone(form.get("phone"))
        conflict = self.store.find_conflict(username=username, email=email, phone=phone, nickname=nickname)
        if conflict is not None:
            raise conflict

        user_id = self.store.create_account(
            username=username,
            password_hash=hash_secret(str(form.get("password") or "")),
            email=email,
            phone=phone,
            security_question=str(form.get("security_question") or "").strip(),
            security_answer_hash=hash_secret(str(form.get("security_answer") or "").strip()),
            nickname=nickname,
        )
        _log.info("account registered user_id=%s", user_id)
        return user_id

    def login(self, *, username: str, password: str) -> Dict[str, Any]:
        raise_for_errors(validate_login_form({"username": username, "password": password}))

        name = str(username or "").strip()
        account = self.store.find_account_by_username(name)
        if account is None:
            consume_dummy_verify(password)
            self._login_failed(name, "unknown_user")
            raise AuthenticationError()
        if not verify_secret(str(password or ""), str(account.get("password_hash") or "")):
            self._login_failed(name, "bad_password")
            raise AuthenticationError()
        if int(account.get("status") or 0) != 1:
            self._login_failed(name, "disabled")
            raise AuthorizationError(ACCOUNT_DISABLED_MESSAGE)

        user_id = int(account["id"])
        self.store.record_login(user_id=user_id, username=name)
        user = self.store.get_user_view(user_id) or {}
        token = mint_access_token(
            user_id=user_id,
            username=name,
            token_version=int(account.get("token_version") or 1),
        )
        return {
            "user": user,
            "access_token": token,
            "expires_in": _settings.access_token_ttl_sec(),
        }

    def get_user(self, user_id: int) -> Dict[str, Any]:
        user = self.store.get_user_view(int(user_id))
        if user is None:
            raise NotFoundError("用户不存在")
        return user

    def check_nickname(self, nickname: Any) -> bool:
        """Return True when the nickname is free right now; advisory only."""
        text = str(nickname or "").strip()
        if not text:
            raise ValidationError({"nickname": "昵称不能为空"})
        message = validate_nickname(text)
        if message:
            raise ValidationError({"nickname": message})
        return not self.store.nickname_exists(text)

    def resolve_principal(self, headers: Mapping[str, Any]) -> AuthPrincipal:
        return resolve_principal_from_headers(headers, token_version_matches=self.store.token_version_matches)

    def update_nickname(
        self,
        *,
        principal: AuthPrincipal,
        nickname: Any,
        username: Optional[str] = None,
    ) -> str:
        claimed = str(username or "").strip()
        if claimed and claimed != principal.username:
            _log.warning("nickname update for %s rejected: token belongs to another user", claimed)
            raise AuthorizationError()

        text = str(nickname or "").strip()
        message = validate_nickname(text)
        if message:
            raise ValidationError({"nickname": message})
        if not self.store.update_nickname(user_id=principal.user_id, nickname=text):
            raise NotFoundError("用户不存在")
        return text

    def _login_failed(self, username: str, reason: str) -> None:
        self.store.record_event(username=username, action="login", result="failed", detail={"reason": reason})


__all__ = ["ACCOUNT_DISABLED_MESSAGE", "AccountService"]
