"""Error kinds raised by the account services and rendered by the app.

Messages on anything that touches account existence or secret matching are
generic; only validation and conflict errors name the offending field.
"""
from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional


class AccountError(Exception):
    status_code = 500
    default_message = "服务器内部错误"

    def __init__(self, message: Optional[str] = None, *, status_code: Optional[int] = None):
        text = str(message or self.default_message)
        super().__init__(text)
        self.message = text
        if status_code is not None:
            self.status_code = int(status_code)

    def to_payload(self) -> Dict[str, Any]:
        return {"success": False, "message": self.message}


class ValidationError(AccountError):
    status_code = 400
    default_message = "表单验证失败"

    def __init__(self, errors: Mapping[str, str], message: Optional[str] = None):
        super().__init__(message)
        self.errors: Dict[str, str] = dict(errors or {})

    def to_payload(self) -> Dict[str, Any]:
        items: List[Dict[str, str]] = [
            {"field": field, "message": msg} for field, msg in self.errors.items()
        ]
        return {"success": False, "message": self.message, "errors": items}


class ConflictError(AccountError):
    status_code = 409
    default_message = "已被注册"

    def __init__(self, field: str, message: Optional[str] = None):
        super().__init__(message)
        self.field = field

    def to_payload(self) -> Dict[str, Any]:
        return {"success": False, "message": self.message, "field": self.field}


class AuthenticationError(AccountError):
    status_code = 401
    default_message = "用户名或密码错误"


class AuthorizationError(AccountError):
    status_code = 403
    default_message = "无权执行该操作"


class NotFoundError(AccountError):
    status_code = 404
    default_message = "资源不存在"


class InternalError(AccountError):
    status_code = 500
    default_message = "服务器内部错误"


class RecoveryError(AccountError):
    status_code = 400
    default_message = "密码找回失败，可能原因：用户名错误、安全问题选择错误或答案不正确"

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        attempts_remaining: Optional[int] = None,
        terminated: bool = False,
    ):
        super().__init__(message)
        self.attempts_remaining = attempts_remaining
        self.terminated = bool(terminated)

    def to_payload(self) -> Dict[str, Any]:
        payload = super().to_payload()
        payload["terminated"] = self.terminated
        if self.attempts_remaining is not None:
            payload["attemptsRemaining"] = int(self.attempts_remaining)
        return payload


__all__ = [
    "AccountError",
    "ValidationError",
    "ConflictError",
    "AuthenticationError",
    "AuthorizationError",
    "NotFoundError",
    "InternalError",
    "RecoveryError",
]
