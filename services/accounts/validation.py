"""Field rules shared by every account form.

Each ``validate_*`` helper returns an error message or ``None``; the
``validate_*_form`` helpers collect them into a field -> message mapping so a
client can show all problems at once.
"""
from __future__ import annotations

import re
from typing import Any, Dict, Mapping, Optional, Tuple

from pydantic import EmailStr, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from .errors import ValidationError

FieldErrors = Dict[str, str]

USERNAME_MIN_LEN = 3
USERNAME_MAX_LEN = 50
NICKNAME_MIN_LEN = 1
NICKNAME_MAX_LEN = 20
PASSWORD_MIN_LEN = 8
PASSWORD_MAX_LEN = 256
ANSWER_MIN_LEN = 4
ANSWER_MAX_LEN = 20
QUESTION_MAX_LEN = 255
MIN_RESET_STRENGTH = 3

# zh-CN mobile numbers, optionally prefixed with +86 / 0086
PHONE_PATTERN = re.compile(r"^((\+|00)86)?1[3-9]\d{9}$")

_EMAIL_ADAPTER = TypeAdapter(EmailStr)


def _text(value: Any) -> str:
    return str(value or "").strip()


def validate_username(value: Any) -> Optional[str]:
    text = _text(value)
    if not (USERNAME_MIN_LEN <= len(text) <= USERNAME_MAX_LEN):
        return f"用户名长度必须在{USERNAME_MIN_LEN}-{USERNAME_MAX_LEN}个字符之间"
    return None


def validate_nickname(value: Any) -> Optional[str]:
    text = _text(value)
    if not (NICKNAME_MIN_LEN <= len(text) <= NICKNAME_MAX_LEN):
        return f"昵称长度必须在{NICKNAME_MIN_LEN}-{NICKNAME_MAX_LEN}个字符之间"
    return None


def validate_password(value: Any) -> Optional[str]:
    text = str(value or "")
    if len(text) < PASSWORD_MIN_LEN:
        return f"密码长度不能少于{PASSWORD_MIN_LEN}个字符"
    if len(text) > PASSWORD_MAX_LEN:
        return f"密码长度不能超过{PASSWORD_MAX_LEN}个字符"
    if not (re.search(r"[a-z]", text) and re.search(r"[A-Z]", text) and re.search(r"\d", text)):
        return "密码必须包含至少一个大写字母、一个小写字母和一个数字"
    return None


def normalize_email(value: Any) -> str:
    return _text(value).lower()


def validate_email_address(value: Any) -> Optional[str]:
    text = normalize_email(value)
    if not text:
        return "请输入有效的电子邮箱地址"
    try:
        _EMAIL_ADAPTER.validate_python(text)
    except PydanticValidationError:
        return "请输入有效的电子邮箱地址"
    return None


def normalize_phone(value: Any) -> Optional[str]:
    """Return the 11-digit national form; the +86 / 0086 prefix is dropped."""
    text = _text(value)
    if not text:
        return None
    match = PHONE_PATTERN.match(text)
    if match:
        return text[len(match.group(1) or ""):]
    return text


def validate_phone(value: Any) -> Optional[str]:
    phone = normalize_phone(value)
    if phone is None:
        return None
    if not PHONE_PATTERN.match(phone):
        return "请输入有效的手机号码"
    return None


def validate_security_question(value: Any) -> Optional[str]:
    text = _text(value)
    if not text:
        return "请选择安全验证问题"
    if len(text) > QUESTION_MAX_LEN:
        return "安全验证问题过长"
    return None


def validate_security_answer(value: Any) -> Optional[str]:
    text = _text(value)
    if not (ANSWER_MIN_LEN <= len(text) <= ANSWER_MAX_LEN):
        return f"答案长度必须在{ANSWER_MIN_LEN}-{ANSWER_MAX_LEN}个字符之间"
    return None


def password_strength(password: Any) -> Tuple[int, str]:
    """Score one point per satisfied rule and map the total to a level."""
    text = str(password or "")
    checks = (
        len(text) >= PASSWORD_MIN_LEN,
        bool(re.search(r"[a-z]", text)),
        bool(re.search(r"[A-Z]", text)),
        bool(re.search(r"\d", text)),
        bool(re.search(r"[^a-zA-Z0-9]", text)),
    )
    score = sum(1 for ok in checks if ok)
    if score >= 4:
        level = "strong"
    elif score >= 3:
        level = "medium"
    else:
        level = "weak"
    return score, level


def validate_new_password(value: Any) -> Optional[str]:
    text = str(value or "")
    if len(text) > PASSWORD_MAX_LEN:
        return f"密码长度不能超过{PASSWORD_MAX_LEN}个字符"
    score, _level = password_strength(text)
    if score < MIN_RESET_STRENGTH:
        return "密码强度不足，请至少满足长度、大小写字母、数字、特殊字符中的三项"
    return None


def validate_registration_form(form: Mapping[str, Any]) -> FieldErrors:
    errors: FieldErrors = {}
    checks = (
        ("username", validate_username(form.get("username"))),
        ("nickname", validate_nickname(form.get("nickname"))),
        ("password", validate_password(form.get("password"))),
        ("email", validate_email_address(form.get("email"))),
        ("phone", validate_phone(form.get("phone"))),
        ("securityQuestion", validate_security_question(form.get("security_question"))),
        ("securityAnswer", validate_security_answer(form.get("security_answer"))),
    )
    for field, message in checks:
        if message:
            errors[field] = message
    if str(form.get("confirm_password") or "") != str(form.get("password") or ""):
        errors["confirmPassword"] = "两次输入的密码不一致"
    return errors


def validate_login_form(form: Mapping[str, Any]) -> FieldErrors:
    errors: FieldErrors = {}
    if not _text(form.get("username")):
        errors["username"] = "用户名不能为空"
    if not str(form.get("password") or ""):
        errors["password"] = "密码不能为空"
    return errors


def raise_for_errors(errors: FieldErrors) -> None:
    if errors:
        raise ValidationError(errors)


__all__ = [
    "FieldErrors",
    "PHONE_PATTERN",
    "normalize_email",
    "normalize_phone",
    "password_strength",
    "raise_for_errors",
    "validate_email_address",
    "validate_login_form",
    "validate_new_password",
    "validate_nickname",
    "validate_password",
    "validate_phone",
    "validate_registration_form",
    "validate_security_answer",
    "validate_security_question",
    "validate_username",
]
