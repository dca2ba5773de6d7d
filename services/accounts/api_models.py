from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class RegisterRequest(_CamelModel):
    username: str = ""
    nickname: str = ""
    password: str = ""
    confirm_password: str = Field(default="", alias="confirmPassword")
    email: str = ""
    phone: Optional[str] = None
    security_question: str = Field(default="", alias="securityQuestion")
    security_answer: str = Field(default="", alias="securityAnswer")


class LoginRequest(_CamelModel):
    username: str = ""
    password: str = ""


class NicknameCheckRequest(_CamelModel):
    nickname: str = ""


class NicknameUpdateRequest(_CamelModel):
    nickname: str = ""
    username: Optional[str] = None


class RecoveryUsernameRequest(_CamelModel):
    username: str = ""


class SecurityQuestionRequest(_CamelModel):
    username: str = ""
    recovery_token: Optional[str] = Field(default=None, alias="recoveryToken")


class SecurityAnswerRequest(_CamelModel):
    username: str = ""
    security_answer: str = Field(default="", alias="securityAnswer")
    recovery_token: str = Field(default="", alias="recoveryToken")


class PasswordResetRequest(_CamelModel):
    username: str = ""
    new_password: str = Field(default="", alias="newPassword")
    recovery_token: str = Field(default="", alias="recoveryToken")
