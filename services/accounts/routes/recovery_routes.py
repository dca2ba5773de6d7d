from __future__ import annotations

from typing import Any

from fastapi import APIRouter

from ..api_models import (
    PasswordResetRequest,
    RecoveryUsernameRequest,
    SecurityAnswerRequest,
    SecurityQuestionRequest,
)


def register_recovery_routes(router: APIRouter, container: Any) -> None:
    recovery = container.recovery

    @router.post("/forgot-password/verify-username")
    def verify_username(req: RecoveryUsernameRequest) -> Any:
        token = recovery.start(req.username)
        return {"success": True, "message": "请回答安全问题", "recoveryToken": token}

    @router.post("/forgot-password/get-security-question")
    def get_security_question(req: SecurityQuestionRequest) -> Any:
        question = recovery.security_question(req.username, token=req.recovery_token)
        return {"success": True, "securityQuestion": question}

    @router.post("/forgot-password/verify-answer")
    def verify_answer(req: SecurityAnswerRequest) -> Any:
        recovery.verify_answer(token=req.recovery_token, username=req.username, answer=req.security_answer)
        return {"success": True, "message": "验证成功，请设置新密码"}

    @router.post("/forgot-password/reset")
    def reset_password(req: PasswordResetRequest) -> Any:
        recovery.reset_password(token=req.recovery_token, username=req.username, new_password=req.new_password)
        return {"success": True, "message": "密码重置成功，请使用新密码登录"}
