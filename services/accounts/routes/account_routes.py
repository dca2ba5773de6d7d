from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from ..api_models import LoginRequest, NicknameCheckRequest, NicknameUpdateRequest, RegisterRequest


def register_account_routes(router: APIRouter, container: Any) -> None:
    accounts = container.accounts

    @router.post("/register")
    def register(req: RegisterRequest) -> Any:
        user_id = accounts.register(req.model_dump())
        return JSONResponse(
            status_code=201,
            content={"success": True, "message": "注册成功", "userId": user_id},
        )

    @router.post("/login")
    def login(req: LoginRequest) -> Any:
        result = accounts.login(username=req.username, password=req.password)
        return {
            "success": True,
            "message": "登录成功",
            "user": result["user"],
            "accessToken": result["access_token"],
            "expiresIn": result["expires_in"],
        }

    @router.post("/check-nickname")
    def check_nickname(req: NicknameCheckRequest) -> Any:
        if accounts.check_nickname(req.nickname):
            return {"success": True, "message": "该昵称可以使用"}
        return {"success": False, "message": "该昵称已被使用，请更换其他昵称"}

    @router.post("/update-nickname")
    def update_nickname(req: NicknameUpdateRequest, request: Request) -> Any:
        principal = accounts.resolve_principal(request.headers)
        nickname = accounts.update_nickname(principal=principal, nickname=req.nickname, username=req.username)
        return {"success": True, "message": "昵称修改成功", "nickname": nickname}

    @router.get("/{user_id}")
    def get_user(user_id: int) -> Any:
        return {"success": True, "user": accounts.get_user(user_id)}
