from fastapi import Depends
from fastapi.security import APIKeyCookie
from typing import Optional
from app.core.exceptions import ForbiddenError
from app.dependencies import get_auth_service
from app.schemas.auth import CurrentUser
from app.services.auth.auth_service import AuthService

cookie_sec = APIKeyCookie(name="session_id", auto_error=False)

async def get_current_user(
    session_id: Optional[str] = Depends(cookie_sec),
    auth_service: AuthService = Depends(get_auth_service)
) -> CurrentUser:
    """현재 로그인한 사용자 정보 조회"""
    return await auth_service.resolve(session_id)

async def require_student(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
    if user.role != "student":
        raise ForbiddenError("학생만 사용할 수 있는 기능입니다")
    return user

async def require_instructor(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
    if not user.is_instructor:
        raise ForbiddenError("교사만 사용할 수 있는 기능입니다")
    return user
