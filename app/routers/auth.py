from fastapi import APIRouter, Depends, HTTPException, Response
from typing import Optional
import logging
from app.core.config import settings
from app.core.exceptions import AppError, NotFoundError
from app.dependencies import get_auth_service
from app.schemas.auth import LoginRequest, LoginResponse, CurrentUser
from app.services.auth.auth_service import AuthService
from app.utils.auth import cookie_sec, get_current_user

router = APIRouter(prefix="/auth", tags=["auth"])
logger = logging.getLogger(__name__)

@router.post("/session", response_model=LoginResponse)
async def create_dev_session(
    request: LoginRequest,
    response: Response,
    auth_service: AuthService = Depends(get_auth_service)
):
    """개발용 로그인 세션 발급 (DEBUG 에서만 사용 가능, 운영에서는 외부 인증이 세션을 만든다)"""
    if not settings.DEBUG:
        raise NotFoundError("사용할 수 없는 기능입니다")
    try:
        session_id = await auth_service.issue_session(request.user_id, request.role)
        response.set_cookie(
            key="session_id",
            value=session_id,
            httponly=True,
            samesite="lax",
            max_age=settings.SESSION_EXPIRE_HOURS * 3600
        )
        return LoginResponse(
            success=True,
            message="로그인 성공",
            data=CurrentUser(user_id=request.user_id, role=request.role)
        )
    except (AppError, HTTPException):
        raise
    except Exception as e:
        logger.error(f"로그인 세션 발급 중 오류 발생: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))

@router.get("/me", response_model=LoginResponse)
async def get_me(user: CurrentUser = Depends(get_current_user)):
    """현재 사용자 정보"""
    return LoginResponse(success=True, message="사용자 정보 조회 성공", data=user)

@router.post("/logout")
async def logout(
    response: Response,
    session_id: Optional[str] = Depends(cookie_sec),
    auth_service: AuthService = Depends(get_auth_service)
):
    """로그아웃"""
    try:
        if session_id:
            await auth_service.revoke_session(session_id)
        response.delete_cookie(key="session_id")
        return {"status": "success", "message": "로그아웃 성공"}
    except Exception as e:
        logger.error(f"로그아웃 중 오류 발생: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))
