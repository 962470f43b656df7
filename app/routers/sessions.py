from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession
import logging
from app.core.exceptions import AppError
from app.database import get_db
from app.dependencies import get_session_registry, get_grading_service
from app.schemas import (
    CurrentUser,
    InitSessionRequest,
    InitSessionResponse,
    HeartbeatResponse,
    MessageCreate,
    MessageResponse,
    SubmitRequest,
    SubmitResponse,
    GradingViewResponse,
)
from app.services.grading.grading_service import GradingService
from app.services.session.session_registry import SessionRegistry
from app.utils.auth import get_current_user, require_student

router = APIRouter(prefix="/sessions", tags=["sessions"])
logger = logging.getLogger(__name__)

@router.post("/init", response_model=InitSessionResponse)
async def init_session(
    request: InitSessionRequest,
    user: CurrentUser = Depends(require_student),
    db: AsyncSession = Depends(get_db),
    registry: SessionRegistry = Depends(get_session_registry)
):
    """시험 입장 (재응시 차단 / 자동 제출 / 이어하기 / 새 세션)"""
    try:
        logger.info(f"시험 입장 요청 - 코드: {request.exam_code}, 학생: {user.user_id}")
        data = await registry.init_session(
            db, request.exam_code, user.user_id, request.device_fingerprint
        )
        return InitSessionResponse(success=True, message="세션 준비 완료", data=data)
    except (AppError, HTTPException):
        raise
    except Exception as e:
        logger.error(f"세션 초기화 중 오류 발생: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))

@router.post("/{session_id}/heartbeat", response_model=HeartbeatResponse)
async def heartbeat(
    session_id: str,
    user: CurrentUser = Depends(require_student),
    db: AsyncSession = Depends(get_db),
    registry: SessionRegistry = Depends(get_session_registry)
):
    try:
        data = await registry.heartbeat(db, session_id, user.user_id)
        return HeartbeatResponse(success=True, message="heartbeat", data=data)
    except (AppError, HTTPException):
        raise
    except Exception as e:
        logger.error(f"heartbeat 처리 중 오류 발생: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))

@router.post("/{session_id}/messages", response_model=MessageResponse)
async def append_message(
    session_id: str,
    message: MessageCreate,
    user: CurrentUser = Depends(require_student),
    db: AsyncSession = Depends(get_db),
    registry: SessionRegistry = Depends(get_session_registry)
):
    """대화 기록 추가"""
    try:
        data = await registry.append_message(db, session_id, user.user_id, message)
        return MessageResponse(success=True, message="메시지 저장 성공", data=data)
    except (AppError, HTTPException):
        raise
    except Exception as e:
        logger.error(f"메시지 저장 중 오류 발생: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))

@router.post("/{session_id}/submit", response_model=SubmitResponse)
async def submit_session(
    session_id: str,
    request: SubmitRequest,
    user: CurrentUser = Depends(require_student),
    db: AsyncSession = Depends(get_db),
    registry: SessionRegistry = Depends(get_session_registry)
):
    """최종 제출"""
    try:
        data = await registry.submit(db, session_id, user.user_id, request)
        return SubmitResponse(success=True, message="제출 완료", data=data)
    except (AppError, HTTPException):
        raise
    except Exception as e:
        logger.error(f"최종 제출 중 오류 발생: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))

@router.get("/{session_id}/report", response_model=GradingViewResponse)
async def get_session_report(
    session_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    grading_service: GradingService = Depends(get_grading_service)
):
    """세션 리포트 (학생 본인 또는 담당 교사)"""
    try:
        data = await grading_service.get_session_report(db, session_id, user.user_id, user.role)
        return GradingViewResponse(success=True, message="리포트 조회 성공", data=data)
    except (AppError, HTTPException):
        raise
    except Exception as e:
        logger.error(f"리포트 조회 중 오류 발생: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))
