from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession
import logging
from app.core.exceptions import AppError
from app.database import get_db
from app.dependencies import get_grading_service
from app.schemas import (
    CurrentUser,
    AutoGradeRequest,
    AutoGradeResponse,
    GradeResponse,
    GradingViewResponse,
    SaveGradeRequest,
    SummaryResponse,
)
from app.services.grading.grading_service import GradingService
from app.utils.auth import require_instructor

router = APIRouter(prefix="/gradings", tags=["gradings"])
logger = logging.getLogger(__name__)

@router.get("/{session_id}", response_model=GradingViewResponse)
async def get_grading(
    session_id: str,
    user: CurrentUser = Depends(require_instructor),
    db: AsyncSession = Depends(get_db),
    grading_service: GradingService = Depends(get_grading_service)
):
    """채점 화면 데이터 (답안, 대화, 점수)"""
    try:
        data = await grading_service.get_grading(db, session_id, user.user_id)
        return GradingViewResponse(success=True, message="채점 정보 조회 성공", data=data)
    except (AppError, HTTPException):
        raise
    except Exception as e:
        logger.error(f"채점 정보 조회 중 오류 발생: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))

@router.post("/{session_id}", response_model=GradeResponse)
async def save_grade(
    session_id: str,
    request: SaveGradeRequest,
    user: CurrentUser = Depends(require_instructor),
    db: AsyncSession = Depends(get_db),
    grading_service: GradingService = Depends(get_grading_service)
):
    """수동 채점 저장"""
    try:
        grade = await grading_service.save_grade(db, session_id, request, user.user_id)
        return GradeResponse(success=True, message="채점 저장 성공", data=grade)
    except (AppError, HTTPException):
        raise
    except Exception as e:
        logger.error(f"채점 저장 중 오류 발생: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))

@router.post("/{session_id}/auto", response_model=AutoGradeResponse)
async def auto_grade(
    session_id: str,
    request: AutoGradeRequest = AutoGradeRequest(),
    user: CurrentUser = Depends(require_instructor),
    db: AsyncSession = Depends(get_db),
    grading_service: GradingService = Depends(get_grading_service)
):
    """AI 자동 채점"""
    try:
        logger.info(f"=== 자동 채점 요청 - 세션: {session_id}, 재채점: {request.force_regrade} ===")
        data = await grading_service.auto_grade(
            db, session_id, force_regrade=request.force_regrade, instructor_id=user.user_id
        )
        message = "이미 채점된 세션입니다" if data.skipped else "자동 채점 완료"
        return AutoGradeResponse(success=True, message=message, data=data)
    except (AppError, HTTPException):
        raise
    except Exception as e:
        logger.error(f"자동 채점 중 오류 발생: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))

@router.post("/{session_id}/summary", response_model=SummaryResponse)
async def generate_summary(
    session_id: str,
    user: CurrentUser = Depends(require_instructor),
    db: AsyncSession = Depends(get_db),
    grading_service: GradingService = Depends(get_grading_service)
):
    """종합 평가 재생성"""
    try:
        summary = await grading_service.generate_summary(db, session_id, user.user_id)
        return SummaryResponse(success=True, message="종합 평가 생성 성공", data=summary)
    except (AppError, HTTPException):
        raise
    except Exception as e:
        logger.error(f"종합 평가 생성 중 오류 발생: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))
