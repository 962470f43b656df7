from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession
import logging
from app.core.exceptions import AppError
from app.database import get_db
from app.dependencies import get_exam_service, get_grading_service, get_overview_service
from app.schemas import (
    CurrentUser,
    ExamCreate,
    ExamResponse,
    ExamOverviewResponse,
    FinalGradesResponse,
)
from app.services.analysis.overview_service import OverviewService
from app.services.exam.exam_service import ExamService
from app.services.grading.grading_service import GradingService
from app.utils.auth import require_instructor

router = APIRouter(prefix="/exams", tags=["exams"])
logger = logging.getLogger(__name__)

@router.post("", response_model=ExamResponse)
async def create_exam(
    exam_in: ExamCreate,
    user: CurrentUser = Depends(require_instructor),
    db: AsyncSession = Depends(get_db),
    exam_service: ExamService = Depends(get_exam_service)
):
    """시험 생성"""
    try:
        exam = await exam_service.create_exam(db, user.user_id, exam_in)
        return ExamResponse(success=True, message="시험 생성 성공", data=exam)
    except (AppError, HTTPException):
        raise
    except Exception as e:
        logger.error(f"시험 생성 중 오류 발생: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))

@router.get("/{exam_id}", response_model=ExamResponse)
async def get_exam(
    exam_id: str,
    user: CurrentUser = Depends(require_instructor),
    db: AsyncSession = Depends(get_db),
    exam_service: ExamService = Depends(get_exam_service)
):
    """시험 조회"""
    try:
        exam = await exam_service.get_exam(db, exam_id, user.user_id)
        return ExamResponse(success=True, message="시험 조회 성공", data=exam)
    except (AppError, HTTPException):
        raise
    except Exception as e:
        logger.error(f"시험 조회 중 오류 발생: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))

@router.get("/{exam_id}/overview", response_model=ExamOverviewResponse)
async def get_exam_overview(
    exam_id: str,
    user: CurrentUser = Depends(require_instructor),
    db: AsyncSession = Depends(get_db),
    overview_service: OverviewService = Depends(get_overview_service)
):
    """시험 통계 (학생별 점수, 분포, 단계별/루브릭별 평균)"""
    try:
        overview = await overview_service.get_exam_overview(db, exam_id, user.user_id)
        return ExamOverviewResponse(success=True, message="시험 통계 조회 성공", data=overview)
    except (AppError, HTTPException):
        raise
    except Exception as e:
        logger.error(f"시험 통계 조회 중 오류 발생: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))

@router.get("/{exam_id}/final-grades", response_model=FinalGradesResponse)
async def get_final_grades(
    exam_id: str,
    user: CurrentUser = Depends(require_instructor),
    db: AsyncSession = Depends(get_db),
    grading_service: GradingService = Depends(get_grading_service)
):
    """시험의 세션별 최종 점수"""
    try:
        data = await grading_service.get_final_grades(db, exam_id, user.user_id)
        return FinalGradesResponse(success=True, message="최종 점수 조회 성공", data=data)
    except (AppError, HTTPException):
        raise
    except Exception as e:
        logger.error(f"최종 점수 조회 중 오류 발생: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))
