from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession
import logging
from app.core.exceptions import AppError
from app.database import get_db
from app.dependencies import get_session_registry, get_feedback_service
from app.schemas import (
    CurrentUser,
    DraftRequest,
    FeedbackRequest,
    ReplyRequest,
    SubmissionData,
    SubmissionResponse,
)
from app.services.session.session_registry import SessionRegistry
from app.services.submission.feedback_service import FeedbackService
from app.utils.auth import require_student

router = APIRouter(prefix="/sessions", tags=["submissions"])
logger = logging.getLogger(__name__)

@router.put("/{session_id}/drafts", response_model=SubmissionResponse)
async def save_draft(
    session_id: str,
    request: DraftRequest,
    user: CurrentUser = Depends(require_student),
    db: AsyncSession = Depends(get_db),
    registry: SessionRegistry = Depends(get_session_registry)
):
    """답안 임시 저장"""
    try:
        submission = await registry.save_draft(db, session_id, user.user_id, request.q_idx, request.text)
        return SubmissionResponse(
            success=True,
            message="답안 저장 성공",
            data=SubmissionData.model_validate(submission)
        )
    except (AppError, HTTPException):
        raise
    except Exception as e:
        logger.error(f"답안 저장 중 오류 발생: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))

@router.post("/{session_id}/feedback", response_model=SubmissionResponse)
async def request_feedback(
    session_id: str,
    request: FeedbackRequest,
    user: CurrentUser = Depends(require_student),
    db: AsyncSession = Depends(get_db),
    feedback_service: FeedbackService = Depends(get_feedback_service)
):
    """답안에 대한 AI 피드백 요청"""
    try:
        submission = await feedback_service.request_feedback(db, session_id, user.user_id, request.q_idx)
        return SubmissionResponse(
            success=True,
            message="피드백 생성 성공",
            data=SubmissionData.model_validate(submission)
        )
    except (AppError, HTTPException):
        raise
    except Exception as e:
        logger.error(f"피드백 생성 중 오류 발생: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))

@router.post("/{session_id}/reply", response_model=SubmissionResponse)
async def submit_reply(
    session_id: str,
    request: ReplyRequest,
    user: CurrentUser = Depends(require_student),
    db: AsyncSession = Depends(get_db),
    feedback_service: FeedbackService = Depends(get_feedback_service)
):
    """피드백에 대한 반박 저장"""
    try:
        submission = await feedback_service.submit_reply(
            db, session_id, user.user_id, request.q_idx, request.reply
        )
        return SubmissionResponse(
            success=True,
            message="반박 저장 성공",
            data=SubmissionData.model_validate(submission)
        )
    except (AppError, HTTPException):
        raise
    except Exception as e:
        logger.error(f"반박 저장 중 오류 발생: {str(e)}")
        raise HTTPException(status_code=500, detail=str(e))
