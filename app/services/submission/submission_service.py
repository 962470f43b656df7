from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
import logging
from datetime import datetime
from typing import Optional, List, Sequence, Dict
from app import models
from app.core.exceptions import PersistenceFailure
from app.utils.datetime_utils import utcnow

logger = logging.getLogger(__name__)


def select_canonical_submission(rows: Sequence[models.Submission]) -> Optional[models.Submission]:
    """같은 문항에 제출 행이 여러 개일 때 하나를 고른다

    피드백이 있는 행 > 답안이 긴 행 > 가장 최근에 만든 행
    """
    if not rows:
        return None
    return max(
        rows,
        key=lambda row: (
            bool(row.ai_feedback),
            len(row.answer or ""),
            row.created_at or datetime.min,
            row.id or 0,
        ),
    )


class SubmissionService:
    """문항별 답안 저장소 (수정 이력은 append-only)"""

    async def _find_row(self, db: AsyncSession, session_id: str, q_idx: int) -> Optional[models.Submission]:
        result = await db.execute(
            select(models.Submission)
            .filter_by(session_id=session_id, q_idx=q_idx)
            .order_by(models.Submission.created_at.desc(), models.Submission.id.desc())
        )
        return result.scalars().first()

    async def save_draft(
        self,
        db: AsyncSession,
        session_id: str,
        q_idx: int,
        text: str,
        now: Optional[datetime] = None,
        commit: bool = True
    ) -> models.Submission:
        """답안 임시 저장"""
        now = now or utcnow()
        try:
            submission = await self._find_row(db, session_id, q_idx)
            if submission is None:
                submission = models.Submission(
                    session_id=session_id,
                    q_idx=q_idx,
                    answer=text,
                    answer_history=[],
                    edit_count=0,
                    created_at=now,
                    updated_at=now
                )
                db.add(submission)
                logger.info(f"새 답안 저장 - 세션: {session_id}, 문항: {q_idx}")
            elif (submission.answer or "") != text:
                entry = {
                    "prior_text": submission.answer or "",
                    "prior_updated_at": submission.updated_at.isoformat() if submission.updated_at else None
                }
                # JSON 컬럼 변경 감지를 위해 새 리스트로 교체
                submission.answer_history = [*(submission.answer_history or []), entry]
                submission.edit_count = (submission.edit_count or 0) + 1
                submission.answer = text
                submission.updated_at = now
                logger.info(f"답안 수정 - 세션: {session_id}, 문항: {q_idx}, 수정 횟수: {submission.edit_count}")

            if commit:
                await db.commit()
                await db.refresh(submission)
            else:
                await db.flush()
            return submission

        except SQLAlchemyError as e:
            await db.rollback()
            logger.error(f"답안 저장 실패 - 세션: {session_id}, 문항: {q_idx}: {str(e)}")
            raise PersistenceFailure(f"답안 저장 중 오류가 발생했습니다: {str(e)}") from e

    async def get_all(self, db: AsyncSession, session_id: str) -> List[models.Submission]:
        """세션의 모든 답안 (문항 순서)"""
        result = await db.execute(
            select(models.Submission)
            .filter_by(session_id=session_id)
            .order_by(models.Submission.q_idx, models.Submission.id)
        )
        return list(result.scalars().all())

    async def get_by_question(self, db: AsyncSession, session_id: str) -> Dict[int, models.Submission]:
        grouped: Dict[int, List[models.Submission]] = {}
        for row in await self.get_all(db, session_id):
            grouped.setdefault(row.q_idx, []).append(row)
        return {q_idx: select_canonical_submission(rows) for q_idx, rows in grouped.items()}

    async def _update_field(
        self,
        db: AsyncSession,
        session_id: str,
        q_idx: int,
        field: str,
        value: str,
        now: datetime
    ) -> models.Submission:
        try:
            submission = await self._find_row(db, session_id, q_idx)
            if submission is None:
                submission = models.Submission(
                    session_id=session_id,
                    q_idx=q_idx,
                    answer="",
                    answer_history=[],
                    edit_count=0,
                    created_at=now,
                    updated_at=now
                )
                db.add(submission)
            setattr(submission, field, value)
            await db.commit()
            await db.refresh(submission)
            return submission
        except SQLAlchemyError as e:
            await db.rollback()
            logger.error(f"{field} 저장 실패 - 세션: {session_id}, 문항: {q_idx}: {str(e)}")
            raise PersistenceFailure(f"{field} 저장 중 오류가 발생했습니다: {str(e)}") from e

    async def save_feedback(
        self,
        db: AsyncSession,
        session_id: str,
        q_idx: int,
        feedback: str,
        now: Optional[datetime] = None
    ) -> models.Submission:
        return await self._update_field(db, session_id, q_idx, "ai_feedback", feedback, now or utcnow())

    async def save_reply(
        self,
        db: AsyncSession,
        session_id: str,
        q_idx: int,
        reply: str,
        now: Optional[datetime] = None
    ) -> models.Submission:
        """피드백에 대한 학생 반박 저장 (NUL 문자 제거)"""
        sanitized = reply.replace("\x00", "")
        return await self._update_field(db, session_id, q_idx, "student_reply", sanitized, now or utcnow())
