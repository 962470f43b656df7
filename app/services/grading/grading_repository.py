import logging
from typing import Optional, List, Sequence, Dict, Any
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, delete
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from datetime import datetime
from app import models
from app.core.exceptions import ConflictError, PersistenceFailure
from app.utils.datetime_utils import utcnow

logger = logging.getLogger(__name__)

class GradingRepository:
    """grades 테이블 접근"""

    async def list_grades(self, db: AsyncSession, session_id: str) -> List[models.Grade]:
        result = await db.execute(
            select(models.Grade)
            .filter_by(session_id=session_id)
            .order_by(models.Grade.q_idx)
        )
        return list(result.scalars().all())

    async def list_grades_for_sessions(
        self,
        db: AsyncSession,
        session_ids: Sequence[str]
    ) -> Dict[str, List[models.Grade]]:
        grouped: Dict[str, List[models.Grade]] = {session_id: [] for session_id in session_ids}
        if not session_ids:
            return grouped
        result = await db.execute(
            select(models.Grade)
            .where(models.Grade.session_id.in_(list(session_ids)))
            .order_by(models.Grade.session_id, models.Grade.q_idx)
        )
        for grade in result.scalars().all():
            grouped.setdefault(grade.session_id, []).append(grade)
        return grouped

    async def replace_grades(
        self,
        db: AsyncSession,
        session_id: str,
        grades: Sequence[Dict[str, Any]],
        delete_existing: bool,
        now: Optional[datetime] = None
    ) -> List[models.Grade]:
        """채점 결과 저장 (재채점이면 기존 행 삭제 후 삽입, 한 트랜잭션)"""
        now = now or utcnow()
        try:
            if delete_existing:
                await db.execute(delete(models.Grade).where(models.Grade.session_id == session_id))

            rows = [
                models.Grade(
                    session_id=session_id,
                    q_idx=grade["q_idx"],
                    score=grade["score"],
                    comment=grade.get("comment"),
                    stage_grading=grade.get("stage_grading"),
                    created_at=now
                )
                for grade in grades
            ]
            db.add_all(rows)
            await db.commit()
        except IntegrityError as e:
            # 같은 세션을 동시에 채점한 요청이 먼저 저장함
            await db.rollback()
            logger.info(f"동시 채점 결과 저장 감지 - 세션: {session_id}")
            raise ConflictError(f"이미 채점 결과가 저장된 세션입니다: {session_id}") from e
        except SQLAlchemyError as e:
            await db.rollback()
            logger.error(f"채점 결과 저장 실패 - 세션: {session_id}: {str(e)}")
            raise PersistenceFailure(f"채점 결과 저장 중 오류가 발생했습니다: {str(e)}") from e

        logger.info(f"채점 결과 {len(rows)}건 저장 - 세션: {session_id}")
        return await self.list_grades(db, session_id)

    async def upsert_grade(
        self,
        db: AsyncSession,
        session_id: str,
        q_idx: int,
        score: int,
        comment: Optional[str],
        stage_grading: Optional[Dict[str, Any]],
        now: Optional[datetime] = None
    ) -> models.Grade:
        """교사 수동 채점: 문항 점수 덮어쓰기"""
        now = now or utcnow()
        try:
            result = await db.execute(
                select(models.Grade).filter_by(session_id=session_id, q_idx=q_idx)
            )
            grade = result.scalars().first()
            if grade is None:
                grade = models.Grade(session_id=session_id, q_idx=q_idx, created_at=now)
                db.add(grade)
            grade.score = score
            grade.comment = comment
            if stage_grading is not None:
                grade.stage_grading = stage_grading
            await db.commit()
            await db.refresh(grade)
            logger.info(f"수동 채점 저장 - 세션: {session_id}, 문항: {q_idx}, 점수: {score}")
            return grade
        except SQLAlchemyError as e:
            await db.rollback()
            logger.error(f"수동 채점 저장 실패 - 세션: {session_id}, 문항: {q_idx}: {str(e)}")
            raise PersistenceFailure(f"채점 저장 중 오류가 발생했습니다: {str(e)}") from e
