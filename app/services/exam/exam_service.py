import logging
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from app import models
from app.core.exceptions import ConflictError, ForbiddenError, NotFoundError, PersistenceFailure
from app.schemas.exam import ExamCreate, ExamData

logger = logging.getLogger(__name__)

class ExamService:
    """시험 생성/조회"""

    async def create_exam(self, db: AsyncSession, instructor_id: str, exam_in: ExamCreate) -> ExamData:
        existing = await db.execute(select(models.Exam.id).where(models.Exam.code == exam_in.code))
        if existing.scalar() is not None:
            raise ConflictError(f"이미 사용 중인 시험 코드입니다: {exam_in.code}")

        exam = models.Exam(
            code=exam_in.code,
            title=exam_in.title,
            description=exam_in.description,
            instructor_id=instructor_id,
            duration=exam_in.duration,
            questions=[q.model_dump(exclude_none=True) for q in exam_in.questions],
            rubric=[r.model_dump() for r in exam_in.rubric]
        )
        try:
            db.add(exam)
            await db.commit()
            await db.refresh(exam)
        except IntegrityError as e:
            await db.rollback()
            raise ConflictError(f"이미 사용 중인 시험 코드입니다: {exam_in.code}") from e
        except SQLAlchemyError as e:
            await db.rollback()
            logger.error(f"시험 생성 실패 - 코드: {exam_in.code}: {str(e)}")
            raise PersistenceFailure(f"시험 생성 중 오류가 발생했습니다: {str(e)}") from e

        logger.info(f"시험 생성 - id: {exam.id}, 코드: {exam.code}, 문항 수: {len(exam_in.questions)}")
        return ExamData.from_model(exam)

    async def get_exam(self, db: AsyncSession, exam_id: str, instructor_id: str) -> ExamData:
        exam = await db.get(models.Exam, exam_id)
        if not exam:
            raise NotFoundError(f"시험을 찾을 수 없습니다: {exam_id}")
        if exam.instructor_id != instructor_id:
            raise ForbiddenError("해당 시험의 담당 교사가 아닙니다")
        return ExamData.from_model(exam)
