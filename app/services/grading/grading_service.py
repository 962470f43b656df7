import logging
from datetime import datetime
from typing import Dict, List, Optional, Tuple
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from app import models
from app.core.exceptions import ConflictError, ForbiddenError, ValidationError
from app.database import async_session_maker
from app.schemas.exam import ExamData
from app.schemas.grading import (
    AutoGradeData,
    FinalGradesData,
    GradeData,
    GradingViewData,
    SaveGradeRequest,
    SessionGrades,
    SessionSummary,
)
from app.schemas.session import MessageData, SessionData
from app.schemas.submission import SubmissionData
from app.services.analysis.summary_service import SummaryService
from app.services.grading.grading_assistant import QuestionContext, build_question_contexts
from app.services.grading.grading_processor import GradingProcessor
from app.services.grading.grading_repository import GradingRepository
from app.services.session.session_registry import SessionRegistry
from app.utils.compression import resolve_answer_text
from app.utils.db_utils import run_concurrent_reads
from app.utils.datetime_utils import utcnow
from app.utils.scoring import round_half_up

logger = logging.getLogger(__name__)


def overall_score(grades: List[models.Grade], question_count: int) -> Optional[int]:
    """문항 점수 합 / 시험 문항 수"""
    if not grades or not question_count:
        return None
    return round_half_up(sum(grade.score for grade in grades) / question_count)


class GradingService:
    """제출된 세션 자동 채점, 교사 수동 채점, 채점 결과 조회"""

    def __init__(
        self,
        repository: GradingRepository,
        processor: GradingProcessor,
        registry: SessionRegistry,
        summary_service: SummaryService,
        session_factory: async_sessionmaker = async_session_maker
    ):
        self.repository = repository
        self.processor = processor
        self.registry = registry
        self.summary_service = summary_service
        self.session_factory = session_factory

    def ensure_exam_owner(self, exam: ExamData, instructor_id: Optional[str]) -> None:
        if instructor_id is not None and exam.instructor_id != instructor_id:
            raise ForbiddenError("해당 시험의 담당 교사가 아닙니다")

    async def _load_session_records(
        self,
        session_id: str
    ) -> Tuple[Dict[int, models.Submission], Dict[int, List[MessageData]], List[models.Grade]]:
        """답안, 대화, 점수를 각각 별도 세션에서 동시에 조회"""
        submissions, messages, grades = await run_concurrent_reads(
            self.session_factory,
            lambda db: self.registry.submissions.get_by_question(db, session_id),
            lambda db: self.registry.messages.list_by_question(db, session_id),
            lambda db: self.repository.list_grades(db, session_id),
        )
        return submissions, messages, grades

    async def _build_contexts(self, exam: ExamData, session_id: str) -> Tuple[List[QuestionContext], List[models.Grade]]:
        submissions, messages, grades = await self._load_session_records(session_id)
        return build_question_contexts(exam, submissions, messages), grades

    async def auto_grade(
        self,
        db: AsyncSession,
        session_id: str,
        force_regrade: bool = False,
        instructor_id: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> AutoGradeData:
        """세션 자동 채점

        이미 채점된 세션은 force_regrade 가 아니면 기존 결과를 그대로 반환한다.
        """
        now = now or utcnow()
        session, exam = await self.registry.get_session_with_exam(db, session_id)
        self.ensure_exam_owner(exam, instructor_id)

        await self.registry.expire_if_needed(db, session, exam, now)
        if session.submitted_at is None:
            raise ConflictError("아직 제출되지 않은 세션은 채점할 수 없습니다")

        existing = await self.repository.list_grades(db, session.id)
        if existing and not force_regrade:
            logger.info(f"이미 채점된 세션 - 세션: {session.id}, 점수 {len(existing)}건")
            return AutoGradeData(
                grades_count=len(existing),
                grades=[GradeData.model_validate(grade) for grade in existing],
                skipped=True
            )

        logger.info(f"자동 채점 시작 - 세션: {session.id}, 재채점: {force_regrade}")
        contexts, _ = await self._build_contexts(exam, session.id)
        results = await self.processor.process_grading(contexts, exam.rubric, exam.is_essay_only)

        try:
            grades = await self.repository.replace_grades(
                db,
                session.id,
                [
                    {
                        "q_idx": result.q_idx,
                        "score": result.score,
                        "comment": result.comment,
                        "stage_grading": result.stage_grading.to_json(),
                    }
                    for result in results
                ],
                delete_existing=bool(existing),
                now=now
            )
        except ConflictError:
            # 동시에 들어온 다른 채점 요청의 결과를 그대로 사용
            concurrent = await self.repository.list_grades(db, session.id)
            logger.info(f"동시 채점 요청이 먼저 완료됨 - 세션: {session.id}, 점수 {len(concurrent)}건")
            return AutoGradeData(
                grades_count=len(concurrent),
                grades=[GradeData.model_validate(grade) for grade in concurrent],
                skipped=True
            )

        summary = None
        if grades:
            summary = await self.summary_service.generate_best_effort(
                db, session, exam, contexts, {grade.q_idx: grade.score for grade in grades}
            )

        logger.info(f"자동 채점 완료 - 세션: {session.id}, 점수 {len(grades)}건")
        return AutoGradeData(
            grades_count=len(grades),
            grades=[GradeData.model_validate(grade) for grade in grades],
            summary=summary
        )

    async def generate_summary(
        self,
        db: AsyncSession,
        session_id: str,
        instructor_id: Optional[str] = None
    ) -> SessionSummary:
        """종합 평가 재생성 (실패 시 OracleFailure 그대로 전달)"""
        session, exam = await self.registry.get_session_with_exam(db, session_id)
        self.ensure_exam_owner(exam, instructor_id)
        contexts, grades = await self._build_contexts(exam, session.id)
        return await self.summary_service.generate(
            db, session, exam, contexts, {grade.q_idx: grade.score for grade in grades}
        )

    async def _build_view(
        self,
        session: models.ExamSession,
        exam: ExamData
    ) -> GradingViewData:
        submissions, messages, grades = await self._load_session_records(session.id)
        submission_data = {}
        for q_idx, submission in submissions.items():
            data = SubmissionData.model_validate(submission)
            data.answer = resolve_answer_text(submission.answer, submission.compressed_answer_data)
            submission_data[q_idx] = data

        return GradingViewData(
            session=SessionData.model_validate(session),
            exam=exam,
            submissions_by_question=submission_data,
            messages_by_question=messages,
            grades_by_question={grade.q_idx: GradeData.model_validate(grade) for grade in grades},
            overall_score=overall_score(grades, len(exam.questions)),
            summary=session.ai_summary
        )

    async def get_grading(
        self,
        db: AsyncSession,
        session_id: str,
        instructor_id: Optional[str] = None
    ) -> GradingViewData:
        """교사 채점 화면 데이터"""
        session, exam = await self.registry.get_session_with_exam(db, session_id)
        self.ensure_exam_owner(exam, instructor_id)
        return await self._build_view(session, exam)

    async def get_session_report(
        self,
        db: AsyncSession,
        session_id: str,
        user_id: str,
        role: str
    ) -> GradingViewData:
        """학생 본인 또는 담당 교사용 세션 리포트"""
        session, exam = await self.registry.get_session_with_exam(db, session_id)
        if role == "instructor":
            self.ensure_exam_owner(exam, user_id)
        elif session.student_id != user_id:
            raise ForbiddenError("본인의 응시 세션이 아닙니다")
        return await self._build_view(session, exam)

    async def save_grade(
        self,
        db: AsyncSession,
        session_id: str,
        request: SaveGradeRequest,
        instructor_id: Optional[str] = None
    ) -> GradeData:
        """교사 수동 채점 (0-100 범위 밖은 거부)"""
        session, exam = await self.registry.get_session_with_exam(db, session_id)
        self.ensure_exam_owner(exam, instructor_id)
        self.registry.ensure_question(exam, request.q_idx)
        if not 0 <= request.score <= 100:
            raise ValidationError(f"점수는 0-100 사이여야 합니다: {request.score}")

        grade = await self.repository.upsert_grade(
            db,
            session.id,
            request.q_idx,
            request.score,
            request.comment,
            request.stage_grading.to_json() if request.stage_grading else None
        )
        return GradeData.model_validate(grade)

    async def get_final_grades(
        self,
        db: AsyncSession,
        exam_id: str,
        instructor_id: Optional[str] = None
    ) -> FinalGradesData:
        """시험의 모든 세션 점수 (세션별로 묶음)"""
        exam = ExamData.from_model(await self.registry.get_exam(db, exam_id))
        self.ensure_exam_owner(exam, instructor_id)

        result = await db.execute(
            select(models.ExamSession)
            .filter_by(exam_id=exam.id)
            .order_by(models.ExamSession.created_at)
        )
        sessions = list(result.scalars().all())
        grades_by_session = await self.repository.list_grades_for_sessions(db, [s.id for s in sessions])

        rows = []
        for session in sessions:
            grades = grades_by_session.get(session.id, [])
            rows.append(SessionGrades(
                session_id=session.id,
                student_id=session.student_id,
                submitted_at=session.submitted_at,
                overall_score=overall_score(grades, len(exam.questions)),
                grades=[GradeData.model_validate(grade) for grade in grades]
            ))
        return FinalGradesData(exam_id=exam.id, sessions=rows)
