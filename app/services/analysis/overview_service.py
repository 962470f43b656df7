"""시험 단위 통계

학생마다 대표 세션 하나(가장 최근 제출 세션, 없으면 가장 최근 미제출 세션)만 집계한다.
AI 호출 없이 저장된 점수, 대화, 답안만 사용한다.
"""
import logging
from datetime import datetime
from typing import Dict, List, Optional, Sequence, Tuple
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from app import models
from app.core.exceptions import ForbiddenError
from app.database import async_session_maker
from app.schemas.analytics import (
    DistributionBucket,
    ExamOverview,
    ExamStatistics,
    PiePoint,
    QuestionTypeAnalysis,
    QuestionTypeCount,
    RadarPoint,
    RubricAnalysis,
    StageAnalysis,
    StagePoint,
    StageScores,
    StudentRow,
)
from app.schemas.exam import ExamData
from app.services.grading.grading_repository import GradingRepository
from app.services.session.session_registry import SessionRegistry
from app.utils.compression import decompress_data
from app.utils.datetime_utils import minutes_between
from app.utils.db_utils import run_concurrent_reads
from app.utils.scoring import is_number, mean, population_std, round_half_up, round_half_up_1

logger = logging.getLogger(__name__)

# (상한, 라벨) - 상한 포함, 마지막 구간은 상한 없음
SCORE_BUCKETS = [(20, "0-20"), (40, "21-40"), (60, "41-60"), (80, "61-80"), (None, "81-100")]
QUESTION_COUNT_BUCKETS = [(0, "0"), (3, "1-3"), (6, "4-6"), (10, "7-10"), (None, "11+")]
ANSWER_LENGTH_BUCKETS = [(100, "0-100"), (300, "101-300"), (500, "301-500"), (1000, "501-1000"), (None, "1001+")]
DURATION_BUCKETS = [(20, "0-20"), (40, "21-40"), (60, "41-60"), (80, "61-80"), (None, "81+")]

STAGE_NAMES = ("chat", "answer", "feedback")
STAGE_CHART_LABELS = {"chat": "Clarification", "answer": "답안 작성", "feedback": "Reflection"}

QUESTION_TYPES = ("concept", "calculation", "strategy", "other")
QUESTION_TYPE_LABELS = {
    "concept": "개념 질문",
    "calculation": "계산 질문",
    "strategy": "전략 질문",
    "other": "기타",
}


def bucketize(values: Sequence[float], buckets) -> List[DistributionBucket]:
    result = [DistributionBucket(range=label) for _, label in buckets]
    for value in values:
        for index, (upper, _) in enumerate(buckets):
            if upper is None or value <= upper:
                result[index].count += 1
                break
    return result


def count_question_types(message_types: Sequence[Optional[str]]) -> QuestionTypeCount:
    counts = QuestionTypeCount()
    for message_type in message_types:
        name = message_type if message_type in QUESTION_TYPES else "other"
        setattr(counts, name, getattr(counts, name) + 1)
    return counts


def select_representative_sessions(sessions: Sequence[models.ExamSession]) -> List[models.ExamSession]:
    """학생별 대표 세션 선택"""
    chosen: Dict[str, models.ExamSession] = {}
    for session in sessions:
        current = chosen.get(session.student_id)
        if current is None or _session_rank(session) > _session_rank(current):
            chosen[session.student_id] = session
    return list(chosen.values())


def _session_rank(session: models.ExamSession) -> Tuple:
    if session.submitted_at is not None:
        return (1, session.submitted_at, session.created_at or datetime.min)
    return (0, session.created_at or datetime.min, datetime.min)


def answer_length(submission: models.Submission) -> int:
    """답안 컬럼이 비어 있을 때만 압축 데이터를 해제해서 센다"""
    answer = submission.answer or ""
    if not answer and submission.compressed_answer_data:
        try:
            payload = decompress_data(submission.compressed_answer_data)
            if isinstance(payload, dict):
                answer = str(payload.get("answer") or "")
            elif isinstance(payload, str):
                answer = payload
        except ValueError as e:
            logger.warning(f"답안 압축 해제 실패 - 제출 {submission.id}: {str(e)}")
    return len(answer)


def build_student_row(
    session: models.ExamSession,
    grades: Sequence[models.Grade],
    user_message_types: Sequence[Optional[str]],
    submissions: Sequence[models.Submission],
    essay_only: bool
) -> StudentRow:
    scores = [grade.score for grade in grades if is_number(grade.score)]
    stage_lists: Dict[str, List[int]] = {name: [] for name in STAGE_NAMES}
    rubric_lists: Dict[str, List[float]] = {}

    for grade in grades:
        stage_grading = grade.stage_grading if isinstance(grade.stage_grading, dict) else {}
        for name in STAGE_NAMES:
            if essay_only and name == "feedback":
                continue
            stage = stage_grading.get(name)
            if not isinstance(stage, dict):
                continue
            if is_number(stage.get("score")):
                stage_lists[name].append(stage["score"])
            rubric_scores = stage.get("rubric_scores")
            if isinstance(rubric_scores, dict):
                for area, value in rubric_scores.items():
                    if is_number(value):
                        rubric_lists.setdefault(area, []).append(value)

    stage_scores = StageScores(**{
        name: round_half_up(mean(values)) if values else None
        for name, values in stage_lists.items()
    })

    total_length = sum(answer_length(submission) for submission in submissions)
    exam_duration = None
    if session.submitted_at and session.created_at:
        exam_duration = minutes_between(session.created_at, session.submitted_at)

    return StudentRow(
        session_id=session.id,
        student_id=session.student_id,
        score=round_half_up(mean(scores)) if scores else None,
        question_count=len(user_message_types),
        question_type_count=count_question_types(user_message_types),
        answer_length=round_half_up(total_length / len(submissions)) if submissions else 0,
        submitted_at=session.submitted_at,
        created_at=session.created_at,
        exam_duration=exam_duration,
        stage_scores=stage_scores,
        rubric_scores={area: round_half_up_1(mean(values)) for area, values in rubric_lists.items()}
    )


def _sort_key(row: StudentRow):
    # 점수 있는 학생 먼저 (높은 점수 순), 그 다음 제출한 학생 먼저
    return (
        row.score is None,
        -(row.score or 0),
        row.submitted_at is None,
    )


def _rounded_mean(values: Sequence[float]) -> int:
    return round_half_up(mean(values)) if values else 0


def build_overview(exam: ExamData, rows: List[StudentRow]) -> ExamOverview:
    essay_only = exam.is_essay_only
    scores = [row.score for row in rows if row.score is not None]
    question_counts = [row.question_count for row in rows]
    answer_lengths = [row.answer_length for row in rows]
    durations = [row.exam_duration for row in rows if row.exam_duration is not None]

    stage_averages = {}
    for name in STAGE_NAMES:
        values = [getattr(row.stage_scores, name) for row in rows]
        stage_averages[name] = _rounded_mean([v for v in values if v is not None])
    if essay_only:
        stage_averages["feedback"] = 0

    rubric_lists: Dict[str, List[float]] = {}
    for row in rows:
        for area, value in row.rubric_scores.items():
            rubric_lists.setdefault(area, []).append(value)
    rubric_averages = {area: round_half_up_1(mean(values)) for area, values in rubric_lists.items()}

    chart_stages = [name for name in STAGE_NAMES if not (essay_only and name == "feedback")]
    comparison = [
        StagePoint(stage=STAGE_CHART_LABELS[name], score=stage_averages[name])
        for name in chart_stages
    ] if rows else []

    type_totals = QuestionTypeCount(**{
        name: sum(getattr(row.question_type_count, name) for row in rows)
        for name in QUESTION_TYPES
    })

    return ExamOverview(
        exam_id=exam.id,
        exam_title=exam.title,
        total_students=len(rows),
        submitted_students=sum(1 for row in rows if row.submitted_at is not None),
        average_score=_rounded_mean(scores),
        average_questions=_rounded_mean(question_counts),
        average_answer_length=_rounded_mean(answer_lengths),
        average_exam_duration=_rounded_mean(durations),
        standard_deviation_score=round_half_up(population_std(scores)),
        standard_deviation_questions=round_half_up(population_std(question_counts)),
        standard_deviation_answer_length=round_half_up(population_std(answer_lengths)),
        standard_deviation_exam_duration=round_half_up(population_std(durations)),
        students=sorted(rows, key=_sort_key),
        statistics=ExamStatistics(
            score_distribution=bucketize(scores, SCORE_BUCKETS),
            question_count_distribution=bucketize(question_counts, QUESTION_COUNT_BUCKETS),
            answer_length_distribution=bucketize(answer_lengths, ANSWER_LENGTH_BUCKETS),
            exam_duration_distribution=bucketize(durations, DURATION_BUCKETS),
        ),
        stage_analysis=StageAnalysis(
            average_scores=StageScores(**stage_averages),
            comparison_data=comparison,
            has_feedback=not essay_only
        ),
        rubric_analysis=RubricAnalysis(
            average_scores=rubric_averages,
            radar_data=[
                RadarPoint(area=item.evaluationArea, score=rubric_averages.get(item.evaluationArea, 0))
                for item in exam.rubric
            ]
        ),
        question_type_analysis=QuestionTypeAnalysis(
            distribution=type_totals,
            pie_data=[
                PiePoint(name=QUESTION_TYPE_LABELS[name], value=getattr(type_totals, name))
                for name in QUESTION_TYPES
                if getattr(type_totals, name) > 0
            ]
        )
    )


async def _list_user_message_types(db: AsyncSession, session_ids: List[str]) -> Dict[str, List[Optional[str]]]:
    """세션별 학생 질문의 message_type 목록"""
    grouped: Dict[str, List[Optional[str]]] = {session_id: [] for session_id in session_ids}
    result = await db.execute(
        select(models.Message.session_id, models.Message.message_type)
        .where(models.Message.session_id.in_(session_ids), models.Message.role == "user")
        .order_by(models.Message.id)
    )
    for session_id, message_type in result.all():
        grouped.setdefault(session_id, []).append(message_type)
    return grouped


async def _list_submissions(db: AsyncSession, session_ids: List[str]) -> Dict[str, List[models.Submission]]:
    grouped: Dict[str, List[models.Submission]] = {session_id: [] for session_id in session_ids}
    result = await db.execute(
        select(models.Submission).where(models.Submission.session_id.in_(session_ids))
    )
    for submission in result.scalars().all():
        grouped.setdefault(submission.session_id, []).append(submission)
    return grouped


class OverviewService:
    def __init__(
        self,
        registry: SessionRegistry,
        repository: GradingRepository,
        session_factory: async_sessionmaker = async_session_maker
    ):
        self.registry = registry
        self.repository = repository
        self.session_factory = session_factory

    async def get_exam_overview(
        self,
        db: AsyncSession,
        exam_id: str,
        instructor_id: Optional[str] = None
    ) -> ExamOverview:
        exam = ExamData.from_model(await self.registry.get_exam(db, exam_id))
        if instructor_id is not None and exam.instructor_id != instructor_id:
            raise ForbiddenError("해당 시험의 담당 교사가 아닙니다")

        result = await db.execute(
            select(models.ExamSession)
            .filter_by(exam_id=exam.id)
            .order_by(models.ExamSession.created_at.desc())
        )
        sessions = select_representative_sessions(list(result.scalars().all()))
        if not sessions:
            return build_overview(exam, [])

        session_ids = [session.id for session in sessions]
        grades, message_types, submissions = await run_concurrent_reads(
            self.session_factory,
            lambda read_db: self.repository.list_grades_for_sessions(read_db, session_ids),
            lambda read_db: _list_user_message_types(read_db, session_ids),
            lambda read_db: _list_submissions(read_db, session_ids),
        )

        rows = [
            build_student_row(
                session,
                grades.get(session.id, []),
                message_types.get(session.id, []),
                submissions.get(session.id, []),
                exam.is_essay_only
            )
            for session in sessions
        ]
        logger.info(f"시험 통계 집계 - 시험: {exam.id}, 학생 수: {len(rows)}")
        return build_overview(exam, rows)
