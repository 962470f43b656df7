import logging
from datetime import datetime
from typing import Optional
from sqlalchemy.ext.asyncio import AsyncSession
from app import models
from app.core.exceptions import OracleFailure, ValidationError
from app.schemas.exam import Question
from app.services.assistant.assistant_service import ScoringOracle
from app.services.session.session_registry import SessionRegistry
from app.utils.compression import resolve_answer_text
from app.utils.datetime_utils import utcnow

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """당신은 학생의 답안을 비판적으로 검토하는 교수입니다.
학생이 자신의 논리를 다시 점검하고 반박할 수 있도록, 답안의 약점이나 빠진 관점을 구체적으로 지적하세요.
정답을 알려주지 말고 질문과 반례 중심으로 작성하세요.

JSON 형식으로 응답하세요:
{
  "feedback": "한국어로 작성한 피드백"
}"""


class FeedbackService:
    """시험 중 답안에 대한 AI 피드백 요청 (이후 학생 반박은 피드백 단계 채점 대상)"""

    def __init__(self, oracle: ScoringOracle, registry: SessionRegistry):
        self.oracle = oracle
        self.registry = registry

    def _build_user_prompt(self, question: Question, answer: str) -> str:
        context = f"\n**문제 컨텍스트:**\n{question.ai_context}\n" if question.ai_context else ""
        return (
            f"**문제:**\n{question.prompt}\n{context}\n"
            f"**학생의 답안:**\n{answer}\n\n"
            "위 답안에 대한 비판적 피드백을 작성해주세요."
        )

    async def request_feedback(
        self,
        db: AsyncSession,
        session_id: str,
        student_id: str,
        q_idx: int,
        now: Optional[datetime] = None
    ) -> models.Submission:
        now = now or utcnow()
        session, exam = await self.registry.get_owned_session(db, session_id, student_id)
        await self.registry.ensure_writable(db, session, exam, now)
        self.registry.ensure_question(exam, q_idx)

        submissions = await self.registry.submissions.get_by_question(db, session.id)
        submission = submissions.get(q_idx)
        answer = resolve_answer_text(submission.answer, submission.compressed_answer_data) if submission else ""
        if not answer.strip():
            raise ValidationError("피드백을 받으려면 먼저 답안을 작성해야 합니다")

        position = next(
            i for i in range(len(exam.questions)) if exam.question_index(i) == q_idx
        )
        payload = await self.oracle.complete_json(
            SYSTEM_PROMPT, self._build_user_prompt(exam.questions[position], answer)
        )
        feedback = payload.get("feedback")
        if not isinstance(feedback, str) or not feedback.strip():
            raise OracleFailure("AI 피드백 응답에 feedback 항목이 없습니다")

        logger.info(f"AI 피드백 생성 - 세션: {session.id}, 문항: {q_idx}")
        return await self.registry.submissions.save_feedback(db, session.id, q_idx, feedback, now=now)

    async def submit_reply(
        self,
        db: AsyncSession,
        session_id: str,
        student_id: str,
        q_idx: int,
        reply: str,
        now: Optional[datetime] = None
    ) -> models.Submission:
        """피드백에 대한 학생 반박 저장"""
        now = now or utcnow()
        session, exam = await self.registry.get_owned_session(db, session_id, student_id)
        await self.registry.ensure_writable(db, session, exam, now)
        self.registry.ensure_question(exam, q_idx)
        submission = await self.registry.submissions.save_reply(db, session.id, q_idx, reply, now=now)
        logger.info(f"학생 반박 저장 - 세션: {session.id}, 문항: {q_idx}")
        return submission
