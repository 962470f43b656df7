import logging
from typing import Dict, List, Optional
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import SQLAlchemyError
from app import models
from app.core.exceptions import OracleFailure, PersistenceFailure
from app.schemas.exam import ExamData
from app.schemas.grading import SessionSummary
from app.services.assistant.assistant_service import ScoringOracle
from app.services.grading.grading_assistant import QuestionContext, rubric_text

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = "당신은 전문 평가위원입니다. 학생의 전체 답안을 종합적으로 분석하여 요약 평가를 생성합니다."


class SummaryService:
    """세션 단위 종합 평가 생성"""

    def __init__(self, oracle: ScoringOracle):
        self.oracle = oracle

    def build_user_prompt(
        self,
        exam: ExamData,
        contexts: List[QuestionContext],
        scores: Dict[int, int]
    ) -> str:
        blocks = []
        for number, context in enumerate(contexts, start=1):
            transcript = "\n".join(
                f"{'학생' if msg.role == 'user' else 'AI'}: {msg.content}"
                for msg in context.transcript
            ) or "대화 없음"
            blocks.append(
                f"문제 {number}:\n{context.question.prompt or ''}\n\n"
                f"대화 기록:\n{transcript}\n\n"
                f"답안:\n{context.answer or '답안 없음'}\n\n"
                f"점수: {scores.get(context.q_idx, 0)}점\n"
            )
        questions_text = "\n---\n\n".join(blocks)

        return f"""
시험 제목: {exam.title}

{rubric_text(exam.rubric, heading="[평가 루브릭]")}

[학생의 답안 및 점수]
{questions_text}

위 내용을 바탕으로 학생의 전체적인 수행 능력을 상세하게 분석하여 요약 평가해주세요.
다음 항목을 반드시 포함해야 합니다:
1. 전체적인 평가 (긍정적/부정적/중립적)
2. 종합 의견: 학생의 답안 전반에 대한 깊이 있는 분석. 답안의 논리성, 정확성, 창의성 등을 종합적으로 고려하세요.
3. 주요 강점 (3가지 이내): 구체적인 예시를 들어 설명하세요.
4. 개선이 필요한 점 (3가지 이내): 구체적인 개선 방안과 함께 제시하세요.
5. 핵심 인용구 (2가지): 학생의 답안 중 평가에 결정적인 영향을 미친 문장이나 구절을 그대로 2개 뽑아주세요.

JSON 형식으로 응답해주세요:
{{
  "sentiment": "positive" | "negative" | "neutral",
  "summary": "상세한 종합 의견 텍스트",
  "strengths": ["강점1", "강점2", ...],
  "weaknesses": ["약점1", "약점2", ...],
  "keyQuotes": ["인용구1", "인용구2"]
}}"""

    async def synthesize(
        self,
        exam: ExamData,
        contexts: List[QuestionContext],
        scores: Dict[int, int]
    ) -> SessionSummary:
        """종합 평가 생성. 호출 실패나 형식 오류는 OracleFailure"""
        payload = await self.oracle.complete_json(
            SYSTEM_PROMPT, self.build_user_prompt(exam, contexts, scores)
        )
        try:
            return SessionSummary.model_validate(payload)
        except PydanticValidationError as e:
            raise OracleFailure(f"종합 평가 응답 형식이 올바르지 않습니다: {e}") from e

    async def save_summary(
        self,
        db: AsyncSession,
        session: models.ExamSession,
        summary: SessionSummary
    ) -> None:
        try:
            session.ai_summary = summary.model_dump()
            await db.commit()
            await db.refresh(session)
            logger.info(f"종합 평가 저장 - 세션: {session.id}")
        except SQLAlchemyError as e:
            await db.rollback()
            logger.error(f"종합 평가 저장 실패 - 세션: {session.id}: {str(e)}")
            raise PersistenceFailure(f"종합 평가 저장 중 오류가 발생했습니다: {str(e)}") from e

    async def generate(
        self,
        db: AsyncSession,
        session: models.ExamSession,
        exam: ExamData,
        contexts: List[QuestionContext],
        scores: Dict[int, int]
    ) -> SessionSummary:
        summary = await self.synthesize(exam, contexts, scores)
        await self.save_summary(db, session, summary)
        return summary

    async def generate_best_effort(
        self,
        db: AsyncSession,
        session: models.ExamSession,
        exam: ExamData,
        contexts: List[QuestionContext],
        scores: Dict[int, int]
    ) -> Optional[SessionSummary]:
        """채점 직후 호출. AI 실패는 요약만 비우고 채점 결과에는 영향 없음"""
        try:
            return await self.generate(db, session, exam, contexts, scores)
        except OracleFailure as e:
            logger.error(f"종합 평가 생성 실패, 요약 없이 진행 - 세션: {session.id}: {e.detail}")
            return None
