import logging
import asyncio
from dataclasses import dataclass
from typing import List, Optional, Sequence
from app.core.exceptions import OracleFailure
from app.schemas.exam import RubricItem
from app.schemas.grading import StageGrading, StageScore
from app.services.grading.grading_assistant import (
    GradingAssistant,
    QuestionContext,
    STAGE_LABELS,
)
from app.utils.scoring import clamp, round_half_up

logger = logging.getLogger(__name__)


@dataclass
class QuestionGrade:
    q_idx: int
    score: int
    comment: str
    stage_grading: StageGrading


def aggregate_stages(stage_grading: StageGrading) -> Optional[int]:
    """채점된 단계 점수의 평균 (채점된 단계가 없으면 None)"""
    produced = stage_grading.produced()
    if not produced:
        return None
    total = sum(stage.score for stage in produced.values())
    return int(clamp(round_half_up(total / len(produced)), 0, 100))


def summarize_stages(stage_grading: StageGrading) -> str:
    parts = []
    for name in ("chat", "answer", "feedback"):
        stage = getattr(stage_grading, name)
        parts.append(f"{STAGE_LABELS[name]}: {stage.score if stage else 'N/A'}점")
    return ", ".join(parts)


class GradingProcessor:
    """문항별 단계 채점 실행

    한 문항의 단계들은 동시에 실행하고, 전체 AI 호출 수는 세마포어로 제한한다.
    """

    def __init__(self, grading_assistant: GradingAssistant, concurrency: int = 5):
        self.assistant = grading_assistant
        self.concurrency = max(1, concurrency)
        # 이벤트 루프가 뜬 뒤에 만든다 (모듈 import 시점에는 루프가 없음)
        self._semaphore: Optional[asyncio.Semaphore] = None
        self._semaphore_loop: Optional[asyncio.AbstractEventLoop] = None

    def _limiter(self) -> asyncio.Semaphore:
        loop = asyncio.get_running_loop()
        if self._semaphore is None or self._semaphore_loop is not loop:
            self._semaphore = asyncio.Semaphore(self.concurrency)
            self._semaphore_loop = loop
        return self._semaphore

    async def _run_stage(
        self,
        stage: str,
        context: QuestionContext,
        rubric: List[RubricItem]
    ) -> Optional[StageScore]:
        async with self._limiter():
            try:
                return await self.assistant.evaluate_stage(stage, context, rubric)
            except OracleFailure as e:
                logger.error(f"문항 {context.q_idx} {STAGE_LABELS[stage]} 채점 실패, 건너뜀: {e.detail}")
                return None

    async def grade_question(
        self,
        context: QuestionContext,
        rubric: List[RubricItem],
        essay_only: bool
    ) -> Optional[QuestionGrade]:
        stages = self.assistant.eligible_stages(context, essay_only)
        if not stages:
            logger.info(f"문항 {context.q_idx}: 채점할 자료가 없어 건너뜀")
            return None

        results = await asyncio.gather(
            *(self._run_stage(stage, context, rubric) for stage in stages)
        )
        stage_grading = StageGrading(**{
            stage: result for stage, result in zip(stages, results) if result is not None
        })

        score = aggregate_stages(stage_grading)
        if score is None:
            logger.warning(f"문항 {context.q_idx}: 모든 단계 채점 실패, 점수 없음")
            return None

        grade = QuestionGrade(
            q_idx=context.q_idx,
            score=score,
            comment=summarize_stages(stage_grading),
            stage_grading=stage_grading
        )
        logger.info(
            f"문항 {context.q_idx} 종합: {score}점 (stages: {', '.join(stage_grading.produced())})"
        )
        return grade

    async def process_grading(
        self,
        contexts: Sequence[QuestionContext],
        rubric: List[RubricItem],
        essay_only: bool
    ) -> List[QuestionGrade]:
        """모든 문항 채점 (문항 순서 유지)"""
        results = await asyncio.gather(
            *(self.grade_question(context, rubric, essay_only) for context in contexts)
        )
        return [grade for grade in results if grade is not None]
