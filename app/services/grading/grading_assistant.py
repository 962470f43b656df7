import logging
from dataclasses import dataclass, field
from typing import Dict, Any, List, Optional
from app.core.exceptions import OracleFailure
from app.schemas.exam import ExamData, Question, RubricItem
from app.schemas.grading import StageScore
from app.schemas.session import MessageData
from app.services.assistant.assistant_service import ScoringOracle
from app.utils.compression import resolve_answer_text
from app.utils.scoring import clamp, is_number, round_half_up

logger = logging.getLogger(__name__)

STAGES = ("chat", "answer", "feedback")

DEFAULT_COMMENTS = {
    "chat": "채팅 단계 평가 완료",
    "answer": "답안 평가 완료",
    "feedback": "피드백 대응 평가 완료",
}

STAGE_LABELS = {
    "chat": "채팅 단계",
    "answer": "답안 단계",
    "feedback": "피드백 단계",
}


@dataclass
class QuestionContext:
    """한 문항 채점에 필요한 입력"""
    q_idx: int
    question: Question
    transcript: List[MessageData] = field(default_factory=list)
    answer: str = ""
    ai_feedback: Optional[str] = None
    student_reply: Optional[str] = None


def rubric_text(rubric: List[RubricItem], heading: str = "**평가 루브릭 기준:**") -> str:
    if not rubric:
        return ""
    lines = [
        f"{index + 1}. {item.evaluationArea}\n   - 세부 기준: {item.detailedCriteria}"
        for index, item in enumerate(rubric)
    ]
    return f"\n{heading}\n" + "\n".join(lines) + "\n"


def _rubric_schema(rubric: List[RubricItem]) -> str:
    return ",\n".join(
        f'    "{item.evaluationArea}": 0-5 사이의 정수 (0: 전혀 충족하지 않음, 5: 완벽하게 충족)'
        for item in rubric
    )


def _question_block(question: Question) -> str:
    block = f"**문제:**\n{question.prompt or ''}\n"
    if question.ai_context:
        block += f"\n**문제 컨텍스트:**\n{question.ai_context}\n"
    return block


_STAGE_ROLE = {
    "chat": "학생과 AI의 대화 과정을 루브릭 기준에 따라 평가하고 점수를 부여합니다.",
    "answer": "학생의 최종 답안을 루브릭 기준에 따라 평가하고 점수를 부여합니다.",
    "feedback": "AI 피드백에 대한 학생의 반박 답변을 루브릭 기준에 따라 평가하고 점수를 부여합니다.",
}

_STAGE_GUIDES = {
    "chat": [
        "학생이 AI와의 대화에서 보여준 질문의 질, 문제 이해도, 개념 파악 수준을 평가하세요.",
        "AI의 답변을 통해 학생이 얼마나 효과적으로 학습하고 개선했는지 평가하세요.",
    ],
    "answer": [
        "학생의 답안이 루브릭의 각 평가 영역을 얼마나 충족하는지 평가하세요.",
        "답안의 완성도, 논리성, 정확성을 종합적으로 평가하세요.",
    ],
    "feedback": [
        "학생이 AI 피드백을 제대로 이해하고 반박했는지 평가하세요.",
        "학생의 반박 내용이 논리적이고 타당한지 평가하세요.",
        "피드백을 통해 학생이 얼마나 성장했는지 평가하세요.",
    ],
}

_STAGE_COMMENT_HINT = {
    "chat": "대화 과정에서 보여준 학습 태도와 이해도를 평가한 내용을 한국어로 작성하세요.",
    "answer": "답안의 강점과 개선점을 루브릭 기준에 따라 평가한 내용을 한국어로 작성하세요.",
    "feedback": "피드백에 대한 학생의 반박 답변을 루브릭 기준에 따라 평가한 내용을 한국어로 작성하세요.",
}


def build_system_prompt(stage: str, rubric: List[RubricItem]) -> str:
    guides = (
        ["제공된 루브릭의 각 평가 영역과 기준을 정확히 검토하세요."]
        + _STAGE_GUIDES[stage]
        + [
            "전체 점수는 0-100점 사이의 정수로 부여하세요.",
            "각 루브릭 항목별로 0-5점 척도로 평가하세요 (0: 전혀 충족하지 않음, 5: 완벽하게 충족).",
            "구체적이고 건설적인 피드백을 제공하세요.",
        ]
    )
    guide_text = "\n".join(f"{i + 1}. {line}" for i, line in enumerate(guides))
    return f"""당신은 전문 평가위원입니다. {_STAGE_ROLE[stage]}

{rubric_text(rubric)}

평가 지침:
{guide_text}

응답 형식 (JSON):
{{
  "score": 75,
  "comment": "{_STAGE_COMMENT_HINT[stage]}",
  "rubric_scores": {{
{_rubric_schema(rubric)}
  }}
}}"""


def build_user_prompt(stage: str, context: QuestionContext) -> str:
    question = _question_block(context.question)
    answer = context.answer or "답안이 없습니다."

    if stage == "chat":
        transcript = "\n\n".join(
            f"{'학생' if msg.role == 'user' else 'AI'}: {msg.content}"
            for msg in context.transcript
        )
        return (
            "다음 정보를 바탕으로 채팅 단계를 평가해주세요:\n\n"
            f"{question}\n"
            f"**학생과 AI의 대화 기록:**\n{transcript}\n\n"
            "위 정보를 바탕으로 루브릭 기준에 따라 채팅 단계의 점수와 피드백을 제공해주세요."
        )

    if stage == "answer":
        return (
            "다음 정보를 바탕으로 최종 답안을 평가해주세요:\n\n"
            f"{question}\n"
            f"**학생의 최종 답안:**\n{answer}\n\n"
            "위 정보를 바탕으로 루브릭 기준에 따라 답안의 점수와 피드백을 제공해주세요."
        )

    return (
        "다음 정보를 바탕으로 피드백 대응 단계를 평가해주세요:\n\n"
        f"{question}\n"
        f"**학생의 최종 답안:**\n{answer}\n\n"
        f"**AI 피드백:**\n{context.ai_feedback}\n\n"
        f"**학생의 반박 답변:**\n{context.student_reply}\n\n"
        "위 정보를 바탕으로 루브릭 기준에 따라 피드백 대응 단계의 점수와 피드백을 제공해주세요."
    )


def parse_stage_result(stage: str, payload: Dict[str, Any], rubric: List[RubricItem]) -> StageScore:
    """AI 응답을 단계 점수로 변환 (점수 0-100, 루브릭 항목 0-5 로 clamp 후 반올림)"""
    if not isinstance(payload, dict):
        raise OracleFailure(f"{stage} 단계 응답이 JSON 객체가 아닙니다")

    raw_score = payload.get("score")
    if not is_number(raw_score):
        raise OracleFailure(f"{stage} 단계 응답에 숫자 점수가 없습니다: {raw_score!r}")

    comment = payload.get("comment")
    if not isinstance(comment, str) or not comment.strip():
        comment = DEFAULT_COMMENTS[stage]

    rubric_scores: Dict[str, int] = {}
    raw_rubric = payload.get("rubric_scores")
    if isinstance(raw_rubric, dict):
        for item in rubric:
            value = raw_rubric.get(item.evaluationArea)
            if is_number(value):
                rubric_scores[item.evaluationArea] = round_half_up(clamp(value, 0, 5))

    return StageScore(
        score=round_half_up(clamp(raw_score, 0, 100)),
        comment=comment,
        rubric_scores=rubric_scores or None
    )


class GradingAssistant:
    """단계별 채점 프롬프트 구성과 AI 호출"""

    def __init__(self, oracle: ScoringOracle):
        self.oracle = oracle

    def eligible_stages(self, context: QuestionContext, essay_only: bool) -> List[str]:
        stages = []
        if context.transcript:
            stages.append("chat")
        if context.answer:
            stages.append("answer")
        if not essay_only and context.ai_feedback and context.student_reply:
            stages.append("feedback")
        return stages

    async def evaluate_stage(
        self,
        stage: str,
        context: QuestionContext,
        rubric: List[RubricItem]
    ) -> StageScore:
        payload = await self.oracle.complete_json(
            build_system_prompt(stage, rubric),
            build_user_prompt(stage, context)
        )
        result = parse_stage_result(stage, payload, rubric)
        logger.info(f"문항 {context.q_idx} {STAGE_LABELS[stage]}: {result.score}점")
        return result


def build_question_contexts(
    exam: ExamData,
    submissions_by_question: Dict[int, Any],
    messages_by_question: Dict[int, List[MessageData]]
) -> List[QuestionContext]:
    """시험 문항마다 답안, 대화, 피드백을 모은다 (q_idx 로 못 찾으면 문항 위치로 찾음)"""
    contexts = []
    for position, question in enumerate(exam.questions):
        q_idx = exam.question_index(position)
        submission = submissions_by_question.get(q_idx)
        if submission is None:
            submission = submissions_by_question.get(position)

        context = QuestionContext(
            q_idx=q_idx,
            question=question,
            transcript=list(messages_by_question.get(q_idx, []))
        )
        if submission is not None:
            context.answer = resolve_answer_text(submission.answer, submission.compressed_answer_data)
            context.ai_feedback = submission.ai_feedback or None
            context.student_reply = submission.student_reply or None
        contexts.append(context)
    return contexts
