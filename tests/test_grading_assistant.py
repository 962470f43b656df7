import asyncio

import pytest

from app.core.exceptions import OracleFailure
from app.schemas.exam import ExamData, Question, RubricItem
from app.schemas.grading import StageGrading, StageScore
from app.schemas.session import MessageData
from app.services.grading.grading_assistant import (
    GradingAssistant,
    QuestionContext,
    build_question_contexts,
    build_system_prompt,
    parse_stage_result,
)
from app.services.grading.grading_processor import GradingProcessor, aggregate_stages, summarize_stages
from app.utils.scoring import round_half_up
from conftest import FakeOracle, T0

RUBRIC = [RubricItem(evaluationArea="정확성", detailedCriteria="사실에 부합"),
          RubricItem(evaluationArea="논리성", detailedCriteria="근거 제시")]


def _message(role, content, message_id=1):
    return MessageData(id=message_id, q_idx=0, role=role, content=content, created_at=T0)


def _context(**kwargs):
    defaults = {"q_idx": 0, "question": Question(prompt="대한민국의 수도는?")}
    defaults.update(kwargs)
    return QuestionContext(**defaults)


class TestParseStageResult:
    def test_scores_are_clamped_then_rounded(self):
        result = parse_stage_result(
            "answer",
            {"score": 150.7, "comment": "좋음", "rubric_scores": {"정확성": 7.6, "논리성": -2}},
            RUBRIC,
        )
        assert result.score == 100
        assert result.rubric_scores == {"정확성": 5, "논리성": 0}

    def test_half_values_round_up(self):
        result = parse_stage_result("chat", {"score": 84.5, "rubric_scores": {"정확성": 2.5}}, RUBRIC)
        assert result.score == 85
        assert result.rubric_scores == {"정확성": 3}

    def test_missing_comment_uses_default(self):
        result = parse_stage_result("feedback", {"score": 40}, RUBRIC)
        assert result.comment == "피드백 대응 평가 완료"
        assert result.rubric_scores is None

    def test_unknown_rubric_areas_are_dropped(self):
        result = parse_stage_result("answer", {"score": 60, "rubric_scores": {"창의성": 4, "정확성": "3"}}, RUBRIC)
        assert result.rubric_scores is None

    @pytest.mark.parametrize("payload", [
        {"score": "eighty"},
        {"score": None},
        {"score": True},
        {"comment": "점수 없음"},
        ["not", "a", "dict"],
    ])
    def test_unparseable_payload_is_oracle_failure(self, payload):
        with pytest.raises(OracleFailure):
            parse_stage_result("answer", payload, RUBRIC)


class TestEligibleStages:
    def test_only_present_inputs_are_graded(self):
        assistant = GradingAssistant(FakeOracle())
        assert assistant.eligible_stages(_context(), essay_only=False) == []
        assert assistant.eligible_stages(_context(answer="서울"), essay_only=False) == ["answer"]
        assert assistant.eligible_stages(
            _context(transcript=[_message("user", "질문")], answer="서울"), essay_only=False
        ) == ["chat", "answer"]

    def test_feedback_needs_feedback_and_reply(self):
        assistant = GradingAssistant(FakeOracle())
        only_feedback = _context(answer="서울", ai_feedback="근거는?")
        both = _context(answer="서울", ai_feedback="근거는?", student_reply="정부 기관이 있습니다")
        assert "feedback" not in assistant.eligible_stages(only_feedback, essay_only=False)
        assert "feedback" in assistant.eligible_stages(both, essay_only=False)

    def test_essay_only_suppresses_feedback(self):
        assistant = GradingAssistant(FakeOracle())
        both = _context(answer="서울", ai_feedback="근거는?", student_reply="정부 기관이 있습니다")
        assert assistant.eligible_stages(both, essay_only=True) == ["answer"]


def test_system_prompt_lists_rubric():
    prompt = build_system_prompt("chat", RUBRIC)
    assert "1. 정확성" in prompt
    assert "2. 논리성" in prompt
    assert '"정확성": 0-5' in prompt


def test_aggregate_and_comment():
    grading = StageGrading(
        chat=StageScore(score=70, comment="c"),
        answer=StageScore(score=85, comment="a"),
    )
    assert aggregate_stages(grading) == 78
    assert aggregate_stages(StageGrading()) is None
    assert summarize_stages(grading) == "채팅 단계: 70점, 답안 단계: 85점, 피드백 단계: N/A점"


def test_zero_stage_score_is_reported():
    grading = StageGrading(answer=StageScore(score=0, comment="a"))
    assert summarize_stages(grading) == "채팅 단계: N/A점, 답안 단계: 0점, 피드백 단계: N/A점"
    assert aggregate_stages(grading) == 0


async def test_failed_stage_does_not_block_other_stages():
    oracle = FakeOracle({"chat": OracleFailure("timeout")})
    processor = GradingProcessor(GradingAssistant(oracle), concurrency=2)
    context = _context(transcript=[_message("user", "질문")], answer="서울")

    grade = await processor.grade_question(context, RUBRIC, essay_only=True)
    assert set(grade.stage_grading.produced()) == {"answer"}
    assert grade.score == 90


async def test_question_without_output_is_skipped():
    oracle = FakeOracle({"answer": {"score": "n/a"}})
    processor = GradingProcessor(GradingAssistant(oracle))
    contexts = [_context(q_idx=0, answer="서울"), _context(q_idx=1)]

    assert await processor.process_grading(contexts, RUBRIC, essay_only=True) == []
    assert oracle.calls == ["answer"]


async def test_concurrency_limit_is_respected():
    active = 0
    peak = 0

    class SlowOracle:
        async def complete_json(self, system_prompt, user_prompt):
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.01)
            active -= 1
            return {"score": 50}

    processor = GradingProcessor(GradingAssistant(SlowOracle()), concurrency=2)
    contexts = [
        _context(q_idx=i, transcript=[_message("user", "질문")], answer="답")
        for i in range(4)
    ]
    grades = await processor.process_grading(contexts, RUBRIC, essay_only=True)

    assert [grade.q_idx for grade in grades] == [0, 1, 2, 3]
    assert peak <= 2


def test_processor_built_outside_event_loop_runs_in_each_loop():
    class SlowOracle:
        async def complete_json(self, system_prompt, user_prompt):
            await asyncio.sleep(0.01)
            return {"score": 70}

    processor = GradingProcessor(GradingAssistant(SlowOracle()), concurrency=1)
    contexts = [_context(q_idx=i, answer="답") for i in range(3)]

    for _ in range(2):
        grades = asyncio.run(processor.process_grading(contexts, RUBRIC, essay_only=True))
        assert [grade.score for grade in grades] == [70, 70, 70]


def test_contexts_fall_back_to_question_position():
    class Row:
        answer = "위치로 찾은 답안"
        compressed_answer_data = None
        ai_feedback = ""
        student_reply = None

    exam = ExamData(
        id="exam-1", code="EXAM-1", title="t", instructor_id="instructor-1",
        questions=[Question(idx=10, prompt="문제")],
    )
    contexts = build_question_contexts(exam, {0: Row()}, {})
    assert contexts[0].q_idx == 10
    assert contexts[0].answer == "위치로 찾은 답안"
    assert contexts[0].ai_feedback is None


def test_round_half_up_matches_expected_mean():
    assert round_half_up((80 + 85) / 2) == 83
    assert round_half_up(2.5) == 3
    assert round_half_up(-0.5) == 0
