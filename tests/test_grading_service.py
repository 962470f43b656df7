import asyncio

import pytest

from app.core.exceptions import ConflictError, ForbiddenError, OracleFailure, ValidationError
from app.core.session import MemorySessionStore
from app.dependencies import Services, build_services
from app.schemas.grading import SaveGradeRequest
from app.schemas.session import MessageCreate
from app.schemas.submission import AnswerItem, SubmitRequest
from app.services.grading.grading_service import overall_score
from conftest import T0, FakeOracle, classify_prompt, minutes

ESSAY = [{"idx": 0, "type": "essay", "prompt": "대한민국의 수도를 설명하시오."}]
SHORT = [{"idx": 0, "type": "short", "prompt": "대한민국의 수도는?"}]


async def _submitted_session(services, db_session, make_exam, questions=None, with_feedback=False, chat=True):
    await make_exam(questions=questions)
    registry = services.session_registry
    started = await registry.init_session(db_session, "EXAM-1", "student-1", "A", now=T0)
    session_id = started.session.id

    if chat:
        await registry.append_message(
            db_session, session_id, "student-1",
            MessageCreate(q_idx=0, role="user", content="수도의 정의를 알려주세요."), now=minutes(1)
        )
        await registry.append_message(
            db_session, session_id, "student-1",
            MessageCreate(q_idx=0, role="assistant", content="정부가 있는 도시입니다."), now=minutes(2)
        )

    await registry.save_draft(db_session, session_id, "student-1", 0, "The capital is Seoul.", now=minutes(3))
    if with_feedback:
        await registry.submissions.save_feedback(db_session, session_id, 0, "근거는 무엇인가요?", now=minutes(4))
        await registry.submissions.save_reply(db_session, session_id, 0, "정부 청사가 있습니다.", now=minutes(4))

    await registry.submit(
        db_session, session_id, "student-1",
        SubmitRequest(answers=[AnswerItem(q_idx=0, text="The capital is Seoul.")]),
        now=minutes(5),
    )
    return session_id


async def test_auto_grade_combines_stage_scores(services, db_session, make_exam, oracle):
    session_id = await _submitted_session(services, db_session, make_exam)

    result = await services.grading_service.auto_grade(db_session, session_id, now=minutes(6))

    assert result.skipped is False
    assert result.grades_count == 1
    grade = result.grades[0]
    assert set(grade.stage_grading) == {"chat", "answer"}
    assert grade.score == 85
    assert grade.comment == "채팅 단계: 80점, 답안 단계: 90점, 피드백 단계: N/A점"
    assert grade.stage_grading["answer"]["rubric_scores"] == {"정확성": 5}
    assert result.summary is not None
    assert result.summary.key_quotes == ["The capital is Seoul.", "수도의 정의를 알려주세요."]
    assert sorted(oracle.calls) == ["answer", "chat", "summary"]


async def test_auto_grade_is_idempotent(services, db_session, make_exam, oracle):
    session_id = await _submitted_session(services, db_session, make_exam)
    grading = services.grading_service

    first = await grading.auto_grade(db_session, session_id, now=minutes(6))
    calls_after_first = len(oracle.calls)
    second = await grading.auto_grade(db_session, session_id, now=minutes(7))

    assert second.skipped is True
    assert [g.id for g in second.grades] == [g.id for g in first.grades]
    assert [g.score for g in second.grades] == [g.score for g in first.grades]
    assert len(oracle.calls) == calls_after_first


async def test_force_regrade_replaces_grades(services, db_session, make_exam, oracle):
    session_id = await _submitted_session(services, db_session, make_exam)
    grading = services.grading_service

    first = await grading.auto_grade(db_session, session_id, now=minutes(6))
    oracle.responses["answer"] = {"score": 50, "rubric_scores": {"정확성": 2}}
    regraded = await grading.auto_grade(db_session, session_id, force_regrade=True, now=minutes(7))
    again = await grading.auto_grade(db_session, session_id, force_regrade=True, now=minutes(8))

    assert regraded.skipped is False
    assert regraded.grades[0].score == 65
    assert first.grades[0].created_at == minutes(6)
    assert regraded.grades[0].created_at == minutes(7)
    stored = await grading.repository.list_grades(db_session, session_id)
    assert len(stored) == 1
    assert stored[0].created_at == again.grades[0].created_at == minutes(8)


class BarrierOracle(FakeOracle):
    """답안 채점 요청이 정해진 수만큼 모일 때까지 응답을 미룬다"""

    def __init__(self, parties: int):
        super().__init__()
        self.parties = parties
        self.arrived = 0
        self.released = asyncio.Event()

    async def complete_json(self, system_prompt: str, user_prompt: str):
        if classify_prompt(system_prompt) == "answer":
            self.arrived += 1
            if self.arrived >= self.parties:
                self.released.set()
            await asyncio.wait_for(self.released.wait(), timeout=5)
        return await super().complete_json(system_prompt, user_prompt)


async def test_concurrent_auto_grade_returns_existing_grades(services, db_session, make_exam, session_factory):
    session_id = await _submitted_session(services, db_session, make_exam, chat=False)
    racing = build_services(BarrierOracle(2), MemorySessionStore(), session_factory, target=Services())

    async with session_factory() as first, session_factory() as second:
        results = await asyncio.gather(
            racing.grading_service.auto_grade(first, session_id, now=minutes(6)),
            racing.grading_service.auto_grade(second, session_id, now=minutes(6)),
        )

    assert sorted(result.skipped for result in results) == [False, True]
    assert [result.grades_count for result in results] == [1, 1]
    assert results[0].grades[0].score == results[1].grades[0].score == 90
    stored = await services.grading_service.repository.list_grades(db_session, session_id)
    assert len(stored) == 1


async def test_essay_only_exam_skips_feedback_stage(services, db_session, make_exam, oracle):
    session_id = await _submitted_session(services, db_session, make_exam, questions=ESSAY, with_feedback=True)

    result = await services.grading_service.auto_grade(db_session, session_id, now=minutes(6))

    assert "feedback" not in result.grades[0].stage_grading
    assert "feedback" not in oracle.calls


async def test_feedback_stage_graded_when_reply_exists(services, db_session, make_exam, oracle):
    session_id = await _submitted_session(services, db_session, make_exam, questions=SHORT, with_feedback=True)

    result = await services.grading_service.auto_grade(db_session, session_id, now=minutes(6))

    grade = result.grades[0]
    assert set(grade.stage_grading) == {"chat", "answer", "feedback"}
    assert grade.score == 80


async def test_unparseable_responses_leave_question_ungraded(services, db_session, make_exam, oracle):
    session_id = await _submitted_session(services, db_session, make_exam)
    oracle.responses["chat"] = {"score": "abc"}
    oracle.responses["answer"] = {"comment": "점수 없음"}

    result = await services.grading_service.auto_grade(db_session, session_id, now=minutes(6))

    assert result.grades_count == 0
    assert result.grades == []
    assert result.summary is None
    assert "summary" not in oracle.calls


async def test_out_of_range_scores_are_clamped(services, db_session, make_exam, oracle):
    session_id = await _submitted_session(services, db_session, make_exam)
    oracle.responses["chat"] = {"score": 150.7, "rubric_scores": {"정확성": 7.6}}
    oracle.responses["answer"] = {"score": -12, "rubric_scores": {"정확성": -1}}

    result = await services.grading_service.auto_grade(db_session, session_id, now=minutes(6))

    stages = result.grades[0].stage_grading
    assert stages["chat"]["score"] == 100
    assert stages["chat"]["rubric_scores"] == {"정확성": 5}
    assert stages["answer"]["score"] == 0
    assert stages["answer"]["rubric_scores"] == {"정확성": 0}
    assert result.grades[0].score == 50


async def test_invalid_summary_does_not_fail_grading(services, db_session, make_exam, oracle):
    session_id = await _submitted_session(services, db_session, make_exam)
    oracle.responses["summary"] = {
        "sentiment": "positive",
        "summary": "좋습니다.",
        "keyQuotes": ["하나뿐인 인용"],
    }

    result = await services.grading_service.auto_grade(db_session, session_id, now=minutes(6))

    assert result.grades_count == 1
    assert result.summary is None
    session = await services.session_registry.get_session(db_session, session_id)
    assert session.ai_summary is None


async def test_summary_is_trimmed_and_stored(services, db_session, make_exam, oracle):
    session_id = await _submitted_session(services, db_session, make_exam)
    oracle.responses["summary"] = {
        "sentiment": "neutral",
        "summary": "보통입니다.",
        "strengths": ["a", "b", "c", "d"],
        "weaknesses": [],
        "keyQuotes": ["q1", "q2", "q3"],
    }

    summary = await services.grading_service.generate_summary(db_session, session_id)

    assert summary.strengths == ["a", "b", "c"]
    assert summary.key_quotes == ["q1", "q2"]
    session = await services.session_registry.get_session(db_session, session_id)
    assert session.ai_summary["narrative"] == "보통입니다."


async def test_explicit_summary_failure_is_reported(services, db_session, make_exam, oracle):
    session_id = await _submitted_session(services, db_session, make_exam)
    oracle.responses["summary"] = OracleFailure("timeout")

    with pytest.raises(OracleFailure):
        await services.grading_service.generate_summary(db_session, session_id)


async def test_unsubmitted_session_cannot_be_graded(services, db_session, make_exam):
    await make_exam()
    started = await services.session_registry.init_session(db_session, "EXAM-1", "student-1", "A", now=T0)

    with pytest.raises(ConflictError):
        await services.grading_service.auto_grade(db_session, started.session.id, now=minutes(1))


async def test_expired_session_is_graded_after_auto_submit(services, db_session, make_exam):
    await make_exam(duration=30)
    registry = services.session_registry
    started = await registry.init_session(db_session, "EXAM-1", "student-1", "A", now=T0)
    await registry.save_draft(db_session, started.session.id, "student-1", 0, "서울", now=minutes(10))

    result = await services.grading_service.auto_grade(db_session, started.session.id, now=minutes(45))

    assert result.grades_count == 1
    assert result.grades[0].score == 90


async def test_other_instructor_is_forbidden(services, db_session, make_exam):
    session_id = await _submitted_session(services, db_session, make_exam)

    with pytest.raises(ForbiddenError):
        await services.grading_service.auto_grade(db_session, session_id, instructor_id="instructor-2", now=minutes(6))


async def test_manual_grade_and_grading_view(services, db_session, make_exam):
    session_id = await _submitted_session(services, db_session, make_exam)
    grading = services.grading_service

    saved = await grading.save_grade(
        db_session, session_id, SaveGradeRequest(q_idx=0, score=73, comment="수동 채점"), "instructor-1"
    )
    assert saved.score == 73

    with pytest.raises(ValidationError):
        await grading.save_grade(db_session, session_id, SaveGradeRequest(q_idx=3, score=50), "instructor-1")

    view = await grading.get_grading(db_session, session_id, "instructor-1")
    assert view.overall_score == 73
    assert view.submissions_by_question[0].answer == "The capital is Seoul."
    assert [m.role for m in view.messages_by_question[0]] == ["user", "assistant"]

    report = await grading.get_session_report(db_session, session_id, "student-1", "student")
    assert report.grades_by_question[0].comment == "수동 채점"
    with pytest.raises(ForbiddenError):
        await grading.get_session_report(db_session, session_id, "student-2", "student")


async def test_final_grades_lists_each_session(services, db_session, make_exam):
    session_id = await _submitted_session(services, db_session, make_exam)
    await services.grading_service.auto_grade(db_session, session_id, now=minutes(6))

    exam = await services.session_registry.get_exam_by_code(db_session, "EXAM-1")
    final = await services.grading_service.get_final_grades(db_session, exam.id, "instructor-1")

    assert [row.session_id for row in final.sessions] == [session_id]
    assert final.sessions[0].overall_score == 85


def test_overall_score_divides_by_question_count():
    class G:
        def __init__(self, score):
            self.score = score

    assert overall_score([G(80), G(91)], 2) == 86
    assert overall_score([G(80)], 2) == 40
    assert overall_score([], 2) is None
