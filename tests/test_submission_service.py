from datetime import timedelta

import pytest

from app import models
from app.core.exceptions import OracleFailure, ValidationError
from app.services.submission.submission_service import select_canonical_submission
from app.utils.compression import compress_data
from conftest import T0, minutes


async def _start(services, db_session, make_exam, **exam_kwargs):
    await make_exam(**exam_kwargs)
    started = await services.session_registry.init_session(db_session, "EXAM-1", "student-1", "A", now=T0)
    return started.session.id


async def test_draft_history_only_grows_on_change(services, db_session, make_exam):
    session_id = await _start(services, db_session, make_exam)
    registry = services.session_registry

    first = await registry.save_draft(db_session, session_id, "student-1", 0, "abc", now=minutes(1))
    assert first.edit_count == 0
    assert first.answer_history == []

    await registry.save_draft(db_session, session_id, "student-1", 0, "abcd", now=minutes(2))
    same = await registry.save_draft(db_session, session_id, "student-1", 0, "abcd", now=minutes(3))

    assert same.answer == "abcd"
    assert same.edit_count == 1
    assert same.answer_history == [
        {"prior_text": "abc", "prior_updated_at": minutes(1).isoformat()}
    ]
    assert same.updated_at == minutes(2)


async def test_get_all_is_ordered_by_question(services, db_session, make_exam):
    session_id = await _start(
        services, db_session, make_exam,
        questions=[{"idx": 0, "prompt": "첫 문제"}, {"idx": 1, "prompt": "둘째 문제"}],
    )
    registry = services.session_registry
    await registry.save_draft(db_session, session_id, "student-1", 1, "둘째 답", now=minutes(1))
    await registry.save_draft(db_session, session_id, "student-1", 0, "첫 답", now=minutes(2))

    rows = await registry.submissions.get_all(db_session, session_id)
    assert [row.q_idx for row in rows] == [0, 1]


def _row(row_id, answer="", ai_feedback=None, created_offset=0):
    return models.Submission(
        id=row_id,
        session_id="s1",
        q_idx=0,
        answer=answer,
        ai_feedback=ai_feedback,
        created_at=T0 + timedelta(minutes=created_offset),
    )


class TestCanonicalSubmission:
    def test_feedback_row_wins(self):
        rows = [_row(1, answer="a much longer answer"), _row(2, answer="short", ai_feedback="검토")]
        assert select_canonical_submission(rows).id == 2

    def test_empty_feedback_does_not_count(self):
        rows = [_row(1, answer="a much longer answer"), _row(2, answer="short", ai_feedback="")]
        assert select_canonical_submission(rows).id == 1

    def test_longer_answer_wins(self):
        rows = [_row(1, answer="short", created_offset=5), _row(2, answer="much longer")]
        assert select_canonical_submission(rows).id == 2

    def test_most_recent_wins_on_tie(self):
        rows = [_row(1, answer="same", created_offset=0), _row(2, answer="same", created_offset=3)]
        assert select_canonical_submission(rows).id == 2

    def test_empty(self):
        assert select_canonical_submission([]) is None


async def test_feedback_requires_answer(services, db_session, make_exam):
    session_id = await _start(services, db_session, make_exam)

    with pytest.raises(ValidationError):
        await services.feedback_service.request_feedback(db_session, session_id, "student-1", 0, now=minutes(1))


async def test_feedback_and_reply_are_stored(services, db_session, make_exam, oracle):
    session_id = await _start(services, db_session, make_exam)
    await services.session_registry.save_draft(db_session, session_id, "student-1", 0, "서울", now=minutes(1))

    with_feedback = await services.feedback_service.request_feedback(
        db_session, session_id, "student-1", 0, now=minutes(2)
    )
    assert with_feedback.ai_feedback == "수도라고 판단한 근거는 무엇인가요?"
    assert oracle.calls == ["feedback_request"]

    replied = await services.feedback_service.submit_reply(
        db_session, session_id, "student-1", 0, "정부 기관이\x00 모여 있습니다.", now=minutes(3)
    )
    assert replied.student_reply == "정부 기관이 모여 있습니다."
    assert replied.answer == "서울"


async def test_feedback_without_text_is_oracle_failure(services, db_session, make_exam, oracle):
    session_id = await _start(services, db_session, make_exam)
    await services.session_registry.save_draft(db_session, session_id, "student-1", 0, "서울", now=minutes(1))
    oracle.responses["feedback_request"] = {"comment": "형식이 다름"}

    with pytest.raises(OracleFailure):
        await services.feedback_service.request_feedback(db_session, session_id, "student-1", 0, now=minutes(2))


async def test_compressed_answer_is_used_for_feedback(services, db_session, make_exam, oracle):
    session_id = await _start(services, db_session, make_exam)
    db_session.add(models.Submission(
        session_id=session_id,
        q_idx=0,
        answer="",
        compressed_answer_data=compress_data({"answer": "압축된 답안"}),
        answer_history=[],
        edit_count=0,
        created_at=minutes(1),
        updated_at=minutes(1),
    ))
    await db_session.commit()

    prompts = []
    oracle.responses["feedback_request"] = lambda user_prompt: prompts.append(user_prompt) or {"feedback": "근거는?"}

    await services.feedback_service.request_feedback(db_session, session_id, "student-1", 0, now=minutes(2))
    assert "압축된 답안" in prompts[0]
