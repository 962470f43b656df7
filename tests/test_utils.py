from datetime import datetime, timedelta, timezone

import pytest

from app.core.exceptions import UnauthorizedError
from app.core.session import MemorySessionStore
from app.services.auth.auth_service import AuthService
from app.utils.compression import compress_data, decompress_data, resolve_answer_text, resolve_message_content
from app.utils.datetime_utils import minutes_between, to_naive_utc
from app.utils.scoring import clamp, is_number, mean, population_std, round_half_up, round_half_up_1
from conftest import T0


class TestCompression:
    def test_json_payload(self):
        packed = compress_data({"answer": "서울은 대한민국의 수도입니다."})
        assert decompress_data(packed) == {"answer": "서울은 대한민국의 수도입니다."}

    def test_plain_text_payload(self):
        assert decompress_data(compress_data("그냥 문자열")) == "그냥 문자열"

    def test_empty_input_is_rejected(self):
        with pytest.raises(ValueError):
            decompress_data("")

    def test_compressed_answer_preferred(self):
        packed = compress_data({"answer": "압축본"})
        assert resolve_answer_text("원본", packed) == "압축본"
        assert resolve_answer_text("원본", None) == "원본"
        assert resolve_answer_text(None, None) == ""

    def test_message_content(self):
        assert resolve_message_content("원본", compress_data("압축 메시지")) == "압축 메시지"
        assert resolve_message_content("원본", None) == "원본"


class TestScoring:
    def test_round_half_up(self):
        assert round_half_up(0.5) == 1
        assert round_half_up(1.5) == 2
        assert round_half_up(2.5) == 3
        assert round_half_up(2.49) == 2

    def test_round_half_up_1(self):
        assert round_half_up_1(3.75) == 3.8
        assert round_half_up_1(4.5) == 4.5

    def test_clamp_and_numbers(self):
        assert clamp(120, 0, 100) == 100
        assert clamp(-3, 0, 5) == 0
        assert is_number(3.2)
        assert not is_number(True)
        assert not is_number(float("nan"))
        assert not is_number("3")

    def test_mean_and_std(self):
        assert mean([]) is None
        assert mean([0, 100]) == 50
        assert population_std([]) == 0.0
        assert population_std([80, 61]) == pytest.approx(9.5)


def test_minutes_between_rounds_and_normalizes():
    aware = datetime(2025, 3, 1, 9, 0, tzinfo=timezone.utc)
    assert to_naive_utc(aware) == T0
    assert minutes_between(T0, T0 + timedelta(minutes=25, seconds=30)) == 26
    assert minutes_between(aware, T0 + timedelta(minutes=10)) == 10


async def test_auth_service_sessions():
    auth = AuthService(MemorySessionStore())
    token = await auth.issue_session("instructor-1", "instructor")

    user = await auth.resolve(token)
    assert user.user_id == "instructor-1"
    assert user.is_instructor is True

    await auth.revoke_session(token)
    with pytest.raises(UnauthorizedError):
        await auth.resolve(token)
    with pytest.raises(UnauthorizedError):
        await auth.resolve(None)


async def test_expired_login_session():
    store = MemorySessionStore(expire_hours=0)
    await store.create_session("token", {"user_id": "student-1", "role": "student"})
    store._expiry["token"] = T0
    assert await store.get_session("token") is None
