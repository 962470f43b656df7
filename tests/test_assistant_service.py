import asyncio
from types import SimpleNamespace

import httpx
import pytest
from openai import APIConnectionError

from app.core.config import Settings
from app.core.exceptions import OracleFailure
from app.schemas.exam import Question, RubricItem
from app.services.assistant.assistant_service import AssistantService
from app.services.grading.grading_assistant import GradingAssistant, QuestionContext
from app.services.grading.grading_processor import GradingProcessor

RUBRIC = [RubricItem(evaluationArea="정확성", detailedCriteria="사실에 부합")]


def _response(content):
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


class StubCompletions:
    """chat.completions.create 대역"""

    def __init__(self, result=None, error=None, delay=0.0):
        self.result = result
        self.error = error
        self.delay = delay
        self.requests = []

    async def create(self, **kwargs):
        self.requests.append(kwargs)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.result


def _service(completions: StubCompletions) -> AssistantService:
    service = AssistantService(Settings(OPENAI_API_KEY="test-key", ORACLE_TIMEOUT_SECONDS=0.05))
    service.client = SimpleNamespace(chat=SimpleNamespace(completions=completions))
    return service


async def test_json_object_is_returned():
    completions = StubCompletions(result=_response('{"score": 80, "comment": "좋음"}'))
    service = _service(completions)

    assert await service.complete_json("system", "user") == {"score": 80, "comment": "좋음"}
    request = completions.requests[0]
    assert request["response_format"] == {"type": "json_object"}
    assert [m["role"] for m in request["messages"]] == ["system", "user"]


async def test_timeout_becomes_oracle_failure():
    service = _service(StubCompletions(result=_response('{"score": 80}'), delay=1.0))

    with pytest.raises(OracleFailure, match="초과"):
        await service.complete_json("system", "user")


async def test_openai_error_becomes_oracle_failure():
    error = APIConnectionError(request=httpx.Request("POST", "https://api.openai.com/v1/chat/completions"))
    service = _service(StubCompletions(error=error))

    with pytest.raises(OracleFailure) as exc_info:
        await service.complete_json("system", "user")
    assert exc_info.value.__cause__ is error


@pytest.mark.parametrize("content", [None, ""])
async def test_empty_content_becomes_oracle_failure(content):
    service = _service(StubCompletions(result=_response(content)))

    with pytest.raises(OracleFailure, match="비어"):
        await service.complete_json("system", "user")


async def test_missing_choices_becomes_oracle_failure():
    service = _service(StubCompletions(result=SimpleNamespace(choices=[])))

    with pytest.raises(OracleFailure):
        await service.complete_json("system", "user")


async def test_non_json_content_becomes_oracle_failure():
    service = _service(StubCompletions(result=_response("not json")))

    with pytest.raises(OracleFailure, match="JSON"):
        await service.complete_json("system", "user")


@pytest.mark.parametrize("content", ["[1, 2]", '"80"', "80"])
async def test_non_object_json_becomes_oracle_failure(content):
    service = _service(StubCompletions(result=_response(content)))

    with pytest.raises(OracleFailure, match="객체"):
        await service.complete_json("system", "user")


@pytest.mark.parametrize("completions", [
    StubCompletions(result=_response('{"score": 80}'), delay=1.0),
    StubCompletions(error=APIConnectionError(request=httpx.Request("POST", "https://api.openai.com"))),
    StubCompletions(result=_response("not json")),
    StubCompletions(result=_response("[1, 2]")),
])
async def test_failed_call_leaves_stage_ungraded(completions):
    processor = GradingProcessor(GradingAssistant(_service(completions)))
    context = QuestionContext(q_idx=0, question=Question(prompt="대한민국의 수도는?"), answer="서울")

    assert await processor.grade_question(context, RUBRIC, essay_only=True) is None
    assert len(completions.requests) == 1
