import copy
import os
from datetime import datetime, timedelta
from typing import AsyncGenerator, Callable, Dict, Optional

# 앱 모듈 import 전에 테스트 설정
os.environ.setdefault("OPENAI_API_KEY", "test-key")
os.environ.setdefault("SQLALCHEMY_DATABASE_URI", "sqlite+aiosqlite://")
os.environ.setdefault("SESSION_STORE", "memory")

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app import models
from app.core.session import MemorySessionStore
from app.database import Base, get_db
from app.dependencies import (
    Services,
    build_services,
    get_auth_service,
    get_exam_service,
    get_feedback_service,
    get_grading_service,
    get_overview_service,
    get_session_registry,
)

T0 = datetime(2025, 3, 1, 9, 0, 0)

RUBRIC = [{"evaluationArea": "정확성", "detailedCriteria": "사실에 부합"}]

VALID_SUMMARY = {
    "sentiment": "positive",
    "summary": "핵심 개념을 정확히 이해하고 있습니다.",
    "strengths": ["정확한 사실 서술"],
    "weaknesses": ["근거 제시 부족"],
    "keyQuotes": ["The capital is Seoul.", "수도의 정의를 알려주세요."],
}

DEFAULT_RESPONSES = {
    "chat": {"score": 80, "comment": "질문이 구체적입니다.", "rubric_scores": {"정확성": 4}},
    "answer": {"score": 90, "comment": "답안이 정확합니다.", "rubric_scores": {"정확성": 5}},
    "feedback": {"score": 70, "comment": "반박이 논리적입니다.", "rubric_scores": {"정확성": 3}},
    "summary": VALID_SUMMARY,
    "feedback_request": {"feedback": "수도라고 판단한 근거는 무엇인가요?"},
}


def classify_prompt(system_prompt: str) -> str:
    if "요약 평가를 생성" in system_prompt:
        return "summary"
    if "비판적으로 검토" in system_prompt:
        return "feedback_request"
    if "반박 답변을" in system_prompt:
        return "feedback"
    if "대화 과정을" in system_prompt:
        return "chat"
    return "answer"


class FakeOracle:
    """프롬프트 종류별로 정해진 응답을 돌려주는 채점 모델"""

    def __init__(self, responses: Optional[Dict] = None):
        self.responses = copy.deepcopy(DEFAULT_RESPONSES)
        self.responses.update(responses or {})
        self.calls = []

    async def complete_json(self, system_prompt: str, user_prompt: str) -> Dict:
        kind = classify_prompt(system_prompt)
        self.calls.append(kind)
        response = self.responses[kind]
        if isinstance(response, Exception):
            raise response
        if callable(response):
            return response(user_prompt)
        return copy.deepcopy(response)


@pytest.fixture
def oracle() -> FakeOracle:
    return FakeOracle()


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'test.sqlite'}",
        connect_args={"timeout": 30},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    try:
        yield engine
    finally:
        await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def services(oracle, session_factory) -> Services:
    return build_services(oracle, MemorySessionStore(), session_factory, target=Services())


@pytest.fixture
def make_exam(db_session) -> Callable:
    async def _make_exam(
        code: str = "EXAM-1",
        duration: int = 60,
        questions=None,
        rubric=None,
        instructor_id: str = "instructor-1",
    ) -> models.Exam:
        exam = models.Exam(
            code=code,
            title="수도 알아보기",
            instructor_id=instructor_id,
            duration=duration,
            questions=questions if questions is not None else [{"idx": 0, "prompt": "대한민국의 수도는?"}],
            rubric=rubric if rubric is not None else RUBRIC,
            created_at=T0,
        )
        db_session.add(exam)
        await db_session.commit()
        await db_session.refresh(exam)
        return exam

    return _make_exam


def minutes(value: int) -> datetime:
    return T0 + timedelta(minutes=value)


@pytest_asyncio.fixture
async def client(services, session_factory) -> AsyncGenerator[AsyncClient, None]:
    from main import app

    async def _get_test_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = _get_test_db
    app.dependency_overrides[get_auth_service] = lambda: services.auth_service
    app.dependency_overrides[get_exam_service] = lambda: services.exam_service
    app.dependency_overrides[get_session_registry] = lambda: services.session_registry
    app.dependency_overrides[get_feedback_service] = lambda: services.feedback_service
    app.dependency_overrides[get_grading_service] = lambda: services.grading_service
    app.dependency_overrides[get_overview_service] = lambda: services.overview_service

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as async_client:
        yield async_client

    app.dependency_overrides.clear()


@pytest.fixture
def login(services) -> Callable:
    """로그인 세션을 발급하고 쿠키 헤더 반환"""
    async def _login(user_id: str, role: str) -> Dict[str, str]:
        token = await services.auth_service.issue_session(user_id, role)
        return {"Cookie": f"session_id={token}"}

    return _login


