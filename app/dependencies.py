import logging
from typing import Optional
from fastapi import FastAPI
from sqlalchemy.ext.asyncio import async_sessionmaker
from app.core.config import settings
from app.database import async_session_maker
from app.services.analysis.overview_service import OverviewService
from app.services.analysis.summary_service import SummaryService
from app.services.assistant.assistant_service import AssistantService, ScoringOracle
from app.services.auth.auth_service import AuthService
from app.services.exam.exam_service import ExamService
from app.services.grading.grading_assistant import GradingAssistant
from app.services.grading.grading_processor import GradingProcessor
from app.services.grading.grading_repository import GradingRepository
from app.services.grading.grading_service import GradingService
from app.services.session.session_registry import SessionRegistry
from app.services.submission.feedback_service import FeedbackService
from app.utils.session import SessionStore, create_session_store

logger = logging.getLogger(__name__)

# 설정 로깅
logger.info(f"OPENAI_API_KEY exists: {bool(settings.OPENAI_API_KEY)}")

class Services:
    def __init__(self):
        self.auth_service: Optional[AuthService] = None
        self.exam_service: Optional[ExamService] = None
        self.session_registry: Optional[SessionRegistry] = None
        self.feedback_service: Optional[FeedbackService] = None
        self.grading_service: Optional[GradingService] = None
        self.overview_service: Optional[OverviewService] = None

services = Services()

def build_services(
    oracle: ScoringOracle,
    session_store: SessionStore,
    session_factory: async_sessionmaker = async_session_maker,
    target: Optional[Services] = None
) -> Services:
    """서비스 객체 조립 (테스트에서는 가짜 oracle 과 테스트 DB 를 넣는다)"""
    target = target or services
    registry = SessionRegistry()
    repository = GradingRepository()
    processor = GradingProcessor(GradingAssistant(oracle), concurrency=settings.GRADING_CONCURRENCY)

    target.auth_service = AuthService(session_store)
    target.exam_service = ExamService()
    target.session_registry = registry
    target.feedback_service = FeedbackService(oracle, registry)
    target.grading_service = GradingService(
        repository=repository,
        processor=processor,
        registry=registry,
        summary_service=SummaryService(oracle),
        session_factory=session_factory
    )
    target.overview_service = OverviewService(registry, repository, session_factory=session_factory)
    return target

async def init_services():
    """서비스 초기화"""
    try:
        logger.info("Initializing AssistantService...")
        assistant_service = AssistantService()
        await assistant_service.initialize()
        logger.info("AssistantService initialized successfully")

        build_services(assistant_service, create_session_store())
        logger.info("Services initialized successfully")

    except Exception as e:
        logger.error(f"Error initializing services: {e}")
        raise

def _require(service, name: str):
    if service is None:
        raise RuntimeError(f"Services not initialized: {name}")
    return service

async def get_services() -> Services:
    """서비스 인스턴스 반환"""
    return services

def get_auth_service() -> AuthService:
    return _require(services.auth_service, "auth_service")

def get_exam_service() -> ExamService:
    return _require(services.exam_service, "exam_service")

def get_session_registry() -> SessionRegistry:
    return _require(services.session_registry, "session_registry")

def get_feedback_service() -> FeedbackService:
    return _require(services.feedback_service, "feedback_service")

def get_grading_service() -> GradingService:
    return _require(services.grading_service, "grading_service")

def get_overview_service() -> OverviewService:
    return _require(services.overview_service, "overview_service")

async def init_app(app: FastAPI):
    """앱 초기화"""
    try:
        await init_services()
        logger.info("Services initialized successfully")
    except Exception as e:
        logger.error(f"Service initialization failed: {str(e)}")
        raise
