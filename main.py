from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import uvicorn
from dotenv import load_dotenv
import logging
from contextlib import asynccontextmanager

# .env 파일 로드 (설정 import 전에)
load_dotenv()

from app.core.config import settings
from app.core.exceptions import AppError
from app.database import init_db
from app.dependencies import init_app
from app.routers import (
    auth_router,
    exam_router,
    session_router,
    submission_router,
    grading_router
)
from app.schemas.base import ResponseBase

# 로깅 설정
logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

@asynccontextmanager
async def lifespan(app: FastAPI):
    """앱 시작/종료 시 실행되는 이벤트 핸들러"""
    try:
        await init_db()
        await init_app(app)
        logger.info("Application startup completed")
        yield
    finally:
        logger.info("Application shutdown")

# FastAPI 앱 설정
app = FastAPI(
    title="Exam Grading API",
    description="AI-assisted exam session and rubric grading API",
    version="1.0.0",
    lifespan=lifespan
)

# CORS 설정
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} 실패 ({exc.status_code}): {exc.detail}")
    else:
        logger.info(f"{request.method} {request.url.path} 거부 ({exc.status_code}): {exc.detail}")
    body = ResponseBase(success=False, message=exc.message, error=exc.detail)
    return JSONResponse(status_code=exc.status_code, content=body.model_dump())

# 라우터 초기화 함수 정의
def init_routers(app: FastAPI):
    """라우터 초기화"""
    app.include_router(auth_router, prefix="/api")
    app.include_router(exam_router, prefix="/api")
    app.include_router(session_router, prefix="/api")
    app.include_router(submission_router, prefix="/api")
    app.include_router(grading_router, prefix="/api")

# 라우터 초기화 함수 호출
init_routers(app)

# 헬스체크 엔드포인트
@app.get("/health")
async def health_check():
    return {"status": "healthy"}

if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
        reload_dirs=["app"]
    )
