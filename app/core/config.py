from pydantic_settings import BaseSettings
from typing import Optional, List
from functools import lru_cache
from pathlib import Path

# 기본 디렉토리 설정
BASE_DIR = Path(__file__).resolve().parent.parent.parent

class Settings(BaseSettings):
    BASE_DIR: Path = BASE_DIR

    # OpenAI 설정
    OPENAI_API_KEY: str
    AI_MODEL: str = "gpt-4o-mini"
    ORACLE_TIMEOUT_SECONDS: float = 60.0
    ORACLE_MAX_RETRIES: int = 0

    # 채점 설정
    GRADING_CONCURRENCY: int = 5

    # 디버그 설정
    DEBUG: bool = True
    CORS_ORIGINS: List[str] = ["*"]

    # 로그인 세션 저장소 설정 (memory | redis)
    SESSION_STORE: str = "memory"
    REDIS_URL: str = "redis://localhost:6379"
    REDIS_PREFIX: str = "exam:"
    SESSION_EXPIRE_HOURS: int = 24

    # Database
    SQLALCHEMY_DATABASE_URI: Optional[str] = None
    POSTGRES_SERVER: str = "localhost"
    POSTGRES_USER: str = "exam_user"
    POSTGRES_PASSWORD: str = "exam_password"
    POSTGRES_DB: str = "exam_db"
    POSTGRES_PORT: str = "5432"

    @property
    def DATABASE_URL(self) -> str:
        if self.SQLALCHEMY_DATABASE_URI:
            return self.SQLALCHEMY_DATABASE_URI
        return f"postgresql+asyncpg://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}@{self.POSTGRES_SERVER}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"

@lru_cache()
def get_settings():
    return Settings()

settings = get_settings()
