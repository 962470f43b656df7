from openai import AsyncOpenAI
import logging
from typing import Optional
from app.core.config import Settings

logger = logging.getLogger(__name__)

class BaseService:
    """OpenAI 클라이언트를 쓰는 서비스 공통 부분"""

    def __init__(self, settings: Settings):
        self.settings = settings
        if not self.settings.OPENAI_API_KEY:
            logger.error("OPENAI_API_KEY not found in settings")
            raise ValueError("OPENAI_API_KEY not found in settings")
        self.client: Optional[AsyncOpenAI] = None

    def _initialize_client(self) -> AsyncOpenAI:
        """OpenAI 클라이언트 초기화 (재시도는 설정값, 기본 0회)"""
        try:
            client = AsyncOpenAI(
                api_key=self.settings.OPENAI_API_KEY,
                max_retries=self.settings.ORACLE_MAX_RETRIES,
                timeout=self.settings.ORACLE_TIMEOUT_SECONDS,
            )
            logger.info("OpenAI client initialized successfully")
            return client
        except Exception as e:
            logger.error(f"Failed to initialize OpenAI client: {e}")
            raise
