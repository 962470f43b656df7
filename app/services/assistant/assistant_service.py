from typing import Dict, Any, Optional, Protocol
import asyncio
import json
import logging
from openai import OpenAIError
from app.services.base_service import BaseService
from app.core.config import Settings, settings as default_settings
from app.core.exceptions import OracleFailure

logger = logging.getLogger(__name__)


class ScoringOracle(Protocol):
    """system/user 프롬프트를 받아 JSON 객체를 돌려주는 채점 모델"""

    async def complete_json(self, system_prompt: str, user_prompt: str) -> Dict[str, Any]:
        ...


class AssistantService(BaseService):
    """OpenAI chat completions (JSON 모드) 호출 래퍼"""

    def __init__(self, settings: Optional[Settings] = None):
        super().__init__(settings or default_settings)
        self.model = self.settings.AI_MODEL
        self.timeout = self.settings.ORACLE_TIMEOUT_SECONDS

    async def initialize(self):
        """서비스 초기화"""
        try:
            self.client = self._initialize_client()
            logger.info(f"AssistantService initialized successfully (model: {self.model})")
        except Exception as e:
            logger.error(f"Failed to initialize AssistantService: {e}")
            raise

    async def complete_json(self, system_prompt: str, user_prompt: str) -> Dict[str, Any]:
        if self.client is None:
            await self.initialize()

        try:
            response = await asyncio.wait_for(
                self.client.chat.completions.create(
                    model=self.model,
                    messages=[
                        {"role": "system", "content": system_prompt},
                        {"role": "user", "content": user_prompt},
                    ],
                    response_format={"type": "json_object"},
                ),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as e:
            logger.warning(f"AI 응답 시간 초과 ({self.timeout}s)")
            raise OracleFailure(f"AI 응답 시간이 {self.timeout}초를 초과했습니다") from e
        except OpenAIError as e:
            logger.error(f"OpenAI 호출 실패: {e}")
            raise OracleFailure(f"AI 호출 중 오류가 발생했습니다: {e}") from e

        content = response.choices[0].message.content if response.choices else None
        if not content:
            raise OracleFailure("AI 응답이 비어 있습니다")

        try:
            payload = json.loads(content)
        except json.JSONDecodeError as e:
            logger.error(f"AI 응답 JSON 파싱 실패: {content[:200]}")
            raise OracleFailure("AI 응답을 JSON 으로 해석할 수 없습니다") from e

        if not isinstance(payload, dict):
            raise OracleFailure("AI 응답이 JSON 객체가 아닙니다")
        return payload
