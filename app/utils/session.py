import redis.asyncio as redis
from typing import Optional, Dict, Union
import json
from datetime import timedelta
import logging
from app.core.config import settings
from app.core.session import MemorySessionStore

logger = logging.getLogger(__name__)

class RedisSessionStore:
    def __init__(self, url: Optional[str] = None, prefix: Optional[str] = None):
        self.redis = redis.from_url(
            url or settings.REDIS_URL,
            encoding="utf-8",
            decode_responses=True
        )
        self.prefix = prefix if prefix is not None else settings.REDIS_PREFIX
        self.expire_time = timedelta(hours=settings.SESSION_EXPIRE_HOURS)

    def _key(self, session_id: str) -> str:
        return f"{self.prefix}session:{session_id}"

    async def create_session(self, session_id: str, data: Dict) -> None:
        """세션 생성"""
        try:
            await self.redis.setex(
                self._key(session_id),
                int(self.expire_time.total_seconds()),
                json.dumps(data)
            )
        except Exception as e:
            logger.error(f"세션 생성 중 오류 발생: {str(e)}")
            raise

    async def get_session(self, session_id: str) -> Optional[Dict]:
        """세션 조회"""
        try:
            key = self._key(session_id)
            data = await self.redis.get(key)
            if data:
                # 세션 접근시마다 만료 시간 갱신
                await self.redis.expire(
                    key,
                    int(self.expire_time.total_seconds())
                )
                return json.loads(data)
            return None
        except Exception as e:
            logger.error(f"세션 조회 중 오류 발생: {str(e)}")
            raise

    async def delete_session(self, session_id: str) -> None:
        """세션 삭제"""
        try:
            await self.redis.delete(self._key(session_id))
        except Exception as e:
            logger.error(f"세션 삭제 중 오류 발생: {str(e)}")
            raise

    async def cleanup(self) -> None:
        """연결 종료"""
        await self.redis.aclose()

SessionStore = Union[MemorySessionStore, RedisSessionStore]

def create_session_store() -> SessionStore:
    """SESSION_STORE 설정에 따라 로그인 세션 저장소 생성"""
    if settings.SESSION_STORE == "redis":
        logger.info(f"Redis 세션 저장소 사용: {settings.REDIS_URL}")
        return RedisSessionStore()
    logger.info("메모리 세션 저장소 사용")
    return MemorySessionStore(expire_hours=settings.SESSION_EXPIRE_HOURS)
