from datetime import timedelta
from typing import Dict, Optional
from app.utils.datetime_utils import utcnow

class MemorySessionStore:
    """프로세스 메모리 로그인 세션 저장소 (개발/테스트용)"""

    def __init__(self, expire_hours: int = 24):
        self._sessions: Dict[str, dict] = {}
        self._expiry: Dict[str, object] = {}
        self.expire_time = timedelta(hours=expire_hours)

    async def create_session(self, session_id: str, data: dict) -> None:
        """세션 생성"""
        self._sessions[session_id] = dict(data)
        self._expiry[session_id] = utcnow() + self.expire_time

    async def get_session(self, session_id: str) -> Optional[dict]:
        """세션 조회 (만료된 세션은 삭제)"""
        if session_id not in self._sessions:
            return None

        if utcnow() > self._expiry[session_id]:
            await self.delete_session(session_id)
            return None

        return self._sessions[session_id]

    async def delete_session(self, session_id: str) -> None:
        """세션 삭제"""
        self._sessions.pop(session_id, None)
        self._expiry.pop(session_id, None)

    async def cleanup(self) -> None:
        self._sessions.clear()
        self._expiry.clear()
