import uuid
import logging
from typing import Optional
from pydantic import ValidationError as PydanticValidationError
from app.core.exceptions import UnauthorizedError, ForbiddenError
from app.schemas.auth import CurrentUser
from app.schemas.exam import ExamData
from app.utils.session import SessionStore

logger = logging.getLogger(__name__)

class AuthService:
    """로그인 세션 쿠키로 사용자(학생/교사) 확인"""

    def __init__(self, session_store: SessionStore):
        self.session_store = session_store

    async def issue_session(self, user_id: str, role: str) -> str:
        """로그인 세션 발급 (세션 id 반환)"""
        session_id = str(uuid.uuid4())
        await self.session_store.create_session(session_id, {"user_id": user_id, "role": role})
        logger.info(f"로그인 세션 발급 - 사용자: {user_id}, 역할: {role}")
        return session_id

    async def revoke_session(self, session_id: str) -> None:
        await self.session_store.delete_session(session_id)

    async def resolve(self, session_id: Optional[str]) -> CurrentUser:
        if not session_id:
            raise UnauthorizedError("로그인이 필요합니다")

        session_data = await self.session_store.get_session(session_id)
        if not session_data:
            raise UnauthorizedError("세션이 만료되었습니다")

        try:
            return CurrentUser.model_validate(session_data)
        except PydanticValidationError as e:
            logger.error(f"로그인 세션 데이터 형식 오류: {session_id}")
            raise UnauthorizedError("세션 정보가 올바르지 않습니다") from e

    @staticmethod
    def ensure_exam_owner(exam: ExamData, user: CurrentUser) -> None:
        if not user.is_instructor or exam.instructor_id != user.user_id:
            raise ForbiddenError("해당 시험의 담당 교사가 아닙니다")
