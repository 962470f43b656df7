from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func
import logging
from datetime import datetime
from typing import Dict, List, Optional
from app import models
from app.schemas.session import MessageData
from app.utils.compression import resolve_message_content
from app.utils.datetime_utils import utcnow

logger = logging.getLogger(__name__)


def to_message_data(message: models.Message) -> MessageData:
    return MessageData(
        id=message.id,
        q_idx=message.q_idx,
        role=message.role,
        content=resolve_message_content(message.content, message.compressed_content),
        created_at=message.created_at
    )


class MessageService:
    """문항별 AI 대화 기록 (append-only)"""

    async def list_messages(self, db: AsyncSession, session_id: str) -> List[MessageData]:
        result = await db.execute(
            select(models.Message)
            .filter_by(session_id=session_id)
            .order_by(models.Message.created_at, models.Message.id)
        )
        return [to_message_data(row) for row in result.scalars().all()]

    async def list_by_question(self, db: AsyncSession, session_id: str) -> Dict[int, List[MessageData]]:
        grouped: Dict[int, List[MessageData]] = {}
        for message in await self.list_messages(db, session_id):
            grouped.setdefault(message.q_idx, []).append(message)
        return grouped

    async def count_by_question(self, db: AsyncSession, session_id: str) -> Dict[int, int]:
        result = await db.execute(
            select(models.Message.q_idx, func.count(models.Message.id))
            .where(models.Message.session_id == session_id)
            .group_by(models.Message.q_idx)
        )
        return {q_idx: count for q_idx, count in result.all()}

    def add_message(
        self,
        db: AsyncSession,
        session_id: str,
        q_idx: int,
        role: str,
        content: str,
        message_type: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> models.Message:
        """세션에 메시지 추가 (commit 은 호출하는 쪽에서)"""
        message = models.Message(
            session_id=session_id,
            q_idx=q_idx,
            role=role,
            content=content,
            message_type=message_type,
            created_at=now or utcnow()
        )
        db.add(message)
        return message
