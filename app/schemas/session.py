from pydantic import BaseModel, Field, ConfigDict
from typing import List, Optional, Literal
from datetime import datetime
from .base import ResponseBase
from .exam import ExamData

__all__ = [
    "InitSessionRequest",
    "SessionData",
    "MessageData",
    "MessageCreate",
    "SessionFlags",
    "InitSessionData",
    "InitSessionResponse",
    "HeartbeatData",
    "HeartbeatResponse",
    "MessageResponse",
]

class InitSessionRequest(BaseModel):
    exam_code: str = Field(..., min_length=1)
    device_fingerprint: Optional[str] = None

class SessionData(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    exam_id: str
    student_id: str
    created_at: datetime
    device_fingerprint: Optional[str] = None
    is_active: bool
    last_heartbeat_at: Optional[datetime] = None
    submitted_at: Optional[datetime] = None
    used_clarifications: int = 0

class MessageData(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    q_idx: int
    role: str
    content: str
    created_at: datetime

class MessageCreate(BaseModel):
    q_idx: int = Field(..., ge=0)
    role: Literal["user", "assistant"]
    content: str = Field(..., min_length=1)
    message_type: Optional[str] = None

class SessionFlags(BaseModel):
    is_retake_blocked: bool = False
    auto_submitted: bool = False
    time_expired: bool = False

class InitSessionData(BaseModel):
    exam: ExamData
    session: SessionData
    messages: List[MessageData] = []
    remaining_seconds: Optional[int] = None
    flags: SessionFlags = SessionFlags()

class InitSessionResponse(ResponseBase[InitSessionData]):
    pass

class HeartbeatData(BaseModel):
    session: SessionData
    remaining_seconds: Optional[int] = None
    flags: SessionFlags = SessionFlags()

class HeartbeatResponse(ResponseBase[HeartbeatData]):
    pass

class MessageResponse(ResponseBase[MessageData]):
    pass
