from pydantic import BaseModel, Field, ConfigDict
from typing import List, Optional, Literal
from datetime import datetime
from .base import ResponseBase
from .session import SessionData

__all__ = [
    "AnswerHistoryEntry",
    "SubmissionData",
    "DraftRequest",
    "AnswerItem",
    "TranscriptItem",
    "SubmitRequest",
    "SubmitData",
    "ReplyRequest",
    "FeedbackRequest",
    "SubmissionResponse",
    "SubmitResponse",
]

class AnswerHistoryEntry(BaseModel):
    prior_text: str
    prior_updated_at: Optional[str] = None

class SubmissionData(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    session_id: str
    q_idx: int
    answer: str = ""
    ai_feedback: Optional[str] = None
    student_reply: Optional[str] = None
    answer_history: List[AnswerHistoryEntry] = []
    edit_count: int = 0
    created_at: datetime
    updated_at: datetime

class DraftRequest(BaseModel):
    q_idx: int = Field(..., ge=0)
    text: str

class AnswerItem(BaseModel):
    q_idx: int = Field(..., ge=0)
    text: str

class TranscriptItem(BaseModel):
    q_idx: int = Field(..., ge=0)
    role: Literal["user", "assistant"]
    content: str

class SubmitRequest(BaseModel):
    answers: List[AnswerItem] = []
    transcript: List[TranscriptItem] = []

class SubmitData(BaseModel):
    session: SessionData
    submissions: List[SubmissionData] = []

class ReplyRequest(BaseModel):
    q_idx: int = Field(..., ge=0)
    reply: str = Field(..., min_length=1)

class FeedbackRequest(BaseModel):
    q_idx: int = Field(..., ge=0)

class SubmissionResponse(ResponseBase[SubmissionData]):
    pass

class SubmitResponse(ResponseBase[SubmitData]):
    pass
