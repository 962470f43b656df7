from pydantic import BaseModel, Field, ConfigDict, AliasChoices, field_validator
from typing import List, Optional, Dict, Literal, Any
from datetime import datetime
from .base import ResponseBase
from .exam import ExamData
from .session import SessionData, MessageData
from .submission import SubmissionData

__all__ = [
    "StageScore",
    "StageGrading",
    "GradeData",
    "SaveGradeRequest",
    "AutoGradeRequest",
    "SessionSummary",
    "AutoGradeData",
    "GradingViewData",
    "GradeResponse",
    "AutoGradeResponse",
    "GradingViewResponse",
    "SummaryResponse",
    "SessionGrades",
    "FinalGradesData",
    "FinalGradesResponse",
]

class StageScore(BaseModel):
    """단계별 채점 결과 (score 0-100, rubric_scores 항목별 0-5)"""
    score: int = Field(..., ge=0, le=100)
    comment: str = ""
    rubric_scores: Optional[Dict[str, int]] = None

    @field_validator("rubric_scores")
    @classmethod
    def _check_rubric_range(cls, value: Optional[Dict[str, int]]):
        if value:
            for area, score in value.items():
                if not 0 <= score <= 5:
                    raise ValueError(f"rubric score for {area} must be within 0-5")
        return value

class StageGrading(BaseModel):
    chat: Optional[StageScore] = None
    answer: Optional[StageScore] = None
    feedback: Optional[StageScore] = None

    def produced(self) -> Dict[str, StageScore]:
        return {
            name: stage for name, stage in
            (("chat", self.chat), ("answer", self.answer), ("feedback", self.feedback))
            if stage is not None
        }

    def to_json(self) -> Dict[str, Any]:
        return self.model_dump(exclude_none=True)

class GradeData(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    session_id: str
    q_idx: int
    score: int
    comment: Optional[str] = None
    stage_grading: Optional[Dict[str, Any]] = None
    created_at: datetime

class SaveGradeRequest(BaseModel):
    q_idx: int = Field(..., ge=0)
    score: int = Field(..., ge=0, le=100)
    comment: str = ""
    stage_grading: Optional[StageGrading] = None

class AutoGradeRequest(BaseModel):
    force_regrade: bool = False

class SessionSummary(BaseModel):
    """세션 종합 평가"""
    model_config = ConfigDict(populate_by_name=True)

    sentiment: Literal["positive", "negative", "neutral"]
    narrative: str = Field(..., min_length=1, validation_alias=AliasChoices("narrative", "summary"))
    strengths: List[str] = []
    weaknesses: List[str] = []
    key_quotes: List[str] = Field(..., validation_alias=AliasChoices("key_quotes", "keyQuotes"))

    @field_validator("strengths", "weaknesses")
    @classmethod
    def _at_most_three(cls, value: List[str]) -> List[str]:
        return [item for item in value if item][:3]

    @field_validator("key_quotes")
    @classmethod
    def _two_quotes(cls, value: List[str]) -> List[str]:
        quotes = [item for item in value if item]
        if len(quotes) < 2:
            raise ValueError("exactly two key quotes are required")
        return quotes[:2]

class AutoGradeData(BaseModel):
    grades_count: int
    grades: List[GradeData] = []
    skipped: bool = False
    summary: Optional[SessionSummary] = None

class GradingViewData(BaseModel):
    session: SessionData
    exam: ExamData
    submissions_by_question: Dict[int, SubmissionData] = {}
    messages_by_question: Dict[int, List[MessageData]] = {}
    grades_by_question: Dict[int, GradeData] = {}
    overall_score: Optional[int] = None
    summary: Optional[Dict[str, Any]] = None

class GradeResponse(ResponseBase[GradeData]):
    pass

class AutoGradeResponse(ResponseBase[AutoGradeData]):
    pass

class GradingViewResponse(ResponseBase[GradingViewData]):
    pass

class SummaryResponse(ResponseBase[SessionSummary]):
    pass

class SessionGrades(BaseModel):
    session_id: str
    student_id: str
    submitted_at: Optional[datetime] = None
    overall_score: Optional[int] = None
    grades: List[GradeData] = []

class FinalGradesData(BaseModel):
    exam_id: str
    sessions: List[SessionGrades] = []

class FinalGradesResponse(ResponseBase[FinalGradesData]):
    pass
