from pydantic import BaseModel, Field, ConfigDict, model_validator
from pydantic import ValidationError as PydanticValidationError
from typing import List, Optional, Union, Any
from datetime import datetime
from .base import ResponseBase
from app.core.exceptions import ValidationError

__all__ = [
    "Question",
    "RubricItem",
    "ExamCreate",
    "ExamData",
    "ExamResponse",
]

class Question(BaseModel):
    """시험 문항 (text/core_ability 는 예전 필드명)"""
    model_config = ConfigDict(extra="ignore")

    id: Optional[Union[str, int]] = None
    idx: Optional[int] = None
    type: Optional[str] = None
    prompt: str = ""
    ai_context: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def _legacy_fields(cls, data: Any) -> Any:
        if isinstance(data, dict):
            data = dict(data)
            if not data.get("prompt") and isinstance(data.get("text"), str):
                data["prompt"] = data["text"]
            if not data.get("ai_context") and isinstance(data.get("core_ability"), str):
                data["ai_context"] = data["core_ability"]
        return data

class RubricItem(BaseModel):
    model_config = ConfigDict(extra="ignore")

    evaluationArea: str = Field(..., min_length=1)
    detailedCriteria: str = ""

class ExamCreate(BaseModel):
    title: str = Field(..., min_length=1)
    code: str = Field(..., min_length=1)
    description: Optional[str] = None
    duration: int = Field(0, ge=0)
    questions: List[Question] = Field(..., min_length=1)
    rubric: List[RubricItem] = []

class ExamData(BaseModel):
    """DB 의 JSON 컬럼을 검증된 구조로 변환한 시험 정보"""
    model_config = ConfigDict(from_attributes=True)

    id: str
    code: str
    title: str
    description: Optional[str] = None
    instructor_id: str
    duration: int = 0
    questions: List[Question] = []
    rubric: List[RubricItem] = []
    created_at: Optional[datetime] = None

    @classmethod
    def from_model(cls, exam) -> "ExamData":
        try:
            return cls(
                id=exam.id,
                code=exam.code,
                title=exam.title,
                description=exam.description,
                instructor_id=exam.instructor_id,
                duration=exam.duration or 0,
                questions=exam.questions or [],
                rubric=exam.rubric or [],
                created_at=exam.created_at,
            )
        except PydanticValidationError as e:
            raise ValidationError(f"시험 {exam.id} 의 문항/루브릭 형식이 올바르지 않습니다: {e}") from e

    def question_index(self, position: int) -> int:
        question = self.questions[position]
        return question.idx if question.idx is not None else position

    @property
    def is_essay_only(self) -> bool:
        """모든 문항이 essay(또는 타입 없음)이면 피드백 단계가 없는 시험"""
        return len(self.questions) > 0 and all(
            q.type == "essay" or not q.type for q in self.questions
        )

class ExamResponse(ResponseBase[ExamData]):
    pass
