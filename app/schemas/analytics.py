from pydantic import BaseModel
from typing import List, Optional, Dict
from datetime import datetime
from .base import ResponseBase

__all__ = [
    "DistributionBucket",
    "StageScores",
    "QuestionTypeCount",
    "StudentRow",
    "ExamStatistics",
    "StagePoint",
    "StageAnalysis",
    "RadarPoint",
    "RubricAnalysis",
    "PiePoint",
    "QuestionTypeAnalysis",
    "ExamOverview",
    "ExamOverviewResponse",
]

class DistributionBucket(BaseModel):
    range: str
    count: int = 0

class StageScores(BaseModel):
    chat: Optional[int] = None
    answer: Optional[int] = None
    feedback: Optional[int] = None

class QuestionTypeCount(BaseModel):
    """학생 질문 유형별 개수 (유형이 없거나 모르는 값은 other)"""
    concept: int = 0
    calculation: int = 0
    strategy: int = 0
    other: int = 0

class StudentRow(BaseModel):
    session_id: str
    student_id: str
    score: Optional[int] = None
    question_count: int = 0
    question_type_count: QuestionTypeCount = QuestionTypeCount()
    answer_length: int = 0
    submitted_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    exam_duration: Optional[int] = None
    stage_scores: StageScores = StageScores()
    rubric_scores: Dict[str, float] = {}

class ExamStatistics(BaseModel):
    score_distribution: List[DistributionBucket] = []
    question_count_distribution: List[DistributionBucket] = []
    answer_length_distribution: List[DistributionBucket] = []
    exam_duration_distribution: List[DistributionBucket] = []

class StagePoint(BaseModel):
    stage: str
    score: int

class StageAnalysis(BaseModel):
    average_scores: StageScores = StageScores(chat=0, answer=0, feedback=0)
    comparison_data: List[StagePoint] = []
    has_feedback: bool = False

class RadarPoint(BaseModel):
    area: str
    score: float
    full_mark: int = 5

class RubricAnalysis(BaseModel):
    average_scores: Dict[str, float] = {}
    radar_data: List[RadarPoint] = []

class PiePoint(BaseModel):
    name: str
    value: int

class QuestionTypeAnalysis(BaseModel):
    distribution: QuestionTypeCount = QuestionTypeCount()
    pie_data: List[PiePoint] = []

class ExamOverview(BaseModel):
    exam_id: str
    exam_title: str
    total_students: int = 0
    submitted_students: int = 0
    average_score: int = 0
    average_questions: int = 0
    average_answer_length: int = 0
    average_exam_duration: int = 0
    standard_deviation_score: int = 0
    standard_deviation_questions: int = 0
    standard_deviation_answer_length: int = 0
    standard_deviation_exam_duration: int = 0
    students: List[StudentRow] = []
    statistics: ExamStatistics = ExamStatistics()
    stage_analysis: StageAnalysis = StageAnalysis()
    rubric_analysis: RubricAnalysis = RubricAnalysis()
    question_type_analysis: QuestionTypeAnalysis = QuestionTypeAnalysis()

class ExamOverviewResponse(ResponseBase[ExamOverview]):
    pass
