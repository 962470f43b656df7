from sqlalchemy import Column, String, Integer, DateTime, JSON, Text
from sqlalchemy.orm import relationship
import uuid
from ..database import Base
from app.utils.datetime_utils import utcnow

class Exam(Base):
    __tablename__ = "exams"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    code = Column(String, unique=True, nullable=False, index=True)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    instructor_id = Column(String, nullable=False, index=True)
    # 분 단위, 0 = 무제한
    duration = Column(Integer, nullable=False, default=0)
    questions = Column(JSON, nullable=False, default=list)
    rubric = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    sessions = relationship("ExamSession", back_populates="exam", cascade="all, delete-orphan")

    def to_dict(self):
        return {
            "id": self.id,
            "code": self.code,
            "title": self.title,
            "description": self.description,
            "instructor_id": self.instructor_id,
            "duration": self.duration,
            "questions": self.questions or [],
            "rubric": self.rubric or [],
            "created_at": self.created_at.isoformat() if self.created_at else None
        }
