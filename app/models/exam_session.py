from sqlalchemy import Column, String, Integer, DateTime, Boolean, JSON, ForeignKey, Index, text
from sqlalchemy.orm import relationship
import uuid
from ..database import Base
from app.utils.datetime_utils import utcnow

class ExamSession(Base):
    """학생 1명의 시험 1회 응시 기록"""
    __tablename__ = "sessions"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    exam_id = Column(String, ForeignKey("exams.id", ondelete="CASCADE"), nullable=False, index=True)
    student_id = Column(String, nullable=False, index=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    device_fingerprint = Column(String, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    last_heartbeat_at = Column(DateTime, nullable=True)
    submitted_at = Column(DateTime, nullable=True)
    used_clarifications = Column(Integer, nullable=False, default=0)
    ai_summary = Column(JSON, nullable=True)

    # 미제출 세션은 (시험, 학생, 기기) 당 하나만 허용
    __table_args__ = (
        Index(
            "uq_sessions_open_device",
            "exam_id", "student_id", "device_fingerprint",
            unique=True,
            postgresql_where=text("submitted_at IS NULL"),
            sqlite_where=text("submitted_at IS NULL"),
        ),
    )

    exam = relationship("Exam", back_populates="sessions")
    submissions = relationship("Submission", back_populates="session", cascade="all, delete-orphan")
    messages = relationship("Message", back_populates="session", cascade="all, delete-orphan")
    grades = relationship("Grade", back_populates="session", cascade="all, delete-orphan")

    @property
    def is_submitted(self) -> bool:
        return self.submitted_at is not None

    def to_dict(self):
        return {
            "id": self.id,
            "exam_id": self.exam_id,
            "student_id": self.student_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "device_fingerprint": self.device_fingerprint,
            "is_active": self.is_active,
            "last_heartbeat_at": self.last_heartbeat_at.isoformat() if self.last_heartbeat_at else None,
            "submitted_at": self.submitted_at.isoformat() if self.submitted_at else None,
            "used_clarifications": self.used_clarifications,
            "ai_summary": self.ai_summary
        }
