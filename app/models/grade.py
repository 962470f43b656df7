from sqlalchemy import Column, Integer, String, Text, DateTime, JSON, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship
from ..database import Base
from app.utils.datetime_utils import utcnow

class Grade(Base):
    __tablename__ = "grades"

    id = Column(Integer, primary_key=True, autoincrement=True)
    session_id = Column(String, ForeignKey("sessions.id", ondelete="CASCADE"), nullable=False, index=True)
    q_idx = Column(Integer, nullable=False)
    score = Column(Integer, nullable=False)
    comment = Column(Text, nullable=True)
    stage_grading = Column(JSON, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        UniqueConstraint("session_id", "q_idx", name="uix_grade_session_question"),
    )

    session = relationship("ExamSession", back_populates="grades")

    def to_dict(self):
        return {
            "id": self.id,
            "session_id": self.session_id,
            "q_idx": self.q_idx,
            "score": self.score,
            "comment": self.comment,
            "stage_grading": self.stage_grading,
            "created_at": self.created_at.isoformat() if self.created_at else None
        }
