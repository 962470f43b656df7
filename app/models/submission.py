from sqlalchemy import Column, Integer, String, Text, DateTime, JSON, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship
from ..database import Base
from app.utils.datetime_utils import utcnow

class Submission(Base):
    __tablename__ = "submissions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    session_id = Column(String, ForeignKey("sessions.id", ondelete="CASCADE"), nullable=False, index=True)
    q_idx = Column(Integer, nullable=False)
    answer = Column(Text, nullable=False, default="")
    compressed_answer_data = Column(Text, nullable=True)
    ai_feedback = Column(Text, nullable=True)
    student_reply = Column(Text, nullable=True)
    # [{"prior_text": ..., "prior_updated_at": ...}] - append only
    answer_history = Column(JSON, nullable=False, default=list)
    edit_count = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        UniqueConstraint("session_id", "q_idx", name="uix_submission_session_question"),
    )

    session = relationship("ExamSession", back_populates="submissions")

    def to_dict(self):
        return {
            "id": self.id,
            "session_id": self.session_id,
            "q_idx": self.q_idx,
            "answer": self.answer,
            "ai_feedback": self.ai_feedback,
            "student_reply": self.student_reply,
            "answer_history": list(self.answer_history or []),
            "edit_count": self.edit_count,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None
        }
