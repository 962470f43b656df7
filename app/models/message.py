from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from ..database import Base
from app.utils.datetime_utils import utcnow

class Message(Base):
    __tablename__ = "messages"

    id = Column(Integer, primary_key=True, autoincrement=True)
    session_id = Column(String, ForeignKey("sessions.id", ondelete="CASCADE"), nullable=False, index=True)
    q_idx = Column(Integer, nullable=False)
    role = Column(String, nullable=False)  # user | assistant
    content = Column(Text, nullable=False, default="")
    compressed_content = Column(Text, nullable=True)
    message_type = Column(String, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)

    session = relationship("ExamSession", back_populates="messages")
