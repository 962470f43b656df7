from .exam import Exam
from .exam_session import ExamSession
from .submission import Submission
from .message import Message
from .grade import Grade

__all__ = [
    "Exam",
    "ExamSession",
    "Submission",
    "Message",
    "Grade"
]
