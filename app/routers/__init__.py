from .auth import router as auth_router
from .exams import router as exam_router
from .sessions import router as session_router
from .submission import router as submission_router
from .grading import router as grading_router

__all__ = [
    'auth_router',
    'exam_router',
    'session_router',
    'submission_router',
    'grading_router'
]
