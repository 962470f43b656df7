from pydantic import BaseModel
from typing import Optional, Generic, TypeVar

T = TypeVar('T')

__all__ = ["ResponseBase"]

class ResponseBase(BaseModel, Generic[T]):
    """기본 응답 스키마"""
    success: bool
    message: Optional[str] = None
    error: Optional[str] = None
    data: Optional[T] = None
