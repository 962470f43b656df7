from pydantic import BaseModel, Field
from typing import Literal
from .base import ResponseBase

__all__ = [
    "CurrentUser",
    "LoginRequest",
    "LoginResponse",
]

class CurrentUser(BaseModel):
    user_id: str
    role: Literal["student", "instructor"]

    @property
    def is_instructor(self) -> bool:
        return self.role == "instructor"

class LoginRequest(BaseModel):
    user_id: str = Field(..., min_length=1)
    role: Literal["student", "instructor"] = "student"

class LoginResponse(ResponseBase[CurrentUser]):
    pass
