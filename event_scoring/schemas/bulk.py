"""
Bulk Operation API Schemas (Pydantic)
"""
from typing import List

from pydantic import BaseModel, Field, validator

from event_scoring.orm.user import UserRole


class UserIdsRequest(BaseModel):
    user_ids: List[int] = Field(..., min_length=1)


class ChangeRoleRequest(UserIdsRequest):
    role: str

    @validator('role')
    def check_role(cls, v):
        value = v.strip().upper()
        allowed = [r.value for r in UserRole]
        if value not in allowed:
            raise ValueError(f"role must be one of: {', '.join(allowed)}")
        return value


class JudgeIdsRequest(BaseModel):
    judge_ids: List[int] = Field(..., min_length=1)


class ContestantIdsRequest(BaseModel):
    contestant_ids: List[int] = Field(..., min_length=1)
