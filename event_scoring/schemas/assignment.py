"""
Assignment API Schemas (Pydantic)
"""
from typing import List, Optional

from pydantic import BaseModel, Field, validator

from event_scoring.orm.assignment import AssignmentStatus


class AssignmentCreate(BaseModel):
    """Request schema for creating an explicit assignment."""
    judge_id: int
    category_id: Optional[int] = None
    contest_id: Optional[int] = None
    event_id: Optional[int] = None
    notes: Optional[str] = Field(default=None, max_length=2000)
    priority: Optional[int] = 0


class AssignmentUpdate(BaseModel):
    """Request schema for updating an assignment; unset fields are left alone."""
    status: Optional[str] = None
    notes: Optional[str] = Field(default=None, max_length=2000)
    priority: Optional[int] = None

    @validator('status')
    def check_status(cls, v):
        if v is None:
            return v
        value = v.strip().upper()
        allowed = [s.value for s in AssignmentStatus]
        if value not in allowed:
            raise ValueError(f"status must be one of: {', '.join(allowed)}")
        return value


class BulkAssignRequest(BaseModel):
    """Request schema for assigning many judges to one category."""
    category_id: int
    judge_ids: List[int] = Field(..., min_length=1)
