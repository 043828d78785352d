"""
Contestant API Schemas (Pydantic)
"""
from typing import Optional

from pydantic import BaseModel, Field


class ContestantCreate(BaseModel):
    """Request schema for creating a contestant."""
    name: str = Field(..., min_length=1, max_length=200)
    email: Optional[str] = None
    contest_id: Optional[int] = None
    contestant_number: Optional[int] = None
    bio: Optional[str] = None


class ContestantUpdate(BaseModel):
    """Unset fields are left alone."""
    name: Optional[str] = Field(default=None, max_length=200)
    email: Optional[str] = None
    contest_id: Optional[int] = None
    contestant_number: Optional[int] = None
    bio: Optional[str] = None
