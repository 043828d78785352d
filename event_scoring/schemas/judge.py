"""
Judge API Schemas (Pydantic)
"""
from typing import Optional

from pydantic import BaseModel, Field


class JudgeCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    email: Optional[str] = None
    phone: Optional[str] = None
    bio: Optional[str] = None
    is_head_judge: bool = False
    certified: bool = False


class JudgeUpdate(BaseModel):
    """Unset fields are left alone."""
    name: Optional[str] = Field(default=None, max_length=200)
    email: Optional[str] = None
    phone: Optional[str] = None
    bio: Optional[str] = None
    is_head_judge: Optional[bool] = None
    certified: Optional[bool] = None
