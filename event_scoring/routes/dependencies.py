"""
Shared FastAPI dependencies for the event scoring routes.
"""
from typing import Optional

from fastapi import Depends, Header
from sqlalchemy.ext.asyncio import AsyncSession

from event_scoring.core.cache import TTLCache, get_cache
from event_scoring.database import get_db
from event_scoring.services.assignment_service import AssignmentService


async def get_actor_id(x_user_id: Optional[int] = Header(default=None)) -> Optional[int]:
    """Acting user id, supplied by the upstream gateway."""
    return x_user_id


async def get_assignment_service(
    db: AsyncSession = Depends(get_db),
    cache: TTLCache = Depends(get_cache)
) -> AssignmentService:
    return AssignmentService(db, cache=cache)
