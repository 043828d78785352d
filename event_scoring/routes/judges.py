"""
Judge API Routes
"""
from typing import Any, Dict

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from event_scoring.core.cache import TTLCache, get_cache
from event_scoring.database import get_db
from event_scoring.schemas.judge import JudgeCreate, JudgeUpdate
from event_scoring.services import judge_service

router = APIRouter(prefix="/judges", tags=["Judges"])


@router.get("")
async def list_judges(db: AsyncSession = Depends(get_db)) -> Dict[str, Any]:
    judges = await judge_service.list_judges(db)
    return {"judges": judges, "count": len(judges)}


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_judge(
    payload: JudgeCreate,
    db: AsyncSession = Depends(get_db)
) -> Dict[str, Any]:
    judge = await judge_service.create_judge(db, payload.model_dump(exclude_none=True))
    return judge.to_summary()


@router.patch("/{judge_id}")
async def update_judge(
    judge_id: int,
    payload: JudgeUpdate,
    db: AsyncSession = Depends(get_db),
    cache: TTLCache = Depends(get_cache)
) -> Dict[str, Any]:
    judge = await judge_service.update_judge(db, judge_id, payload.model_dump(exclude_unset=True), cache=cache)
    return judge.to_summary()


@router.delete("/{judge_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_judge(
    judge_id: int,
    db: AsyncSession = Depends(get_db),
    cache: TTLCache = Depends(get_cache)
) -> None:
    await judge_service.delete_judge(db, judge_id, cache=cache)
