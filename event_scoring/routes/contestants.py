"""
Contestant API Routes

Contestant records and their category entries. Service errors
(NotFound / Conflict / Validation) propagate to the application's
APIError handler.
"""
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from event_scoring.database import get_db
from event_scoring.schemas.contestant import ContestantCreate, ContestantUpdate
from event_scoring.services import contestant_service

router = APIRouter(prefix="/contestants", tags=["Contestants"])


@router.get("")
async def list_contestants(
    contest_id: Optional[int] = Query(default=None),
    db: AsyncSession = Depends(get_db)
) -> Dict[str, Any]:
    contestants = await contestant_service.list_contestants(db, contest_id=contest_id)
    return {"contestants": contestants, "count": len(contestants)}


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_contestant(
    payload: ContestantCreate,
    db: AsyncSession = Depends(get_db)
) -> Dict[str, Any]:
    contestant = await contestant_service.create_contestant(db, payload.model_dump(exclude_none=True))
    return contestant.to_summary()


@router.get("/assignments")
async def list_contestant_assignments(
    category_id: Optional[int] = Query(default=None),
    contest_id: Optional[int] = Query(default=None),
    db: AsyncSession = Depends(get_db)
) -> Dict[str, Any]:
    assignments = await contestant_service.get_all_contestant_assignments(
        db, category_id=category_id, contest_id=contest_id
    )
    return {"assignments": assignments, "count": len(assignments)}


@router.get("/category/{category_id}")
async def category_contestants(
    category_id: int,
    db: AsyncSession = Depends(get_db)
) -> Dict[str, Any]:
    contestants = await contestant_service.get_category_contestants(db, category_id)
    return {"category_id": category_id, "contestants": contestants, "count": len(contestants)}


@router.post("/category/{category_id}/{contestant_id}", status_code=status.HTTP_201_CREATED)
async def assign_contestant(
    category_id: int,
    contestant_id: int,
    db: AsyncSession = Depends(get_db)
) -> Dict[str, Any]:
    return await contestant_service.assign_contestant_to_category(db, category_id, contestant_id)


@router.delete("/category/{category_id}/{contestant_id}", status_code=status.HTTP_204_NO_CONTENT)
async def unassign_contestant(
    category_id: int,
    contestant_id: int,
    db: AsyncSession = Depends(get_db)
) -> None:
    await contestant_service.remove_contestant_from_category(db, category_id, contestant_id)


@router.patch("/{contestant_id}")
async def update_contestant(
    contestant_id: int,
    payload: ContestantUpdate,
    db: AsyncSession = Depends(get_db)
) -> Dict[str, Any]:
    contestant = await contestant_service.update_contestant(
        db, contestant_id, payload.model_dump(exclude_unset=True)
    )
    return contestant.to_summary()


@router.delete("/{contestant_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_contestant(
    contestant_id: int,
    db: AsyncSession = Depends(get_db)
) -> None:
    await contestant_service.delete_contestant(db, contestant_id)
