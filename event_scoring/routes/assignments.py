"""
Judge Assignment API Routes

Reconciled assignment view (explicit records + category roster) and the
explicit assignment lifecycle. Service errors (NotFound / Conflict /
Validation) propagate to the application's APIError handler.
"""
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query, status

from event_scoring.routes.dependencies import get_actor_id, get_assignment_service
from event_scoring.schemas.assignment import AssignmentCreate, AssignmentUpdate, BulkAssignRequest
from event_scoring.services.assignment_service import AssignmentService

router = APIRouter(prefix="/assignments", tags=["Assignments"])


@router.get("")
async def list_assignments(
    status_filter: Optional[str] = Query(default=None, alias="status"),
    judge_id: Optional[int] = Query(default=None),
    category_id: Optional[int] = Query(default=None),
    contest_id: Optional[int] = Query(default=None),
    event_id: Optional[int] = Query(default=None),
    service: AssignmentService = Depends(get_assignment_service)
) -> Dict[str, Any]:
    """
    Merged assignment view.

    Roster memberships appear as derived entries (status ACTIVE,
    priority 0) unless an explicit assignment exists for the same judge
    and category.
    """
    assignments = await service.get_all_assignments({
        "status": status_filter.upper() if status_filter else None,
        "judge_id": judge_id,
        "category_id": category_id,
        "contest_id": contest_id,
        "event_id": event_id,
    })
    return {"assignments": assignments, "count": len(assignments)}


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_assignment(
    payload: AssignmentCreate,
    actor_id: Optional[int] = Depends(get_actor_id),
    service: AssignmentService = Depends(get_assignment_service)
) -> Dict[str, Any]:
    return await service.create_assignment(payload.model_dump(exclude_none=True), actor_id)


@router.post("/bulk-assign")
async def bulk_assign(
    payload: BulkAssignRequest,
    actor_id: Optional[int] = Depends(get_actor_id),
    service: AssignmentService = Depends(get_assignment_service)
) -> Dict[str, Any]:
    result = await service.bulk_assign_judges(payload.category_id, payload.judge_ids, actor_id)
    return result.to_dict()


@router.get("/judge/{judge_id}")
async def assignments_for_judge(
    judge_id: int,
    service: AssignmentService = Depends(get_assignment_service)
) -> Dict[str, Any]:
    assignments = await service.get_assignments_for_judge(judge_id)
    return {"judge_id": judge_id, "assignments": assignments, "count": len(assignments)}


@router.get("/category/{category_id}")
async def assignments_for_category(
    category_id: int,
    service: AssignmentService = Depends(get_assignment_service)
) -> Dict[str, Any]:
    assignments = await service.get_assignments_for_category(category_id)
    return {"category_id": category_id, "assignments": assignments, "count": len(assignments)}


@router.delete("/category/{category_id}")
async def remove_category_assignments(
    category_id: int,
    service: AssignmentService = Depends(get_assignment_service)
) -> Dict[str, Any]:
    removed = await service.remove_all_assignments_for_category(category_id)
    return {"category_id": category_id, "removed": removed}


@router.get("/{assignment_id}")
async def get_assignment(
    assignment_id: int,
    service: AssignmentService = Depends(get_assignment_service)
) -> Dict[str, Any]:
    return await service.get_assignment_by_id(assignment_id)


@router.patch("/{assignment_id}")
async def update_assignment(
    assignment_id: int,
    payload: AssignmentUpdate,
    service: AssignmentService = Depends(get_assignment_service)
) -> Dict[str, Any]:
    return await service.update_assignment(assignment_id, payload.model_dump(exclude_unset=True))


@router.delete("/{assignment_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_assignment(
    assignment_id: int,
    service: AssignmentService = Depends(get_assignment_service)
) -> None:
    await service.delete_assignment(assignment_id)
