"""
Bulk Operation API Routes

User activation / deactivation / deletion / role changes, CSV user
import and export, import templates, judge and contestant CSV import and
bulk deletion.
"""
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, File, Query, UploadFile
from fastapi.responses import Response
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from event_scoring.config.settings import settings
from event_scoring.core.cache import TTLCache, get_cache
from event_scoring.database import get_db, get_session_factory
from event_scoring.errors import ErrorCode, ValidationError
from event_scoring.routes.dependencies import get_actor_id
from event_scoring.schemas.bulk import (
    ChangeRoleRequest, ContestantIdsRequest, JudgeIdsRequest, UserIdsRequest
)
from event_scoring.services import contestant_service, judge_service, user_service
from event_scoring.services.csv_service import CSVService

router = APIRouter(prefix="/bulk", tags=["Bulk Operations"])


def _csv_response(content: str, filename: str) -> Response:
    return Response(
        content=content,
        media_type="text/csv",
        headers={"Content-Disposition": f"attachment; filename={filename}"}
    )


async def _read_upload(file: UploadFile) -> bytes:
    content = await file.read()
    if not content:
        raise ValidationError("CSV file is required", code=ErrorCode.MISSING_FIELD)
    if len(content) > settings.CSV_MAX_UPLOAD_BYTES:
        raise ValidationError(
            f"CSV file exceeds the {settings.CSV_MAX_UPLOAD_BYTES} byte limit",
            code=ErrorCode.CSV_INVALID
        )
    return content


@router.post("/users/activate")
async def activate_users(
    payload: UserIdsRequest,
    session_factory: async_sessionmaker = Depends(get_session_factory)
) -> Dict[str, Any]:
    result = await user_service.bulk_activate_users(session_factory, payload.user_ids)
    return {"message": "Bulk activate completed", "result": result.to_dict()}


@router.post("/users/deactivate")
async def deactivate_users(
    payload: UserIdsRequest,
    session_factory: async_sessionmaker = Depends(get_session_factory)
) -> Dict[str, Any]:
    result = await user_service.bulk_deactivate_users(session_factory, payload.user_ids)
    return {"message": "Bulk deactivate completed", "result": result.to_dict()}


@router.post("/users/delete")
async def delete_users(
    payload: UserIdsRequest,
    actor_id: Optional[int] = Depends(get_actor_id),
    session_factory: async_sessionmaker = Depends(get_session_factory)
) -> Dict[str, Any]:
    result = await user_service.bulk_delete_users(session_factory, payload.user_ids, actor_id=actor_id)
    return {"message": "Bulk delete completed", "result": result.to_dict()}


@router.post("/users/change-role")
async def change_user_roles(
    payload: ChangeRoleRequest,
    actor_id: Optional[int] = Depends(get_actor_id),
    session_factory: async_sessionmaker = Depends(get_session_factory)
) -> Dict[str, Any]:
    result = await user_service.bulk_change_role(
        session_factory, payload.user_ids, payload.role, actor_id=actor_id
    )
    return {"message": "Bulk role change completed", "result": result.to_dict()}


@router.post("/users/import")
async def import_users(
    file: UploadFile = File(...),
    strict: bool = Query(default=False, description="Reject the file if any row is invalid"),
    session_factory: async_sessionmaker = Depends(get_session_factory)
) -> Dict[str, Any]:
    content = await _read_upload(file)
    outcome = await user_service.import_users(session_factory, content, strict=strict)
    return {"message": "User import completed", **outcome}


@router.get("/users/export")
async def export_users(
    active: Optional[bool] = Query(default=None),
    role: Optional[str] = Query(default=None),
    db: AsyncSession = Depends(get_db)
) -> Response:
    csv_text = await user_service.export_users(db, active=active, role=role)
    return _csv_response(csv_text, "users-export.csv")


@router.get("/templates/{kind}")
async def import_template(kind: str) -> Response:
    template = CSVService.generate_template(kind)
    return _csv_response(template, f"{kind}-import-template.csv")


@router.post("/judges/delete")
async def delete_judges(
    payload: JudgeIdsRequest,
    db: AsyncSession = Depends(get_db),
    cache: TTLCache = Depends(get_cache)
) -> Dict[str, Any]:
    result = await judge_service.bulk_delete_judges(db, payload.judge_ids, cache=cache)
    return {"message": "Bulk judge delete completed", "result": result.to_dict()}


@router.post("/judges/import")
async def import_judges(
    file: UploadFile = File(...),
    db: AsyncSession = Depends(get_db)
) -> Dict[str, Any]:
    content = await _read_upload(file)
    outcome = await judge_service.import_judges(db, content)
    return {"message": "Judge import completed", **outcome}


@router.post("/contestants/import")
async def import_contestants(
    file: UploadFile = File(...),
    session_factory: async_sessionmaker = Depends(get_session_factory)
) -> Dict[str, Any]:
    content = await _read_upload(file)
    outcome = await contestant_service.import_contestants(session_factory, content)
    return {"message": "Contestant import completed", **outcome}


@router.post("/contestants/delete")
async def delete_contestants(
    payload: ContestantIdsRequest,
    db: AsyncSession = Depends(get_db)
) -> Dict[str, Any]:
    result = await contestant_service.bulk_delete_contestants(db, payload.contestant_ids)
    return {"message": "Bulk contestant delete completed", "result": result.to_dict()}
