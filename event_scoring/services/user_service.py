"""
User account service

Single-user writes plus the bulk flows built on the executor:
activate / deactivate / delete / change role over id lists, CSV import
and CSV export.

Bulk flows open one session per item: items of a batch run concurrently
and an AsyncSession must not be shared between them.
"""
import logging
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from event_scoring.errors import (
    ConflictError, ErrorCode, NotFoundError, ValidationError, validate_required
)
from event_scoring.orm.user import User, UserRole
from event_scoring.security import generate_temporary_password, hash_password_async
from event_scoring.services.bulk_operation_service import (
    BulkOperationOptions, BulkOperationResult, execute_bulk_operation
)
from event_scoring.services.csv_service import (
    CSVImportResult, CSVService, USER_IMPORT_SCHEMA, clean_email
)

logger = logging.getLogger(__name__)

USER_EXPORT_COLUMNS = ["id", "email", "name", "role", "phone", "is_active", "created_at"]
USER_EXPORT_HEADERS = ["ID", "Email", "Name", "Role", "Phone", "Active", "Created At"]

UPDATABLE_USER_FIELDS = ("name", "email", "role", "phone", "is_active")


def normalize_role(role: Any) -> str:
    value = str(role.value if isinstance(role, UserRole) else role or "").upper()
    allowed = [r.value for r in UserRole]
    if value not in allowed:
        raise ValidationError(
            f"Invalid role. Must be one of: {', '.join(allowed)}",
            code=ErrorCode.INVALID_FORMAT,
            details={"field": "role", "value": role}
        )
    return value


def _require_ids(user_ids: Sequence[Any]) -> List[Any]:
    if not user_ids:
        raise ValidationError("user_ids must be a non-empty list", code=ErrorCode.MISSING_FIELD)
    return list(user_ids)


# ============================================================================
# Single-user operations
# ============================================================================

async def create_user(db: AsyncSession, data: Mapping[str, Any]) -> User:
    """
    Create one account.

    Raises:
        ValidationError: email/name/role missing, email malformed or role unknown
        ConflictError: email already registered
    """
    validate_required(dict(data), ["email", "name", "role"])
    email = clean_email(data["email"])
    role = normalize_role(data["role"])

    existing = await db.execute(select(User.id).where(User.email == email))
    if existing.scalar_one_or_none() is not None:
        raise ConflictError(
            f"User with email '{email}' already exists",
            code=ErrorCode.DUPLICATE_USER,
            details={"email": email}
        )

    password = data.get("password") or generate_temporary_password()
    active = data.get("active", data.get("is_active"))

    user = User(
        email=email,
        name=str(data["name"]).strip(),
        role=role,
        phone=data.get("phone") or None,
        is_active=True if active is None else bool(active),
        password_hash=await hash_password_async(password),
    )
    if data.get("tenant_id"):
        user.tenant_id = data["tenant_id"]

    db.add(user)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ConflictError(
            f"User with email '{email}' already exists",
            code=ErrorCode.DUPLICATE_USER,
            details={"email": email}
        )

    logger.info(f"[USER CREATED] id={user.id} email={email} role={role}")
    return user


async def update_user(db: AsyncSession, user_id: int, changes: Mapping[str, Any]) -> User:
    user = await db.get(User, user_id)
    if user is None:
        raise NotFoundError("User", user_id, code=ErrorCode.USER_NOT_FOUND)

    for key, value in changes.items():
        if key not in UPDATABLE_USER_FIELDS:
            continue
        if key == "role":
            value = normalize_role(value)
        elif key == "email":
            validate_required({"email": value}, ["email"])
            value = clean_email(value)
        setattr(user, key, value)

    await db.commit()
    return user


async def delete_user(db: AsyncSession, user_id: int) -> None:
    user = await db.get(User, user_id)
    if user is None:
        raise NotFoundError("User", user_id, code=ErrorCode.USER_NOT_FOUND)
    await db.delete(user)
    await db.commit()


# ============================================================================
# Bulk operations
# ============================================================================

async def _bulk_update_users(
    session_factory: async_sessionmaker,
    user_ids: Sequence[Any],
    changes: Dict[str, Any],
    options: Optional[BulkOperationOptions] = None
) -> BulkOperationResult:
    async def apply(user_id: Any) -> None:
        async with session_factory() as db:
            await update_user(db, user_id, changes)

    return await execute_bulk_operation(apply, user_ids, options)


async def bulk_activate_users(
    session_factory: async_sessionmaker,
    user_ids: Sequence[Any],
    options: Optional[BulkOperationOptions] = None
) -> BulkOperationResult:
    user_ids = _require_ids(user_ids)
    result = await _bulk_update_users(session_factory, user_ids, {"is_active": True}, options)
    logger.info(f"[BULK USERS] activate: {result.successful}/{result.total} succeeded")
    return result


async def bulk_deactivate_users(
    session_factory: async_sessionmaker,
    user_ids: Sequence[Any],
    options: Optional[BulkOperationOptions] = None
) -> BulkOperationResult:
    user_ids = _require_ids(user_ids)
    result = await _bulk_update_users(session_factory, user_ids, {"is_active": False}, options)
    logger.info(f"[BULK USERS] deactivate: {result.successful}/{result.total} succeeded")
    return result


async def bulk_change_role(
    session_factory: async_sessionmaker,
    user_ids: Sequence[Any],
    role: Any,
    actor_id: Optional[int] = None,
    options: Optional[BulkOperationOptions] = None
) -> BulkOperationResult:
    """
    Raises:
        ValidationError: empty id list, unknown role, or the actor changing
            their own role
    """
    user_ids = _require_ids(user_ids)
    role = normalize_role(role)
    if actor_id is not None and actor_id in user_ids:
        raise ValidationError("Cannot change your own role", code=ErrorCode.VALIDATION_ERROR)

    result = await _bulk_update_users(session_factory, user_ids, {"role": role}, options)
    logger.info(f"[BULK USERS] change role to {role}: {result.successful}/{result.total} succeeded")
    return result


async def bulk_delete_users(
    session_factory: async_sessionmaker,
    user_ids: Sequence[Any],
    actor_id: Optional[int] = None,
    options: Optional[BulkOperationOptions] = None
) -> BulkOperationResult:
    """Delete each user; the actor may not delete their own account."""
    user_ids = _require_ids(user_ids)
    if actor_id is not None and actor_id in user_ids:
        raise ValidationError("Cannot delete your own account", code=ErrorCode.VALIDATION_ERROR)

    async def apply(user_id: Any) -> None:
        async with session_factory() as db:
            await delete_user(db, user_id)

    result = await execute_bulk_operation(apply, user_ids, options)
    logger.info(f"[BULK USERS] delete: {result.successful}/{result.total} succeeded")
    return result


# ============================================================================
# CSV interchange
# ============================================================================

async def import_users(
    session_factory: async_sessionmaker,
    buffer: Union[bytes, str],
    strict: bool = False,
    options: Optional[BulkOperationOptions] = None
) -> Dict[str, Any]:
    """
    Two-phase user import: validate every row, then create the valid ones
    through the executor.

    Args:
        strict: reject the whole file when any row fails validation

    Returns:
        {"validation": CSVImportResult dict, "import": BulkOperationResult dict}

    Raises:
        ValidationError: unparseable file, missing required columns, no
            valid rows, or (strict) any invalid row
    """
    parsed = CSVService.parse_csv(buffer)
    CSVService.check_headers(parsed.headers, USER_IMPORT_SCHEMA)
    validation: CSVImportResult = CSVService.validate_rows(parsed.rows, USER_IMPORT_SCHEMA)

    if validation.successful == 0:
        raise ValidationError(
            "CSV contains no valid rows",
            code=ErrorCode.CSV_NO_VALID_ROWS,
            details={"validation": validation.to_dict()}
        )
    if strict and validation.failed > 0:
        raise ValidationError(
            "CSV validation failed",
            code=ErrorCode.CSV_INVALID,
            details={"validation": validation.to_dict()}
        )

    async def create(row: Dict[str, Any]) -> None:
        async with session_factory() as db:
            await create_user(db, row)

    result = await execute_bulk_operation(create, validation.data, options)
    logger.info(
        f"[USER IMPORT] rows={validation.total} invalid={validation.failed} "
        f"created={result.successful} failed={result.failed}"
    )
    return {"validation": validation.to_dict(), "import": result.to_dict()}


async def list_users(
    db: AsyncSession,
    active: Optional[bool] = None,
    role: Optional[str] = None
) -> List[User]:
    stmt = select(User)
    if active is not None:
        stmt = stmt.where(User.is_active == active)
    if role:
        stmt = stmt.where(User.role == normalize_role(role))
    result = await db.execute(stmt.order_by(User.id))
    return list(result.scalars().all())


async def export_users(
    db: AsyncSession,
    active: Optional[bool] = None,
    role: Optional[str] = None
) -> str:
    """CSV of users, optionally filtered by active flag and role."""
    users = await list_users(db, active=active, role=role)
    csv_text = CSVService.export_to_csv(users, USER_EXPORT_COLUMNS, USER_EXPORT_HEADERS)
    logger.info(f"[USER EXPORT] {len(users)} users exported")
    return csv_text
