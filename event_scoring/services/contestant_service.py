"""
Contestant roster service: contestant records, category entries, bulk
deletion and CSV import.

A contestant belongs to at most one contest and may be entered in any
number of categories, once each.
"""
import logging
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from event_scoring.core.db_errors import is_unique_violation
from event_scoring.errors import (
    ConflictError, ErrorCode, NotFoundError, ValidationError, validate_required
)
from event_scoring.orm.contestant import CategoryContestant, Contestant
from event_scoring.orm.event import Category, Contest, Event
from event_scoring.services.bulk_operation_service import (
    BulkOperationOptions, BulkOperationResult, bulk_delete, execute_bulk_operation
)
from event_scoring.services.csv_service import (
    CONTESTANT_IMPORT_SCHEMA, CSVService, clean_email
)

logger = logging.getLogger(__name__)

UPDATABLE_CONTESTANT_FIELDS = ("name", "email", "contestant_number", "bio", "contest_id")


async def _require_contest(db: AsyncSession, contest_id: Any) -> Contest:
    contest = await db.get(Contest, contest_id)
    if contest is None:
        raise NotFoundError("Contest", contest_id, code=ErrorCode.CONTEST_NOT_FOUND)
    return contest


async def _require_category(db: AsyncSession, category_id: Any) -> Category:
    category = await db.get(Category, category_id)
    if category is None:
        raise NotFoundError("Category", category_id, code=ErrorCode.CATEGORY_NOT_FOUND)
    return category


async def _require_contestant(db: AsyncSession, contestant_id: Any) -> Contestant:
    contestant = await db.get(Contestant, contestant_id)
    if contestant is None:
        raise NotFoundError("Contestant", contestant_id, code=ErrorCode.CONTESTANT_NOT_FOUND)
    return contestant


# ============================================================================
# Contestant records
# ============================================================================

async def list_contestants(db: AsyncSession, contest_id: Optional[int] = None) -> List[Dict[str, Any]]:
    query = select(Contestant).order_by(Contestant.name, Contestant.id)
    if contest_id is not None:
        query = query.where(Contestant.contest_id == contest_id)
    result = await db.execute(query)
    return [c.to_summary() for c in result.scalars().all()]


async def create_contestant(db: AsyncSession, data: Mapping[str, Any]) -> Contestant:
    """
    Create one contestant.

    Raises:
        ValidationError: name missing or email malformed
        NotFoundError: contest_id names no contest
    """
    validate_required(dict(data), ["name"])
    contest_id = data.get("contest_id")
    tenant_id = data.get("tenant_id")
    if contest_id is not None:
        contest = await _require_contest(db, contest_id)
        if tenant_id is None and contest.event_id is not None:
            event = await db.get(Event, contest.event_id)
            tenant_id = event.tenant_id if event is not None else None

    contestant = Contestant(
        name=str(data["name"]).strip(),
        email=clean_email(data.get("email")),
        contestant_number=data.get("contestant_number"),
        bio=data.get("bio") or None,
        contest_id=contest_id,
    )
    if tenant_id:
        contestant.tenant_id = tenant_id

    db.add(contestant)
    await db.commit()
    logger.info(f"[CONTESTANT CREATED] id={contestant.id} name={contestant.name} contest={contest_id}")
    return contestant


async def update_contestant(db: AsyncSession, contestant_id: int, changes: Mapping[str, Any]) -> Contestant:
    contestant = await _require_contestant(db, contestant_id)

    for key, value in changes.items():
        if key not in UPDATABLE_CONTESTANT_FIELDS:
            continue
        if key == "email":
            value = clean_email(value)
        elif key == "contest_id" and value is not None:
            await _require_contest(db, value)
        elif key == "name":
            if not str(value or "").strip():
                raise ValidationError("Missing required fields: name", code=ErrorCode.MISSING_FIELD)
            value = str(value).strip()
        setattr(contestant, key, value)

    await db.commit()
    return contestant


async def delete_contestant(db: AsyncSession, contestant_id: int) -> None:
    """Delete a contestant together with its category entries."""
    await _require_contestant(db, contestant_id)
    await db.execute(delete(CategoryContestant).where(CategoryContestant.contestant_id == contestant_id))
    await db.execute(delete(Contestant).where(Contestant.id == contestant_id))
    await db.commit()
    logger.info(f"[CONTESTANT DELETED] id={contestant_id}")


async def bulk_delete_contestants(db: AsyncSession, contestant_ids: Sequence[Any]) -> BulkOperationResult:
    """Delete many contestants and their category entries; unknown ids are item failures."""
    if not contestant_ids:
        raise ValidationError("No contestant IDs provided", code=ErrorCode.MISSING_FIELD)
    contestant_ids = list(contestant_ids)

    await db.execute(delete(CategoryContestant).where(CategoryContestant.contestant_id.in_(contestant_ids)))
    result = await bulk_delete(db, Contestant, contestant_ids)
    logger.info(f"[BULK CONTESTANTS] delete: {result.successful}/{result.total} removed")
    return result


# ============================================================================
# Category entries
# ============================================================================

async def assign_contestant_to_category(
    db: AsyncSession,
    category_id: int,
    contestant_id: int
) -> Dict[str, Any]:
    """
    Enter a contestant in a category.

    Raises:
        NotFoundError: category or contestant does not exist
        ConflictError: the contestant is already entered in the category
    """
    await _require_category(db, category_id)
    await _require_contestant(db, contestant_id)

    existing = await db.get(CategoryContestant, (category_id, contestant_id))
    if existing is not None:
        raise ConflictError(
            "Contestant is already assigned to this category",
            code=ErrorCode.DUPLICATE_CONTESTANT_ASSIGNMENT,
            details={"category_id": category_id, "contestant_id": contestant_id}
        )

    db.add(CategoryContestant(category_id=category_id, contestant_id=contestant_id))
    try:
        await db.commit()
    except IntegrityError as e:
        await db.rollback()
        if not is_unique_violation(e):
            raise
        raise ConflictError(
            "Contestant is already assigned to this category",
            code=ErrorCode.DUPLICATE_CONTESTANT_ASSIGNMENT,
            details={"category_id": category_id, "contestant_id": contestant_id}
        )

    logger.info(f"[CONTESTANT ASSIGNED] contestant={contestant_id} category={category_id}")
    link = await _load_link(db, category_id, contestant_id)
    return link.to_dict()


async def remove_contestant_from_category(db: AsyncSession, category_id: int, contestant_id: int) -> None:
    result = await db.execute(
        delete(CategoryContestant).where(
            CategoryContestant.category_id == category_id,
            CategoryContestant.contestant_id == contestant_id,
        )
    )
    if result.rowcount == 0:
        await db.rollback()
        raise NotFoundError("Contestant assignment", f"{category_id}/{contestant_id}")
    await db.commit()
    logger.info(f"[CONTESTANT UNASSIGNED] contestant={contestant_id} category={category_id}")


async def get_category_contestants(db: AsyncSession, category_id: int) -> List[Dict[str, Any]]:
    """Contestants entered in one category, by name."""
    await _require_category(db, category_id)
    result = await db.execute(
        select(Contestant)
        .join(CategoryContestant, CategoryContestant.contestant_id == Contestant.id)
        .where(CategoryContestant.category_id == category_id)
        .order_by(Contestant.name, Contestant.id)
    )
    return [c.to_summary() for c in result.scalars().all()]


async def get_all_contestant_assignments(
    db: AsyncSession,
    category_id: Optional[int] = None,
    contest_id: Optional[int] = None
) -> List[Dict[str, Any]]:
    """Every category entry, optionally narrowed to a category or a contest, by contestant name."""
    query = (
        select(CategoryContestant)
        .join(Contestant, CategoryContestant.contestant_id == Contestant.id)
        .join(Category, CategoryContestant.category_id == Category.id)
        .options(
            selectinload(CategoryContestant.contestant),
            selectinload(CategoryContestant.category),
        )
        .order_by(Contestant.name, CategoryContestant.category_id)
    )
    if category_id is not None:
        query = query.where(CategoryContestant.category_id == category_id)
    if contest_id is not None:
        query = query.where(Category.contest_id == contest_id)

    result = await db.execute(query)
    return [link.to_dict() for link in result.scalars().all()]


async def _load_link(db: AsyncSession, category_id: int, contestant_id: int) -> CategoryContestant:
    result = await db.execute(
        select(CategoryContestant)
        .options(
            selectinload(CategoryContestant.contestant),
            selectinload(CategoryContestant.category),
        )
        .where(
            CategoryContestant.category_id == category_id,
            CategoryContestant.contestant_id == contestant_id,
        )
        .execution_options(populate_existing=True)
    )
    return result.scalar_one()


# ============================================================================
# CSV import
# ============================================================================

async def import_contestants(
    session_factory: async_sessionmaker,
    buffer: Union[bytes, str],
    options: Optional[BulkOperationOptions] = None
) -> Dict[str, Any]:
    """
    Validate a contestant CSV, then create every valid row through the
    bulk executor. A row naming an unknown contest fails on its own.
    """
    parsed = CSVService.parse_csv(buffer)
    CSVService.check_headers(parsed.headers, CONTESTANT_IMPORT_SCHEMA)
    validation = CSVService.validate_rows(parsed.rows, CONTESTANT_IMPORT_SCHEMA)

    if validation.successful == 0:
        raise ValidationError(
            "CSV contains no valid rows",
            code=ErrorCode.CSV_NO_VALID_ROWS,
            details={"validation": validation.to_dict()}
        )

    async def create(row: Dict[str, Any]) -> None:
        async with session_factory() as db:
            await create_contestant(db, {
                "name": row["name"],
                "contest_id": row["contest_id"],
                "email": row.get("email"),
                "contestant_number": row.get("number"),
                "bio": row.get("bio"),
            })

    result = await execute_bulk_operation(create, validation.data, options)
    logger.info(f"[CONTESTANT IMPORT] rows={validation.total} created={result.successful}")
    return {"validation": validation.to_dict(), "import": result.to_dict()}
