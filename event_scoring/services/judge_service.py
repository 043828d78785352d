"""
Judge roster service: listing, creation, update, deletion (single and bulk)
and CSV import.
"""
import logging
from typing import Any, Dict, List, Mapping, Optional, Sequence, Union

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from event_scoring.core.cache import CacheBackend, get_cache
from event_scoring.errors import ErrorCode, NotFoundError, ValidationError, validate_required
from event_scoring.orm.assignment import Assignment
from event_scoring.orm.judge import CategoryJudge, Judge
from event_scoring.services.assignment_service import (
    LIST_CACHE_PREFIX, category_cache_key, judge_cache_key
)
from event_scoring.services.bulk_operation_service import (
    BulkOperationResult, bulk_create, bulk_delete
)
from event_scoring.services.csv_service import CSVService, JUDGE_IMPORT_SCHEMA, clean_email

logger = logging.getLogger(__name__)

UPDATABLE_JUDGE_FIELDS = ("name", "email", "phone", "bio", "is_head_judge", "certified")


async def list_judges(db: AsyncSession) -> List[Dict[str, Any]]:
    result = await db.execute(select(Judge).order_by(Judge.name))
    return [j.to_summary() for j in result.scalars().all()]


async def create_judge(db: AsyncSession, data: Dict[str, Any]) -> Judge:
    validate_required(data, ["name"])
    judge = Judge(
        name=data["name"].strip(),
        email=clean_email(data.get("email")),
        phone=data.get("phone") or None,
        bio=data.get("bio") or None,
        is_head_judge=bool(data.get("is_head_judge", False)),
        certified=bool(data.get("certified", False)),
    )
    if data.get("tenant_id"):
        judge.tenant_id = data["tenant_id"]
    db.add(judge)
    await db.commit()
    logger.info(f"[JUDGE CREATED] id={judge.id} name={judge.name}")
    return judge


async def _categories_of(db: AsyncSession, judge_ids: List[Any]) -> List[Any]:
    """Categories whose cached views mention any of the judges."""
    explicit = await db.execute(
        select(Assignment.category_id).where(Assignment.judge_id.in_(judge_ids)).distinct()
    )
    roster = await db.execute(
        select(CategoryJudge.category_id).where(CategoryJudge.judge_id.in_(judge_ids)).distinct()
    )
    found = set(explicit.scalars().all()) | set(roster.scalars().all())
    return sorted(c for c in found if c is not None)


def _invalidate_judges(cache: CacheBackend, judge_ids: Sequence[Any], category_ids: Sequence[Any]) -> None:
    cache.delete_pattern(LIST_CACHE_PREFIX)
    for judge_id in judge_ids:
        cache.delete(judge_cache_key(judge_id))
    for category_id in category_ids:
        cache.delete(category_cache_key(category_id))


async def update_judge(
    db: AsyncSession,
    judge_id: int,
    changes: Mapping[str, Any],
    cache: Optional[CacheBackend] = None
) -> Judge:
    """Apply field changes; cached views embedding the judge are dropped."""
    judge = await db.get(Judge, judge_id)
    if judge is None:
        raise NotFoundError("Judge", judge_id, code=ErrorCode.JUDGE_NOT_FOUND)
    cache = cache if cache is not None else get_cache()

    for key, value in changes.items():
        if key not in UPDATABLE_JUDGE_FIELDS:
            continue
        if key == "name":
            if not str(value or "").strip():
                raise ValidationError("Missing required fields: name", code=ErrorCode.MISSING_FIELD)
            value = str(value).strip()
        elif key == "email":
            value = clean_email(value)
        elif key in ("is_head_judge", "certified"):
            value = bool(value)
        setattr(judge, key, value)

    category_ids = await _categories_of(db, [judge_id])
    await db.commit()
    _invalidate_judges(cache, [judge_id], category_ids)
    logger.info(f"[JUDGE UPDATED] id={judge_id}")
    return judge


async def delete_judge(db: AsyncSession, judge_id: int, cache: Optional[CacheBackend] = None) -> None:
    """Delete one judge with its roster links and explicit assignments."""
    judge = await db.get(Judge, judge_id)
    if judge is None:
        raise NotFoundError("Judge", judge_id, code=ErrorCode.JUDGE_NOT_FOUND)
    await bulk_delete_judges(db, [judge_id], cache=cache)


async def bulk_delete_judges(
    db: AsyncSession,
    judge_ids: Sequence[Any],
    cache: Optional[CacheBackend] = None
) -> BulkOperationResult:
    """
    Delete judges together with their roster links and explicit assignments.

    Unknown ids are reported as item failures; cached assignment views of
    the removed judges are invalidated after the commit.
    """
    if not judge_ids:
        raise ValidationError("No judge IDs provided", code=ErrorCode.MISSING_FIELD)
    judge_ids = list(judge_ids)
    cache = cache if cache is not None else get_cache()

    category_ids = await _categories_of(db, judge_ids)

    await db.execute(delete(Assignment).where(Assignment.judge_id.in_(judge_ids)))
    await db.execute(delete(CategoryJudge).where(CategoryJudge.judge_id.in_(judge_ids)))
    result = await bulk_delete(db, Judge, judge_ids)

    if result.successful:
        _invalidate_judges(cache, judge_ids, category_ids)

    logger.info(f"[BULK JUDGES] delete: {result.successful}/{result.total} removed")
    return result


async def import_judges(db: AsyncSession, buffer: Union[bytes, str]) -> Dict[str, Any]:
    """Validate a judge CSV and insert every valid row in one statement."""
    parsed = CSVService.parse_csv(buffer)
    CSVService.check_headers(parsed.headers, JUDGE_IMPORT_SCHEMA)
    validation = CSVService.validate_rows(parsed.rows, JUDGE_IMPORT_SCHEMA)

    if validation.successful == 0:
        raise ValidationError(
            "CSV contains no valid rows",
            code=ErrorCode.CSV_NO_VALID_ROWS,
            details={"validation": validation.to_dict()}
        )

    result = await bulk_create(db, Judge, validation.data)
    logger.info(f"[JUDGE IMPORT] rows={validation.total} created={result.successful}")
    return {"validation": validation.to_dict(), "import": result.to_dict()}
