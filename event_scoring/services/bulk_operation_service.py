"""
Bulk Mutation Executor

Runs one async operation over many items in fixed-size batches:
- Items inside a batch run concurrently (asyncio.gather)
- Batches run strictly one after another
- Every per-item failure is recorded, never raised, unless
  continue_on_error is False

Also provides the set-based helpers (create many, update many by id,
delete many, soft delete many) used by the bulk endpoints.
"""
import asyncio
import logging
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple, Type

from sqlalchemy import delete, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from event_scoring.config.settings import settings
from event_scoring.errors import ErrorCode, NotFoundError, ValidationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BulkOperationError:
    """One failed item and the stringified reason."""
    item: Any
    error: str

    def to_dict(self) -> Dict[str, Any]:
        return {"item": self.item, "error": self.error}


@dataclass(frozen=True)
class BulkOperationResult:
    """Immutable outcome of a bulk call: successful + failed == total."""
    total: int
    successful: int
    failed: int
    errors: Tuple[BulkOperationError, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "successful": self.successful,
            "failed": self.failed,
            "errors": [e.to_dict() for e in self.errors],
        }


@dataclass
class BulkOperationOptions:
    continue_on_error: bool = field(default_factory=lambda: settings.BULK_CONTINUE_ON_ERROR)
    batch_size: int = field(default_factory=lambda: settings.BULK_BATCH_SIZE)


def chunked(items: Sequence[Any], size: int) -> List[Sequence[Any]]:
    """Split items into contiguous slices of at most `size`."""
    return [items[i:i + size] for i in range(0, len(items), size)]


async def execute_bulk_operation(
    operation: Callable[[Any], Awaitable[Any]],
    items: Sequence[Any],
    options: Optional[BulkOperationOptions] = None
) -> BulkOperationResult:
    """
    Apply `operation` to every item, batch by batch.

    With continue_on_error (the default) every item is attempted exactly
    once regardless of earlier failures. Without it, the first failure of
    a batch (in item order) is re-raised once that batch settles and no
    later batch starts; the partial counts are not returned.

    Args:
        operation: async callable invoked once per item
        items: the collection to process
        options: batching and error policy

    Returns:
        BulkOperationResult with total == len(items)

    Raises:
        ValidationError: if batch_size is below 1
        Exception: the item's own exception when continue_on_error is False
    """
    options = options or BulkOperationOptions()
    if options.batch_size < 1:
        raise ValidationError(
            f"batch_size must be a positive integer, got {options.batch_size}",
            code=ErrorCode.INVALID_FORMAT
        )

    items = list(items)
    successful = 0
    failed = 0
    errors: List[BulkOperationError] = []

    async def attempt(item: Any) -> Any:
        # A synchronous raise from operation() becomes this item's outcome
        return await operation(item)

    for batch_number, batch in enumerate(chunked(items, options.batch_size), start=1):
        outcomes = await asyncio.gather(
            *(attempt(item) for item in batch),
            return_exceptions=True
        )

        for item, outcome in zip(batch, outcomes):
            if isinstance(outcome, asyncio.CancelledError):
                raise outcome
            if isinstance(outcome, BaseException):
                failed += 1
                errors.append(BulkOperationError(item=item, error=str(outcome)))
                logger.warning(f"Bulk item failed in batch {batch_number}: {outcome}")
                if not options.continue_on_error:
                    raise outcome
            else:
                successful += 1

    result = BulkOperationResult(
        total=len(items),
        successful=successful,
        failed=failed,
        errors=tuple(errors)
    )
    logger.info(
        f"Bulk operation finished: {result.successful}/{result.total} succeeded, "
        f"{result.failed} failed"
    )
    return result


def _insert_ignoring_duplicates(db: AsyncSession, model: Type[Any]):
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert(model.__table__).on_conflict_do_nothing()
    if dialect == "sqlite":
        return sqlite.insert(model.__table__).on_conflict_do_nothing()
    return model.__table__.insert().prefix_with("IGNORE")


async def bulk_create(
    db: AsyncSession,
    model: Type[Any],
    rows: List[Dict[str, Any]]
) -> BulkOperationResult:
    """
    Insert many rows in one statement, skipping rows that hit a uniqueness
    constraint.

    Rows must share the same keys. Every skipped row gets its own error
    entry where the dialect supports INSERT ... RETURNING; otherwise one
    entry reports the skipped count. A database failure fails every row
    with one error.
    """
    if not rows:
        return BulkOperationResult(total=0, successful=0, failed=0)

    columns = list(rows[0].keys())
    returning = db.get_bind().dialect.insert_returning
    try:
        stmt = _insert_ignoring_duplicates(db, model).values(rows)
        if returning:
            stmt = stmt.returning(*(model.__table__.c[name] for name in columns))
        result = await db.execute(stmt)
        inserted = [tuple(r) for r in result.all()] if returning else None
        rowcount = result.rowcount
        await db.commit()
    except Exception as e:
        await db.rollback()
        logger.error(f"Bulk create on {model.__tablename__} failed: {e}")
        return BulkOperationResult(
            total=len(rows),
            successful=0,
            failed=len(rows),
            errors=(BulkOperationError(item=rows, error=str(e)),)
        )

    if inserted is None:
        created = max(rowcount or 0, 0)
        skipped = len(rows) - created
        errors = (
            (BulkOperationError(item=None, error=f"{skipped} rows skipped as duplicates"),)
            if skipped else ()
        )
        return BulkOperationResult(total=len(rows), successful=created, failed=skipped, errors=errors)

    remaining = Counter(inserted)
    skipped_errors = []
    for row in rows:
        key = tuple(row[name] for name in columns)
        if remaining[key] > 0:
            remaining[key] -= 1
        else:
            skipped_errors.append(BulkOperationError(item=row, error="Skipped: duplicate of an existing record"))

    if skipped_errors:
        logger.warning(f"Bulk create on {model.__tablename__}: {len(skipped_errors)} duplicate rows skipped")
    return BulkOperationResult(
        total=len(rows),
        successful=len(rows) - len(skipped_errors),
        failed=len(skipped_errors),
        errors=tuple(skipped_errors)
    )


async def bulk_update(
    session_factory: async_sessionmaker,
    model: Type[Any],
    updates: List[Dict[str, Any]],
    options: Optional[BulkOperationOptions] = None
) -> BulkOperationResult:
    """
    Update records one by one through the executor.

    Each entry is {"id": ..., "data": {...}}; a missing id is an item failure.
    Every item gets its own session since items of a batch run concurrently.
    """
    async def apply(entry: Dict[str, Any]) -> None:
        async with session_factory() as db:
            result = await db.execute(
                update(model).where(model.id == entry["id"]).values(**entry["data"])
            )
            if result.rowcount == 0:
                await db.rollback()
                raise NotFoundError(model.__name__, entry["id"])
            await db.commit()

    return await execute_bulk_operation(apply, updates, options)


async def _existing_ids(db: AsyncSession, model: Type[Any], ids: List[Any]) -> set:
    result = await db.execute(select(model.id).where(model.id.in_(ids)))
    return set(result.scalars().all())


def _id_errors(model: Type[Any], ids: List[Any], found: set) -> Tuple[BulkOperationError, ...]:
    """One error per failing occurrence: unknown ids and repeats of a known id."""
    seen = set()
    errors = []
    for i in ids:
        if i not in found:
            errors.append(BulkOperationError(item=i, error=f"{model.__name__} with id '{i}' not found"))
        elif i in seen:
            errors.append(BulkOperationError(item=i, error=f"Duplicate id '{i}' in request"))
        else:
            seen.add(i)
    return tuple(errors)


async def bulk_delete(
    db: AsyncSession,
    model: Type[Any],
    ids: List[Any]
) -> BulkOperationResult:
    """
    Delete every existing id in one statement; unknown ids are item failures.

    A repeated id counts once as deleted, every further occurrence is a failure.
    """
    if not ids:
        return BulkOperationResult(total=0, successful=0, failed=0)

    try:
        found = await _existing_ids(db, model, ids)
        deleted = 0
        if found:
            result = await db.execute(delete(model).where(model.id.in_(list(found))))
            deleted = result.rowcount
        await db.commit()
    except Exception as e:
        await db.rollback()
        logger.error(f"Bulk delete on {model.__tablename__} failed: {e}")
        return BulkOperationResult(
            total=len(ids),
            successful=0,
            failed=len(ids),
            errors=(BulkOperationError(item=ids, error=str(e)),)
        )

    return BulkOperationResult(
        total=len(ids),
        successful=deleted,
        failed=len(ids) - deleted,
        errors=_id_errors(model, ids, found)
    )


async def bulk_soft_delete(
    db: AsyncSession,
    model: Type[Any],
    ids: List[Any],
    flag: str = "is_active"
) -> BulkOperationResult:
    """Set `flag` to False for every existing id in one statement."""
    if not ids:
        return BulkOperationResult(total=0, successful=0, failed=0)

    try:
        found = await _existing_ids(db, model, ids)
        updated = 0
        if found:
            result = await db.execute(
                update(model).where(model.id.in_(list(found))).values({flag: False})
            )
            updated = result.rowcount
        await db.commit()
    except Exception as e:
        await db.rollback()
        logger.error(f"Bulk soft delete on {model.__tablename__} failed: {e}")
        return BulkOperationResult(
            total=len(ids),
            successful=0,
            failed=len(ids),
            errors=(BulkOperationError(item=ids, error=str(e)),)
        )

    return BulkOperationResult(
        total=len(ids),
        successful=updated,
        failed=len(ids) - updated,
        errors=_id_errors(model, ids, found)
    )
