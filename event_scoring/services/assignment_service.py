"""
Assignment Reconciliation Service

Owns explicit judge assignments and merges them with implicit roster
memberships (CategoryJudge) into one view keyed by (judge, category).

Core rules:
- Explicit records always win over derived ones for the same key
- The merged view never holds two entries for the same key
- A derived membership whose category -> contest -> event chain is
  incomplete is never surfaced
- Cache invalidation runs after the write commits, never before:
  list prefix first, then judge keys, then category keys
- Bulk assignment is sequential: each judge is a read-check-write
"""
import asyncio
import copy
import enum
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Set

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from event_scoring.config.settings import settings
from event_scoring.core.cache import CacheBackend, get_cache
from event_scoring.core.db_errors import is_unique_violation
from event_scoring.errors import (
    ConflictError, ErrorCode, NotFoundError, ValidationError, validate_required
)
from event_scoring.orm.assignment import Assignment, AssignmentStatus
from event_scoring.orm.event import Category, Contest
from event_scoring.orm.judge import CategoryJudge, Judge

logger = logging.getLogger(__name__)

LIST_CACHE_PREFIX = "assignments:list:"
JUDGE_CACHE_PREFIX = "assignments:judge:"
CATEGORY_CACHE_PREFIX = "assignments:category:"

# Defaults synthesized for roster memberships
DERIVED_STATUS = AssignmentStatus.ACTIVE.value
DERIVED_PRIORITY = 0

SOURCE_EXPLICIT = "explicit"
SOURCE_DERIVED = "derived"

UPDATABLE_FIELDS = ("status", "notes", "priority")

PostCommitHook = Callable[[str, Dict[str, Any]], Awaitable[None]]

# Strong references so fire-and-forget hook tasks are not collected mid-flight
_background_tasks: Set[asyncio.Task] = set()


class DuplicateAssignmentError(Exception):
    """Persistence signal: an assignment already exists for (tenant, judge, category)."""
    def __init__(self, judge_id: int, category_id: Optional[int]):
        self.judge_id = judge_id
        self.category_id = category_id
        super().__init__(f"Assignment already exists for judge {judge_id} and category {category_id}")


class BulkAssignOutcome(str, enum.Enum):
    CREATED = "CREATED"
    SKIPPED_EXISTING = "SKIPPED_EXISTING"
    FAILED = "FAILED"


@dataclass
class JudgeAssignResult:
    judge_id: int
    outcome: BulkAssignOutcome
    assignment_id: Optional[int] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "judge_id": self.judge_id,
            "outcome": self.outcome.value,
            "assignment_id": self.assignment_id,
            "error": self.error,
        }


@dataclass
class BulkAssignResult:
    category_id: int
    outcomes: List[JudgeAssignResult] = field(default_factory=list)

    def _count(self, outcome: BulkAssignOutcome) -> int:
        return sum(1 for r in self.outcomes if r.outcome == outcome)

    @property
    def assigned_count(self) -> int:
        return self._count(BulkAssignOutcome.CREATED)

    @property
    def skipped_count(self) -> int:
        return self._count(BulkAssignOutcome.SKIPPED_EXISTING)

    @property
    def failed_count(self) -> int:
        return self._count(BulkAssignOutcome.FAILED)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "category_id": self.category_id,
            "assigned_count": self.assigned_count,
            "skipped_count": self.skipped_count,
            "failed_count": self.failed_count,
            "outcomes": [r.to_dict() for r in self.outcomes],
        }


@dataclass
class AssignmentFilters:
    """AND-combined filters for the reconciled view."""
    status: Optional[str] = None
    judge_id: Optional[int] = None
    category_id: Optional[int] = None
    contest_id: Optional[int] = None
    event_id: Optional[int] = None
    tenant_id: Optional[str] = None

    @classmethod
    def from_mapping(cls, filters: Optional[Mapping[str, Any]]) -> "AssignmentFilters":
        if filters is None:
            return cls()
        if isinstance(filters, cls):
            return filters
        known = {k: v for k, v in filters.items() if k in cls.__dataclass_fields__}
        return cls(**known)

    def as_dict(self) -> Dict[str, Any]:
        return {
            key: getattr(self, key)
            for key in self.__dataclass_fields__
            if getattr(self, key) not in (None, "")
        }

    def fingerprint(self) -> str:
        """Deterministic serialization used as the list cache key."""
        return json.dumps(self.as_dict(), sort_keys=True, separators=(",", ":"), default=str)


def list_cache_key(filters: AssignmentFilters) -> str:
    return f"{LIST_CACHE_PREFIX}{filters.fingerprint()}"


def judge_cache_key(judge_id: Any) -> str:
    return f"{JUDGE_CACHE_PREFIX}{judge_id}"


def category_cache_key(category_id: Any) -> str:
    return f"{CATEGORY_CACHE_PREFIX}{category_id}"


def view_key(entry: Mapping[str, Any]) -> str:
    """Natural key of a view entry: one entry per (judge, category)."""
    return f"{entry['judge_id']}|{entry['category_id']}"


def merge_assignment_views(
    derived: Iterable[Dict[str, Any]],
    explicit: Iterable[Dict[str, Any]]
) -> List[Dict[str, Any]]:
    """
    Derived entries go in first; explicit entries overwrite them by key.

    Two explicit entries with the same key (contest-level records of one
    judge) keep the first in the given order.
    """
    merged: Dict[str, Dict[str, Any]] = {}
    for entry in derived:
        merged[view_key(entry)] = entry
    taken: Set[str] = set()
    for entry in explicit:
        key = view_key(entry)
        if key in taken:
            continue
        merged[key] = entry
        taken.add(key)
    return list(merged.values())


def _assignment_relations():
    return (
        selectinload(Assignment.judge),
        selectinload(Assignment.category),
        selectinload(Assignment.contest),
        selectinload(Assignment.event),
        selectinload(Assignment.assigned_by_user),
    )


def _explicit_view(assignment: Assignment) -> Dict[str, Any]:
    data = assignment.to_dict(include_relations=True)
    data["source"] = SOURCE_EXPLICIT
    return data


def _derived_view(link: CategoryJudge) -> Optional[Dict[str, Any]]:
    """Synthesize an assignment-shaped entry, or None if the chain is incomplete."""
    category = link.category
    contest = category.contest if category else None
    event = contest.event if contest else None
    if category is None or contest is None or event is None:
        return None

    return {
        "id": f"category_judge_{link.category_id}_{link.judge_id}",
        "source": SOURCE_DERIVED,
        "tenant_id": event.tenant_id,
        "judge_id": link.judge_id,
        "category_id": link.category_id,
        "contest_id": contest.id,
        "event_id": event.id,
        "status": DERIVED_STATUS,
        "priority": DERIVED_PRIORITY,
        "notes": None,
        "assigned_by": None,
        "assigned_at": link.created_at.isoformat() if link.created_at else None,
        "judge": link.judge.to_summary() if link.judge else None,
        "category": category.to_summary(),
        "contest": contest.to_summary(),
        "event": event.to_summary(),
        "assigned_by_user": None,
    }


class AssignmentService:
    """
    Reads and writes judge assignments through an injected cache.

    Args:
        db: session used for every read and write of this service
        cache: cache backend (defaults to the process cache)
        hooks: async callables run after a successful create, e.g.
            notifications; failures are logged and never fail the call
        ttl_seconds: lifetime of cached views
    """

    def __init__(
        self,
        db: AsyncSession,
        cache: Optional[CacheBackend] = None,
        hooks: Optional[Sequence[PostCommitHook]] = None,
        ttl_seconds: Optional[int] = None
    ):
        self.db = db
        self.cache = cache if cache is not None else get_cache()
        self.hooks = list(hooks or [])
        self.ttl_seconds = ttl_seconds if ttl_seconds is not None else settings.ASSIGNMENT_CACHE_TTL_SECONDS
        self._pending_hooks: Set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_all_assignments(self, filters: Optional[Mapping[str, Any]] = None) -> List[Dict[str, Any]]:
        """
        Reconciled view of explicit assignments and roster memberships.

        Filters judge_id/category_id apply to both sources; contest_id,
        event_id and tenant_id are matched against the walked chain of
        memberships; status applies to explicit records only.
        """
        filters = AssignmentFilters.from_mapping(filters)
        key = list_cache_key(filters)

        cached = self.cache.get(key)
        if cached is not None:
            return copy.deepcopy(cached)

        explicit = await self._query_explicit(filters)
        derived = await self._query_derived(filters)
        view = merge_assignment_views(derived, explicit)

        self.cache.set(key, copy.deepcopy(view), self.ttl_seconds)
        logger.debug(f"Assignment view rebuilt for {filters.fingerprint()}: {len(view)} entries")
        return list(view)

    async def _query_explicit(self, filters: AssignmentFilters) -> List[Dict[str, Any]]:
        stmt = select(Assignment).options(*_assignment_relations())
        if filters.status:
            stmt = stmt.where(Assignment.status == filters.status)
        if filters.judge_id is not None:
            stmt = stmt.where(Assignment.judge_id == filters.judge_id)
        if filters.category_id is not None:
            stmt = stmt.where(Assignment.category_id == filters.category_id)
        if filters.contest_id is not None:
            stmt = stmt.where(Assignment.contest_id == filters.contest_id)
        if filters.event_id is not None:
            stmt = stmt.where(Assignment.event_id == filters.event_id)
        if filters.tenant_id:
            stmt = stmt.where(Assignment.tenant_id == filters.tenant_id)
        stmt = stmt.order_by(Assignment.priority.desc(), Assignment.assigned_at.desc(), Assignment.id.desc())

        result = await self.db.execute(stmt)
        return [_explicit_view(a) for a in result.scalars().all()]

    async def _query_derived(self, filters: AssignmentFilters) -> List[Dict[str, Any]]:
        stmt = select(CategoryJudge).options(
            selectinload(CategoryJudge.judge),
            selectinload(CategoryJudge.category)
            .selectinload(Category.contest)
            .selectinload(Contest.event),
        )
        if filters.judge_id is not None:
            stmt = stmt.where(CategoryJudge.judge_id == filters.judge_id)
        if filters.category_id is not None:
            stmt = stmt.where(CategoryJudge.category_id == filters.category_id)
        stmt = stmt.order_by(CategoryJudge.category_id, CategoryJudge.judge_id)

        result = await self.db.execute(stmt)
        entries = []
        for link in result.scalars().all():
            entry = _derived_view(link)
            if entry is None:
                continue
            if filters.contest_id is not None and entry["contest_id"] != filters.contest_id:
                continue
            if filters.event_id is not None and entry["event_id"] != filters.event_id:
                continue
            if filters.tenant_id and entry["tenant_id"] != filters.tenant_id:
                continue
            entries.append(entry)
        return entries

    async def get_assignment_by_id(self, assignment_id: int) -> Dict[str, Any]:
        assignment = await self._load(assignment_id)
        if assignment is None:
            raise NotFoundError("Assignment", assignment_id, code=ErrorCode.ASSIGNMENT_NOT_FOUND)
        return _explicit_view(assignment)

    async def get_assignments_for_judge(self, judge_id: int) -> List[Dict[str, Any]]:
        """Explicit assignments of one judge, cached under the judge key."""
        key = judge_cache_key(judge_id)
        cached = self.cache.get(key)
        if cached is not None:
            return copy.deepcopy(cached)

        entries = await self._query_explicit(AssignmentFilters(judge_id=judge_id))
        self.cache.set(key, copy.deepcopy(entries), self.ttl_seconds)
        return list(entries)

    async def get_assignments_for_category(self, category_id: int) -> List[Dict[str, Any]]:
        """Explicit assignments of one category, cached under the category key."""
        key = category_cache_key(category_id)
        cached = self.cache.get(key)
        if cached is not None:
            return copy.deepcopy(cached)

        entries = await self._query_explicit(AssignmentFilters(category_id=category_id))
        self.cache.set(key, copy.deepcopy(entries), self.ttl_seconds)
        return list(entries)

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def create_assignment(self, data: Mapping[str, Any], actor_id: Optional[int]) -> Dict[str, Any]:
        """
        Create one explicit assignment.

        Raises:
            ValidationError: judge_id missing, or neither category_id nor contest_id
            NotFoundError: category, contest or judge does not exist
            ConflictError: the judge is already assigned to the category
        """
        validate_required(dict(data), ["judge_id"])
        judge_id = data["judge_id"]
        category_id = data.get("category_id")
        contest_id = data.get("contest_id")
        event_id = data.get("event_id")
        tenant_id = None

        if category_id is None and contest_id is None:
            raise ValidationError(
                "Either category_id or contest_id is required",
                code=ErrorCode.MISSING_FIELD,
                details={"fields": ["category_id", "contest_id"]}
            )

        if category_id is not None:
            category = await self._load_category_chain(category_id)
            if category is None:
                raise NotFoundError("Category", category_id, code=ErrorCode.CATEGORY_NOT_FOUND)
            contest_id, event_id, tenant_id = self._chain_of(category)

            if await self._find_existing(judge_id, category_id) is not None:
                raise ConflictError(
                    "Assignment already exists for this judge and category",
                    code=ErrorCode.DUPLICATE_ASSIGNMENT,
                    details={"judge_id": judge_id, "category_id": category_id}
                )
        else:
            contest = await self._load_contest(contest_id)
            if contest is None:
                raise NotFoundError("Contest", contest_id, code=ErrorCode.CONTEST_NOT_FOUND)
            event_id = contest.event_id
            tenant_id = contest.event.tenant_id if contest.event else None

        judge = await self.db.get(Judge, judge_id)
        if judge is None:
            raise NotFoundError("Judge", judge_id, code=ErrorCode.JUDGE_NOT_FOUND)
        if tenant_id is None:
            tenant_id = judge.tenant_id

        assignment = Assignment(
            tenant_id=tenant_id,
            judge_id=judge_id,
            category_id=category_id,
            contest_id=contest_id,
            event_id=event_id,
            notes=data.get("notes"),
            priority=data.get("priority") or 0,
            status=AssignmentStatus.PENDING.value,
            assigned_by=actor_id,
            assigned_at=datetime.utcnow(),
        )
        try:
            await self._insert(assignment)
        except DuplicateAssignmentError:
            raise ConflictError(
                "Assignment already exists for this judge and category",
                code=ErrorCode.DUPLICATE_ASSIGNMENT,
                details={"judge_id": judge_id, "category_id": category_id}
            )

        logger.info(
            f"[ASSIGNMENT CREATED] id={assignment.id} judge={judge_id} "
            f"category={category_id} contest={contest_id} by={actor_id}"
        )
        self._invalidate([judge_id], [category_id])

        stored = _explicit_view(await self._load(assignment.id))
        self._fire_hooks("assignment.created", stored)
        return stored

    async def update_assignment(self, assignment_id: int, patch: Mapping[str, Any]) -> Dict[str, Any]:
        """Update status / notes / priority of an existing assignment."""
        assignment = await self.db.get(Assignment, assignment_id)
        if assignment is None:
            raise NotFoundError("Assignment", assignment_id, code=ErrorCode.ASSIGNMENT_NOT_FOUND)

        changes = {k: v for k, v in patch.items() if k in UPDATABLE_FIELDS}
        if "status" in changes:
            changes["status"] = self._normalize_status(changes["status"])
        if "priority" in changes and changes["priority"] is None:
            changes["priority"] = 0

        for key, value in changes.items():
            setattr(assignment, key, value)
        await self.db.commit()

        logger.info(f"[ASSIGNMENT UPDATED] id={assignment_id} fields={sorted(changes)}")
        self._invalidate([assignment.judge_id], [assignment.category_id])
        return _explicit_view(await self._load(assignment_id))

    async def delete_assignment(self, assignment_id: int) -> None:
        assignment = await self.db.get(Assignment, assignment_id)
        if assignment is None:
            raise NotFoundError("Assignment", assignment_id, code=ErrorCode.ASSIGNMENT_NOT_FOUND)

        judge_id, category_id = assignment.judge_id, assignment.category_id
        await self.db.delete(assignment)
        await self.db.commit()

        logger.info(f"[ASSIGNMENT DELETED] id={assignment_id} judge={judge_id} category={category_id}")
        self._invalidate([judge_id], [category_id])

    async def bulk_assign_judges(
        self,
        category_id: int,
        judge_ids: Sequence[int],
        actor_id: Optional[int]
    ) -> BulkAssignResult:
        """
        Assign many judges to one category, one judge at a time.

        An existing assignment is an expected no-op (SKIPPED_EXISTING), not
        an error. Judges run sequentially so two check-then-insert sequences
        for the same category never interleave.

        Raises:
            NotFoundError: the category does not exist
        """
        category = await self._load_category_chain(category_id)
        if category is None:
            raise NotFoundError("Category", category_id, code=ErrorCode.CATEGORY_NOT_FOUND)
        contest_id, event_id, tenant_id = self._chain_of(category)

        result = BulkAssignResult(category_id=category_id)
        try:
            for judge_id in judge_ids:
                outcome = await self._assign_one(judge_id, category_id, contest_id, event_id, tenant_id, actor_id)
                result.outcomes.append(outcome)
                if outcome.outcome == BulkAssignOutcome.FAILED:
                    logger.warning(f"[BULK ASSIGN] judge={judge_id} category={category_id} failed: {outcome.error}")
        finally:
            # Judges before a mid-loop failure are already committed
            self._invalidate(judge_ids, [category_id])
        logger.info(
            f"[BULK ASSIGN] category={category_id} created={result.assigned_count} "
            f"skipped={result.skipped_count} failed={result.failed_count}"
        )
        return result

    async def _assign_one(
        self,
        judge_id: int,
        category_id: int,
        contest_id: Optional[int],
        event_id: Optional[int],
        tenant_id: Optional[str],
        actor_id: Optional[int]
    ) -> JudgeAssignResult:
        existing = await self._find_existing(judge_id, category_id)
        if existing is not None:
            return JudgeAssignResult(judge_id, BulkAssignOutcome.SKIPPED_EXISTING, assignment_id=existing.id)

        judge = await self.db.get(Judge, judge_id)
        if judge is None:
            return JudgeAssignResult(judge_id, BulkAssignOutcome.FAILED, error=f"Judge with id '{judge_id}' not found")

        assignment = Assignment(
            tenant_id=tenant_id if tenant_id is not None else judge.tenant_id,
            judge_id=judge_id,
            category_id=category_id,
            contest_id=contest_id,
            event_id=event_id,
            status=AssignmentStatus.PENDING.value,
            priority=0,
            assigned_by=actor_id,
            assigned_at=datetime.utcnow(),
        )
        try:
            await self._insert(assignment)
        except DuplicateAssignmentError:
            return JudgeAssignResult(judge_id, BulkAssignOutcome.SKIPPED_EXISTING)
        except SQLAlchemyError as e:
            await self.db.rollback()
            return JudgeAssignResult(judge_id, BulkAssignOutcome.FAILED, error=str(e))

        return JudgeAssignResult(judge_id, BulkAssignOutcome.CREATED, assignment_id=assignment.id)

    async def remove_all_assignments_for_category(self, category_id: int) -> int:
        """Delete every explicit assignment of a category; returns the count."""
        result = await self.db.execute(
            select(Assignment.judge_id).where(Assignment.category_id == category_id)
        )
        judge_ids = list(result.scalars().all())

        await self.db.execute(delete(Assignment).where(Assignment.category_id == category_id))
        await self.db.commit()

        logger.info(f"[ASSIGNMENTS CLEARED] category={category_id} removed={len(judge_ids)}")
        self._invalidate(judge_ids, [category_id])
        return len(judge_ids)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _insert(self, assignment: Assignment) -> None:
        """Persist and commit; a uniqueness violation becomes DuplicateAssignmentError."""
        self.db.add(assignment)
        try:
            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            if is_unique_violation(e):
                raise DuplicateAssignmentError(assignment.judge_id, assignment.category_id) from e
            raise

    async def _load(self, assignment_id: int) -> Optional[Assignment]:
        result = await self.db.execute(
            select(Assignment)
            .options(*_assignment_relations())
            .where(Assignment.id == assignment_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def _find_existing(self, judge_id: int, category_id: int) -> Optional[Assignment]:
        result = await self.db.execute(
            select(Assignment).where(
                Assignment.judge_id == judge_id,
                Assignment.category_id == category_id
            )
        )
        return result.scalars().first()

    async def _load_category_chain(self, category_id: int) -> Optional[Category]:
        result = await self.db.execute(
            select(Category)
            .options(selectinload(Category.contest).selectinload(Contest.event))
            .where(Category.id == category_id)
        )
        return result.scalar_one_or_none()

    async def _load_contest(self, contest_id: int) -> Optional[Contest]:
        result = await self.db.execute(
            select(Contest).options(selectinload(Contest.event)).where(Contest.id == contest_id)
        )
        return result.scalar_one_or_none()

    @staticmethod
    def _chain_of(category: Category):
        """(contest_id, event_id, tenant_id) derived from the category's parents."""
        contest = category.contest
        event = contest.event if contest else None
        return (
            category.contest_id,
            contest.event_id if contest else None,
            event.tenant_id if event else None,
        )

    @staticmethod
    def _normalize_status(status: Any) -> str:
        value = str(status.value if isinstance(status, AssignmentStatus) else status).upper()
        allowed = [s.value for s in AssignmentStatus]
        if value not in allowed:
            raise ValidationError(
                f"Invalid status. Must be one of: {', '.join(allowed)}",
                code=ErrorCode.INVALID_FORMAT,
                details={"field": "status", "value": status, "allowed": allowed}
            )
        return value

    def _invalidate(self, judge_ids: Iterable[Any], category_ids: Iterable[Any]) -> None:
        """Best-effort: list prefix, then judge keys, then category keys."""
        self.cache.delete_pattern(LIST_CACHE_PREFIX)
        for judge_id in dict.fromkeys(judge_ids):
            self.cache.delete(judge_cache_key(judge_id))
        for category_id in dict.fromkeys(category_ids):
            if category_id is not None:
                self.cache.delete(category_cache_key(category_id))

    def _fire_hooks(self, event: str, payload: Dict[str, Any]) -> None:
        for hook in self.hooks:
            task = asyncio.create_task(self._run_hook(hook, event, payload))
            _background_tasks.add(task)
            self._pending_hooks.add(task)
            task.add_done_callback(_background_tasks.discard)
            task.add_done_callback(self._pending_hooks.discard)

    @staticmethod
    async def _run_hook(hook: PostCommitHook, event: str, payload: Dict[str, Any]) -> None:
        try:
            await hook(event, payload)
        except Exception:
            logger.exception(f"Post-commit hook {getattr(hook, '__name__', hook)!r} failed for {event}")

    async def wait_for_hooks(self) -> None:
        """Let in-flight post-commit hooks finish (shutdown, tests)."""
        if self._pending_hooks:
            await asyncio.gather(*list(self._pending_hooks))
