"""
Tests for the assignment reconciliation engine

Covers:
- Explicit assignments take precedence over roster memberships
- At most one view entry per (judge, category)
- Memberships with an incomplete category -> contest -> event chain are hidden
- Cache read-through and invalidation after writes
- Idempotent bulk assignment with typed outcomes
- Conflict / NotFound / Validation failures
"""
from collections import Counter
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from event_scoring.errors import ConflictError, NotFoundError, ValidationError
from event_scoring.orm import Assignment
from event_scoring.services.assignment_service import (
    AssignmentFilters,
    AssignmentService,
    BulkAssignOutcome,
    LIST_CACHE_PREFIX,
    category_cache_key,
    judge_cache_key,
    list_cache_key,
    merge_assignment_views,
)


@pytest_asyncio.fixture
async def service(db, cache) -> AssignmentService:
    return AssignmentService(db, cache=cache)


def _keys(view):
    return [(entry["judge_id"], entry["category_id"]) for entry in view]


async def _assignment_count(db) -> int:
    result = await db.execute(select(func.count(Assignment.id)))
    return result.scalar_one()


# ============================================================================
# Reconciled view
# ============================================================================

@pytest.mark.asyncio
async def test_membership_surfaces_as_derived_entry(service, hierarchy, roster):
    cat = hierarchy["category_id"]
    judge = hierarchy["judge_ids"][0]
    await roster(cat, judge)

    view = await service.get_all_assignments()

    assert len(view) == 1
    entry = view[0]
    assert entry["id"] == f"category_judge_{cat}_{judge}"
    assert entry["source"] == "derived"
    assert entry["status"] == "ACTIVE"
    assert entry["priority"] == 0
    assert entry["contest_id"] == hierarchy["contest_id"]
    assert entry["event_id"] == hierarchy["event_id"]
    assert entry["judge"]["name"] == "Judge 1"


@pytest.mark.asyncio
async def test_explicit_assignment_overrides_membership(service, hierarchy, roster):
    cat = hierarchy["category_id"]
    judge = hierarchy["judge_ids"][0]
    await roster(cat, judge)

    created = await service.create_assignment(
        {"judge_id": judge, "category_id": cat, "priority": 5}, hierarchy["admin_id"]
    )
    await service.update_assignment(created["id"], {"status": "completed"})

    view = await service.get_all_assignments()

    matching = [e for e in view if (e["judge_id"], e["category_id"]) == (judge, cat)]
    assert len(matching) == 1
    assert matching[0]["source"] == "explicit"
    assert matching[0]["status"] == "COMPLETED"
    assert matching[0]["priority"] == 5
    assert matching[0]["id"] == created["id"]


@pytest.mark.asyncio
async def test_view_never_duplicates_a_judge_category_pair(service, hierarchy, roster):
    cat, other = hierarchy["category_id"], hierarchy["other_category_id"]
    j1, j2, j3 = hierarchy["judge_ids"]
    await roster(cat, j1)
    await roster(cat, j2)
    await roster(other, j3)
    await service.create_assignment({"judge_id": j1, "category_id": cat}, None)
    await service.create_assignment({"judge_id": j3, "category_id": other}, None)

    view = await service.get_all_assignments()

    counts = Counter(_keys(view))
    assert len(view) == 3
    assert all(n == 1 for n in counts.values())


@pytest.mark.asyncio
async def test_membership_with_incomplete_chain_is_hidden(service, hierarchy, roster):
    await roster(hierarchy["orphan_category_id"], hierarchy["judge_ids"][0])

    assert await service.get_all_assignments() == []


@pytest.mark.asyncio
async def test_filters_apply_to_both_sources(service, hierarchy, roster):
    cat, other = hierarchy["category_id"], hierarchy["other_category_id"]
    j1, j2, _ = hierarchy["judge_ids"]
    await roster(cat, j1)
    await roster(other, j2)
    await service.create_assignment({"judge_id": j2, "category_id": cat}, None)

    by_judge = await service.get_all_assignments({"judge_id": j2})
    assert sorted(_keys(by_judge)) == sorted([(j2, cat), (j2, other)])

    by_category = await service.get_all_assignments({"category_id": cat})
    assert sorted(_keys(by_category)) == sorted([(j1, cat), (j2, cat)])

    by_event = await service.get_all_assignments({"event_id": hierarchy["event_id"]})
    assert len(by_event) == 3

    assert await service.get_all_assignments({"contest_id": 9999}) == []


@pytest.mark.asyncio
async def test_status_filter_only_narrows_explicit_records(service, hierarchy, roster):
    cat = hierarchy["category_id"]
    j1, j2, _ = hierarchy["judge_ids"]
    await roster(cat, j1)
    await service.create_assignment({"judge_id": j2, "category_id": cat}, None)

    view = await service.get_all_assignments({"status": "COMPLETED"})

    assert [e["source"] for e in view] == ["derived"]


@pytest.mark.asyncio
async def test_explicit_entries_ordered_by_priority(service, hierarchy):
    cat = hierarchy["category_id"]
    j1, j2, j3 = hierarchy["judge_ids"]
    await service.create_assignment({"judge_id": j1, "category_id": cat, "priority": 1}, None)
    await service.create_assignment({"judge_id": j2, "category_id": cat, "priority": 9}, None)
    await service.create_assignment({"judge_id": j3, "category_id": cat}, None)

    view = await service.get_all_assignments()

    assert [e["priority"] for e in view] == [9, 1, 0]


def test_merge_lets_explicit_overwrite_derived():
    derived = [
        {"id": "category_judge_1_1", "judge_id": 1, "category_id": 1, "source": "derived"},
        {"id": "category_judge_1_2", "judge_id": 2, "category_id": 1, "source": "derived"},
    ]
    explicit = [
        {"id": 10, "judge_id": 1, "category_id": 1, "source": "explicit"},
        {"id": 11, "judge_id": 1, "category_id": None, "source": "explicit"},
        {"id": 12, "judge_id": 1, "category_id": None, "source": "explicit"},
    ]

    merged = merge_assignment_views(derived, explicit)

    assert [e["id"] for e in merged] == [10, "category_judge_1_2", 11]


def test_filter_fingerprint_ignores_order_and_empty_values():
    a = AssignmentFilters.from_mapping({"judge_id": 1, "status": "ACTIVE", "event_id": None})
    b = AssignmentFilters.from_mapping({"status": "ACTIVE", "judge_id": 1})

    assert a.fingerprint() == b.fingerprint()
    assert list_cache_key(a).startswith(LIST_CACHE_PREFIX)
    assert AssignmentFilters().fingerprint() == "{}"


# ============================================================================
# Cache behaviour
# ============================================================================

@pytest.mark.asyncio
async def test_list_is_served_from_cache_until_invalidated(service, cache, hierarchy, roster):
    cat = hierarchy["category_id"]
    await service.get_all_assignments({"category_id": cat})
    assert cache.get(list_cache_key(AssignmentFilters(category_id=cat))) == []

    # A roster change is not a service write, so the cached view stays
    await roster(cat, hierarchy["judge_ids"][0])
    assert await service.get_all_assignments({"category_id": cat}) == []


@pytest.mark.asyncio
async def test_create_makes_new_record_visible_to_cached_list(service, cache, hierarchy):
    cat = hierarchy["category_id"]
    judge = hierarchy["judge_ids"][0]
    assert await service.get_all_assignments({"category_id": cat}) == []

    created = await service.create_assignment({"judge_id": judge, "category_id": cat}, None)

    view = await service.get_all_assignments({"category_id": cat})
    assert [e["id"] for e in view] == [created["id"]]


@pytest.mark.asyncio
async def test_mutating_a_returned_view_does_not_touch_the_cache(service, hierarchy):
    judge = hierarchy["judge_ids"][0]
    await service.create_assignment({"judge_id": judge, "category_id": hierarchy["category_id"]}, None)

    first = await service.get_all_assignments()
    first[0]["status"] = "TAMPERED"
    first[0]["judge"]["name"] = "Someone Else"
    first.append({"id": "bogus"})
    second = await service.get_all_assignments()

    assert len(second) == 1
    assert second[0]["status"] == "PENDING"
    assert second[0]["judge"]["name"] == "Judge 1"


@pytest.mark.asyncio
async def test_mutating_judge_and_category_views_does_not_touch_the_cache(service, hierarchy):
    judge = hierarchy["judge_ids"][0]
    cat = hierarchy["category_id"]
    await service.create_assignment({"judge_id": judge, "category_id": cat}, None)

    by_judge = await service.get_assignments_for_judge(judge)
    by_category = await service.get_assignments_for_category(cat)
    by_judge[0]["notes"] = "edited"
    by_category.clear()

    assert (await service.get_assignments_for_judge(judge))[0]["notes"] is None
    assert len(await service.get_assignments_for_category(cat)) == 1


@pytest.mark.asyncio
async def test_cached_list_expires_after_ttl(db, cache, clock, hierarchy, roster):
    service = AssignmentService(db, cache=cache, ttl_seconds=60)
    cat = hierarchy["category_id"]
    assert await service.get_all_assignments() == []

    await roster(cat, hierarchy["judge_ids"][0])
    clock.advance(61)

    assert len(await service.get_all_assignments()) == 1


@pytest.mark.asyncio
async def test_judge_and_category_views_invalidated_on_write(service, cache, hierarchy):
    cat = hierarchy["category_id"]
    judge = hierarchy["judge_ids"][0]
    assert await service.get_assignments_for_judge(judge) == []
    assert await service.get_assignments_for_category(cat) == []
    assert cache.get(judge_cache_key(judge)) == []

    await service.create_assignment({"judge_id": judge, "category_id": cat}, None)

    assert cache.get(judge_cache_key(judge)) is None
    assert cache.get(category_cache_key(cat)) is None
    assert len(await service.get_assignments_for_judge(judge)) == 1
    assert len(await service.get_assignments_for_category(cat)) == 1


# ============================================================================
# Single-item writes
# ============================================================================

@pytest.mark.asyncio
async def test_create_derives_chain_and_defaults(service, hierarchy):
    created = await service.create_assignment(
        {"judge_id": hierarchy["judge_ids"][0], "category_id": hierarchy["category_id"], "notes": "lead"},
        hierarchy["admin_id"],
    )

    assert created["source"] == "explicit"
    assert created["status"] == "PENDING"
    assert created["priority"] == 0
    assert created["notes"] == "lead"
    assert created["contest_id"] == hierarchy["contest_id"]
    assert created["event_id"] == hierarchy["event_id"]
    assert created["tenant_id"] == "default"
    assert created["assigned_by"] == hierarchy["admin_id"]
    assert created["assigned_by_user"]["email"] == "admin@example.com"
    assert created["category"]["name"] == "Classical"


@pytest.mark.asyncio
async def test_create_contest_level_assignment(service, hierarchy):
    created = await service.create_assignment(
        {"judge_id": hierarchy["judge_ids"][1], "contest_id": hierarchy["contest_id"]}, None
    )

    assert created["category_id"] is None
    assert created["event_id"] == hierarchy["event_id"]


@pytest.mark.asyncio
async def test_contest_level_assignments_of_one_judge_share_one_view_entry(service, hierarchy):
    judge = hierarchy["judge_ids"][1]
    data = {"judge_id": judge, "contest_id": hierarchy["contest_id"]}
    await service.create_assignment(data, None)
    await service.create_assignment({**data, "priority": 5}, None)

    view = await service.get_all_assignments({"judge_id": judge})

    assert _keys(view) == [(judge, None)]
    assert view[0]["priority"] == 5


@pytest.mark.asyncio
async def test_duplicate_create_is_a_conflict(service, hierarchy):
    data = {"judge_id": hierarchy["judge_ids"][0], "category_id": hierarchy["category_id"]}
    await service.create_assignment(data, None)

    with pytest.raises(ConflictError) as exc:
        await service.create_assignment(data, None)

    assert exc.value.status_code == 409
    assert exc.value.code == "DUPLICATE_ASSIGNMENT"


@pytest.mark.asyncio
async def test_create_requires_category_or_contest(service, hierarchy):
    with pytest.raises(ValidationError):
        await service.create_assignment({"judge_id": hierarchy["judge_ids"][0]}, None)

    with pytest.raises(ValidationError):
        await service.create_assignment({"category_id": hierarchy["category_id"]}, None)


@pytest.mark.asyncio
async def test_create_with_unknown_references_is_not_found(service, hierarchy):
    judge = hierarchy["judge_ids"][0]

    with pytest.raises(NotFoundError) as exc:
        await service.create_assignment({"judge_id": judge, "category_id": 9999}, None)
    assert exc.value.code == "CATEGORY_NOT_FOUND"

    with pytest.raises(NotFoundError) as exc:
        await service.create_assignment({"judge_id": judge, "contest_id": 9999}, None)
    assert exc.value.code == "CONTEST_NOT_FOUND"

    with pytest.raises(NotFoundError) as exc:
        await service.create_assignment({"judge_id": 9999, "category_id": hierarchy["category_id"]}, None)
    assert exc.value.code == "JUDGE_NOT_FOUND"


@pytest.mark.asyncio
async def test_update_rejects_unknown_status(service, hierarchy):
    created = await service.create_assignment(
        {"judge_id": hierarchy["judge_ids"][0], "category_id": hierarchy["category_id"]}, None
    )

    with pytest.raises(ValidationError):
        await service.update_assignment(created["id"], {"status": "ARCHIVED"})


@pytest.mark.asyncio
async def test_update_ignores_immutable_fields(service, hierarchy):
    created = await service.create_assignment(
        {"judge_id": hierarchy["judge_ids"][0], "category_id": hierarchy["category_id"]}, None
    )

    updated = await service.update_assignment(
        created["id"], {"judge_id": hierarchy["judge_ids"][1], "notes": "moved", "priority": 3}
    )

    assert updated["judge_id"] == hierarchy["judge_ids"][0]
    assert updated["notes"] == "moved"
    assert updated["priority"] == 3


@pytest.mark.asyncio
async def test_update_and_delete_missing_assignment(service):
    with pytest.raises(NotFoundError):
        await service.update_assignment(9999, {"notes": "x"})
    with pytest.raises(NotFoundError):
        await service.delete_assignment(9999)
    with pytest.raises(NotFoundError):
        await service.get_assignment_by_id(9999)


@pytest.mark.asyncio
async def test_delete_removes_record_from_view(service, hierarchy):
    created = await service.create_assignment(
        {"judge_id": hierarchy["judge_ids"][0], "category_id": hierarchy["category_id"]}, None
    )
    assert len(await service.get_all_assignments()) == 1

    await service.delete_assignment(created["id"])

    assert await service.get_all_assignments() == []


@pytest.mark.asyncio
async def test_remove_all_assignments_for_category(service, db, hierarchy):
    cat, other = hierarchy["category_id"], hierarchy["other_category_id"]
    j1, j2, j3 = hierarchy["judge_ids"]
    await service.bulk_assign_judges(cat, [j1, j2], None)
    await service.create_assignment({"judge_id": j3, "category_id": other}, None)

    removed = await service.remove_all_assignments_for_category(cat)

    assert removed == 2
    assert await _assignment_count(db) == 1


# ============================================================================
# Bulk assignment
# ============================================================================

@pytest.mark.asyncio
async def test_bulk_assign_is_idempotent(service, db, hierarchy):
    cat = hierarchy["category_id"]
    judges = hierarchy["judge_ids"][:2]

    first = await service.bulk_assign_judges(cat, judges, hierarchy["admin_id"])
    second = await service.bulk_assign_judges(cat, judges, hierarchy["admin_id"])

    assert first.assigned_count == 2
    assert second.assigned_count == 0
    assert [o.outcome for o in second.outcomes] == [BulkAssignOutcome.SKIPPED_EXISTING] * 2
    assert await _assignment_count(db) == 2


@pytest.mark.asyncio
async def test_bulk_assign_skips_existing_and_reports_failures(service, hierarchy):
    cat = hierarchy["category_id"]
    j1, j2, _ = hierarchy["judge_ids"]
    await service.create_assignment({"judge_id": j1, "category_id": cat}, None)

    result = await service.bulk_assign_judges(cat, [j1, 9999, j2], None)

    assert [o.outcome for o in result.outcomes] == [
        BulkAssignOutcome.SKIPPED_EXISTING,
        BulkAssignOutcome.FAILED,
        BulkAssignOutcome.CREATED,
    ]
    assert result.assigned_count == 1
    assert result.to_dict()["failed_count"] == 1
    assert "9999" in result.outcomes[1].error


@pytest.mark.asyncio
async def test_bulk_assign_unknown_category(service, hierarchy):
    with pytest.raises(NotFoundError):
        await service.bulk_assign_judges(9999, hierarchy["judge_ids"], None)


@pytest.mark.asyncio
async def test_bulk_assign_invalidates_cached_views(service, cache, hierarchy):
    cat = hierarchy["category_id"]
    judge = hierarchy["judge_ids"][0]
    await service.get_all_assignments()
    await service.get_assignments_for_judge(judge)
    await service.get_assignments_for_category(cat)

    await service.bulk_assign_judges(cat, [judge], None)

    assert cache.stats()["size"] == 0
    assert len(await service.get_all_assignments()) == 1


# ============================================================================
# Post-commit hooks
# ============================================================================

@pytest.mark.asyncio
async def test_hooks_run_after_create(db, cache, hierarchy):
    hook = AsyncMock()
    service = AssignmentService(db, cache=cache, hooks=[hook])

    created = await service.create_assignment(
        {"judge_id": hierarchy["judge_ids"][0], "category_id": hierarchy["category_id"]}, None
    )
    await service.wait_for_hooks()

    hook.assert_awaited_once_with("assignment.created", created)


@pytest.mark.asyncio
async def test_failing_hook_does_not_fail_create(db, cache, hierarchy):
    hook = AsyncMock(side_effect=RuntimeError("mail server down"))
    service = AssignmentService(db, cache=cache, hooks=[hook])

    created = await service.create_assignment(
        {"judge_id": hierarchy["judge_ids"][0], "category_id": hierarchy["category_id"]}, None
    )
    await service.wait_for_hooks()

    assert created["status"] == "PENDING"
    hook.assert_awaited_once()


@pytest.mark.asyncio
async def test_bulk_assign_invalidates_even_when_the_loop_fails_midway(service, cache, db, hierarchy):
    cat = hierarchy["category_id"]
    j1, j2, _ = hierarchy["judge_ids"]
    await service.get_all_assignments()
    await service.get_assignments_for_judge(j1)

    real_find = service._find_existing
    calls = 0

    async def find_then_fail(judge_id, category_id):
        nonlocal calls
        calls += 1
        if calls == 2:
            raise OperationalError("SELECT", {}, Exception("database is locked"))
        return await real_find(judge_id, category_id)

    service._find_existing = find_then_fail

    with pytest.raises(OperationalError):
        await service.bulk_assign_judges(cat, [j1, j2], None)

    assert await _assignment_count(db) == 1
    assert cache.get(list_cache_key(AssignmentFilters())) is None
    assert cache.get(judge_cache_key(j1)) is None
    service._find_existing = real_find
    view = await service.get_all_assignments()
    assert _keys(view) == [(j1, cat)]
