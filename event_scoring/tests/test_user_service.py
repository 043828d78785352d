"""
Tests for user bulk operations and the CSV user import / export flow.
"""
import pytest
from sqlalchemy import select

from event_scoring.errors import ConflictError, ValidationError
from event_scoring.orm import User, UserRole
from event_scoring.security import verify_password
from event_scoring.services import user_service

VALID_CSV = (
    "email,name,role,password,active\n"
    "ann@example.com,Ann,judge,secret-1,true\n"
    "bob@example.com,Bob,AUDITOR,,false\n"
    "broken-email,Carl,JUDGE,,\n"
)


async def _users_by_email(session_factory):
    async with session_factory() as db:
        result = await db.execute(select(User).order_by(User.email))
        return {u.email: u for u in result.scalars().all()}


@pytest.mark.asyncio
async def test_create_user_hashes_password(db):
    user = await user_service.create_user(
        db, {"email": "Ann@Example.com", "name": "Ann", "role": "judge", "password": "pw-123"}
    )

    assert user.email == "ann@example.com"
    assert user.role == UserRole.JUDGE.value
    assert user.password_hash != "pw-123"
    assert verify_password("pw-123", user.password_hash)


@pytest.mark.asyncio
async def test_create_user_duplicate_email_conflicts(db):
    data = {"email": "ann@example.com", "name": "Ann", "role": "JUDGE"}
    await user_service.create_user(db, data)

    with pytest.raises(ConflictError):
        await user_service.create_user(db, data)


@pytest.mark.asyncio
async def test_create_user_rejects_unknown_role(db):
    with pytest.raises(ValidationError):
        await user_service.create_user(db, {"email": "x@example.com", "name": "X", "role": "WIZARD"})


@pytest.mark.asyncio
async def test_create_user_rejects_malformed_email(db):
    with pytest.raises(ValidationError) as exc_info:
        await user_service.create_user(db, {"email": "x@y..z", "name": "X", "role": "JUDGE"})

    assert exc_info.value.details["field"] == "email"
    result = await db.execute(select(User.id))
    assert result.scalars().all() == []


@pytest.mark.asyncio
async def test_update_user_rejects_malformed_email(db):
    user = await user_service.create_user(db, {"email": "ann@example.com", "name": "Ann", "role": "JUDGE"})

    with pytest.raises(ValidationError):
        await user_service.update_user(db, user.id, {"email": "ann@@example.com"})


@pytest.mark.asyncio
async def test_import_creates_valid_rows_and_reports_invalid_ones(session_factory):
    outcome = await user_service.import_users(session_factory, VALID_CSV.encode("utf-8"))

    assert outcome["validation"]["total"] == 3
    assert outcome["validation"]["failed"] == 1
    assert outcome["validation"]["errors"][0]["row"] == 4
    assert outcome["import"]["successful"] == 2

    users = await _users_by_email(session_factory)
    assert set(users) == {"ann@example.com", "bob@example.com"}
    assert users["ann@example.com"].is_active is True
    assert users["bob@example.com"].is_active is False
    assert users["bob@example.com"].password_hash


@pytest.mark.asyncio
async def test_import_strict_mode_rejects_file_with_invalid_rows(session_factory):
    with pytest.raises(ValidationError) as exc:
        await user_service.import_users(session_factory, VALID_CSV, strict=True)

    assert exc.value.code == "CSV_INVALID"
    assert await _users_by_email(session_factory) == {}


@pytest.mark.asyncio
async def test_import_with_no_valid_rows_is_rejected(session_factory):
    with pytest.raises(ValidationError) as exc:
        await user_service.import_users(session_factory, "email,name,role\nbad,,NOBODY\n")

    assert exc.value.code == "CSV_NO_VALID_ROWS"


@pytest.mark.asyncio
async def test_import_missing_required_column(session_factory):
    with pytest.raises(ValidationError) as exc:
        await user_service.import_users(session_factory, "email,name\na@example.com,A\n")

    assert exc.value.details["missing_columns"] == ["role"]


@pytest.mark.asyncio
async def test_import_existing_email_is_an_item_failure(db, session_factory):
    await user_service.create_user(db, {"email": "ann@example.com", "name": "Ann", "role": "JUDGE"})

    outcome = await user_service.import_users(session_factory, VALID_CSV)

    assert outcome["import"]["successful"] == 1
    assert outcome["import"]["failed"] == 1
    assert "ann@example.com" in outcome["import"]["errors"][0]["error"]


@pytest.mark.asyncio
async def test_bulk_deactivate_and_activate(db, session_factory):
    a = await user_service.create_user(db, {"email": "a@example.com", "name": "A", "role": "JUDGE"})
    b = await user_service.create_user(db, {"email": "b@example.com", "name": "B", "role": "JUDGE"})

    result = await user_service.bulk_deactivate_users(session_factory, [a.id, b.id, 9999])

    assert result.successful == 2
    assert result.failed == 1
    assert result.errors[0].item == 9999
    users = await _users_by_email(session_factory)
    assert not users["a@example.com"].is_active
    assert not users["b@example.com"].is_active

    result = await user_service.bulk_activate_users(session_factory, [a.id])
    assert result.successful == 1
    users = await _users_by_email(session_factory)
    assert users["a@example.com"].is_active


@pytest.mark.asyncio
async def test_bulk_change_role(db, session_factory):
    a = await user_service.create_user(db, {"email": "a@example.com", "name": "A", "role": "JUDGE"})

    result = await user_service.bulk_change_role(session_factory, [a.id], "board")

    assert result.successful == 1
    users = await _users_by_email(session_factory)
    assert users["a@example.com"].role == "BOARD"


@pytest.mark.asyncio
async def test_actor_cannot_target_own_account(db, session_factory):
    admin = await user_service.create_user(db, {"email": "root@example.com", "name": "Root", "role": "ADMIN"})

    with pytest.raises(ValidationError):
        await user_service.bulk_change_role(session_factory, [admin.id], "JUDGE", actor_id=admin.id)
    with pytest.raises(ValidationError):
        await user_service.bulk_delete_users(session_factory, [admin.id], actor_id=admin.id)


@pytest.mark.asyncio
async def test_bulk_delete_users(db, session_factory):
    a = await user_service.create_user(db, {"email": "a@example.com", "name": "A", "role": "JUDGE"})

    result = await user_service.bulk_delete_users(session_factory, [a.id, 9999])

    assert result.successful == 1
    assert result.failed == 1
    assert await _users_by_email(session_factory) == {}


@pytest.mark.asyncio
async def test_empty_id_list_is_rejected(session_factory):
    with pytest.raises(ValidationError):
        await user_service.bulk_activate_users(session_factory, [])


@pytest.mark.asyncio
async def test_export_filters_by_active_and_role(db):
    await user_service.create_user(db, {"email": "a@example.com", "name": "A", "role": "JUDGE"})
    await user_service.create_user(db, {"email": "b@example.com", "name": "B", "role": "ADMIN"})
    await user_service.create_user(
        db, {"email": "c@example.com", "name": "C", "role": "JUDGE", "active": False}
    )

    text = await user_service.export_users(db, active=True, role="judge")

    lines = text.splitlines()
    assert lines[0] == "ID,Email,Name,Role,Phone,Active,Created At"
    assert len(lines) == 2
    assert ",a@example.com,A,JUDGE,,true," in lines[1]
