"""
Shared fixtures: a fresh file-backed SQLite database per test.

A file (not :memory:) is used so the per-item sessions opened by bulk
operations all see the same data.
"""
from typing import AsyncGenerator, Dict

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from event_scoring.core.cache import TTLCache
from event_scoring.database import build_session_factory
from event_scoring.orm import Base, Category, CategoryJudge, Contest, Event, Judge, User, UserRole


class FakeClock:
    """Manually advanced clock for TTL tests."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'event_scoring_test.db'}",
        echo=False,
        connect_args={"timeout": 30.0},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker:
    return build_session_factory(engine)


@pytest_asyncio.fixture
async def db(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def cache(clock) -> TTLCache:
    return TTLCache(clock=clock)


@pytest_asyncio.fixture
async def hierarchy(db: AsyncSession) -> Dict[str, int]:
    """
    One event/contest with two categories, three judges, an orphan
    category (no contest) and an admin user.
    """
    event = Event(name="Spring Gala", tenant_id="default")
    db.add(event)
    await db.flush()

    contest = Contest(name="Solo Vocal", event_id=event.id)
    db.add(contest)
    await db.flush()

    category = Category(name="Classical", contest_id=contest.id)
    other_category = Category(name="Jazz", contest_id=contest.id)
    orphan_category = Category(name="Unattached", contest_id=None)
    db.add_all([category, other_category, orphan_category])

    judges = [Judge(name=f"Judge {n}", email=f"judge{n}@example.com") for n in (1, 2, 3)]
    db.add_all(judges)

    admin = User(name="Admin", email="admin@example.com", role=UserRole.ADMIN.value)
    db.add(admin)
    await db.commit()

    return {
        "event_id": event.id,
        "contest_id": contest.id,
        "category_id": category.id,
        "other_category_id": other_category.id,
        "orphan_category_id": orphan_category.id,
        "judge_ids": [j.id for j in judges],
        "admin_id": admin.id,
    }


async def add_roster_link(db: AsyncSession, category_id: int, judge_id: int) -> None:
    db.add(CategoryJudge(category_id=category_id, judge_id=judge_id))
    await db.commit()


@pytest.fixture
def roster(db: AsyncSession):
    """Adds a CategoryJudge link: await roster(category_id, judge_id)."""
    async def _add(category_id: int, judge_id: int) -> None:
        await add_roster_link(db, category_id, judge_id)
    return _add
