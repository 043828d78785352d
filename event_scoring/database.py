"""
event_scoring/database.py
Async database engine, session factory and schema bootstrap
"""
import logging

from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker

from event_scoring.config.settings import settings
from event_scoring.orm.base import Base
import event_scoring.orm  # ensures all models are registered

logger = logging.getLogger(__name__)

DATABASE_URL = settings.DATABASE_URL

if not DATABASE_URL:
    raise ValueError("DATABASE_URL environment variable is not set")


def build_engine(url: str = DATABASE_URL):
    """Create an async engine with pool settings suited to the dialect."""
    if "sqlite" in url.lower():
        # SQLite busy timeout lets concurrent bulk writers queue instead of failing
        return create_async_engine(
            url,
            echo=settings.SQL_ECHO,
            future=True,
            connect_args={"timeout": 30.0},
        )
    return create_async_engine(
        url,
        echo=settings.SQL_ECHO,
        future=True,
        pool_pre_ping=True,
        pool_size=20,
        max_overflow=30,
        pool_timeout=30,
        pool_recycle=3600,
    )


def build_session_factory(bind) -> async_sessionmaker:
    return async_sessionmaker(
        bind,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


engine = build_engine()
AsyncSessionLocal = build_session_factory(engine)


async def get_db():
    """Dependency for getting async database session"""
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()


def get_session_factory() -> async_sessionmaker:
    """Dependency for bulk operations that open one session per item"""
    return AsyncSessionLocal


async def init_db():
    """Create all tables that do not exist yet."""
    logger.info("Initializing database...")
    logger.info(f"Database dialect: {engine.url.get_backend_name()}")
    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database initialization complete")
    except Exception as e:
        logger.error(f"Database initialization failed: {str(e)}")
        raise


async def close_db():
    """Close database connection"""
    await engine.dispose()
    logger.info("Database connection closed")
