"""
Database Connection and Session Management
"""
from contextlib import asynccontextmanager
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import NullPool

from pharmadispatch.core.config import settings
from pharmadispatch.core.exceptions import StorageFaultError
from pharmadispatch.core.logging import get_logger

logger = get_logger(__name__)

engine = create_async_engine(
    settings.DATABASE_URL,
    echo=settings.DEBUG,
    pool_pre_ping=True
)

AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False
)

Base = declarative_base()


async def init_models(bind=None) -> None:
    """Create missing tables for every registered model"""
    import pharmadispatch.db.models  # noqa: F401  registers mappers on Base

    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def get_db() -> AsyncSession:
    """Dependency for getting database session"""
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()


async def commit_or_raise(db: AsyncSession, operation: str) -> None:
    """Commit the unit of work; on failure roll it back and raise StorageFaultError"""
    try:
        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        logger.error(
            f"Commit failed during {operation}",
            extra_data={"operation": operation, "error": str(e)},
            exc_info=True
        )
        raise StorageFaultError(operation, str(e)) from e


@asynccontextmanager
async def get_task_session():
    """
    Session for one Celery task run.

    Tasks run on a private event loop (see workers.tasks.run_async), and
    asyncpg connections cannot cross loops, so each run gets its own
    unpooled engine that is disposed with the loop.
    """
    task_engine = create_async_engine(settings.DATABASE_URL, poolclass=NullPool)
    try:
        async with AsyncSession(task_engine, expire_on_commit=False) as session:
            yield session
    finally:
        await task_engine.dispose()
