"""Async SQLAlchemy engine, session factory and database client.

The session factory is shared by the API dependency, the dispatcher
consumers and the Temporal activities.
"""

from collections.abc import AsyncGenerator

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from voidx.core.config import settings
from voidx.utils.logging import get_logger

LOGGER = get_logger(__name__)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


engine = create_async_engine(
    settings.database_url,
    pool_size=settings.db.pool_size,
    max_overflow=settings.db.max_overflow,
    echo=settings.db.echo,
    # Disable prepared statement cache for PgBouncer compatibility
    connect_args={"statement_cache_size": 0},
)

async_session_maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


def get_session_maker() -> async_sessionmaker[AsyncSession]:
    """FastAPI dependency for handlers whose work outlives the request scope."""
    return async_session_maker


async def get_async_session() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency for getting async database session.

    Yields:
        AsyncSession: Database session
    """
    async with async_session_maker() as session:
        try:
            yield session
        finally:
            await session.close()


class DatabaseClient:
    """Connection checks and schema bootstrap for the PostgreSQL engine."""

    def __init__(self, engine: AsyncEngine):
        self.engine = engine

    async def connect(self) -> bool:
        """Open one connection to prove the database is reachable."""
        try:
            async with self.engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
        except Exception:
            LOGGER.error("Could not reach the database", exc_info=True)
            raise
        LOGGER.info("Database reachable")
        return True

    async def disconnect(self) -> None:
        await self.engine.dispose()
        LOGGER.info("Database engine disposed")

    async def create_tables(self) -> None:
        """Create missing tables.

        The pgvector extension must exist before ``vector_points`` is created.
        """
        try:
            async with self.engine.begin() as conn:
                if self.engine.dialect.name == "postgresql":
                    await conn.execute(text("CREATE EXTENSION IF NOT EXISTS vector"))
                await conn.run_sync(Base.metadata.create_all)
        except Exception as e:
            LOGGER.error("Failed to create database tables", exc_info=True, extra={"error": str(e)})
            raise
        LOGGER.info("Database schema ready", extra={"tables": len(Base.metadata.tables)})

    async def health_check(self) -> dict:
        try:
            async with self.engine.connect() as conn:
                val = await conn.scalar(text("SELECT 1"))
        except Exception as e:
            LOGGER.error("Database health probe failed", extra={"error": str(e)})
            return {"status": "unhealthy", "connected": False, "error": str(e)}
        return {"status": "healthy" if val == 1 else "degraded", "connected": True}


db_client = DatabaseClient(engine)


async def init_database(create_tables: bool = True) -> None:
    """Check connectivity and optionally bootstrap the schema.

    Args:
        create_tables: Whether to create missing tables on startup
    """
    await db_client.connect()
    if create_tables:
        # Models must be imported so their tables are registered on Base
        import voidx.database.models  # noqa: F401

        await db_client.create_tables()


async def close_database() -> None:
    try:
        await db_client.disconnect()
    except Exception as e:
        LOGGER.error("Error disposing database engine", exc_info=True, extra={"error": str(e)})
