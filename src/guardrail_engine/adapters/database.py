"""Database engine and request-scoped sessions.

Key exports:
- init_database(...)    Call at startup to create the engine and session factory
- close_database()      Call at shutdown to dispose the engine
- create_tables()       Create all grd_ tables (development and tests)
- get_db_session()      FastAPI dependency yielding a committed-on-success session
"""

from collections.abc import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from guardrail_engine.core.models import Base
from guardrail_engine.observability import get_logger

logger = get_logger(__name__)

# Module-level engine and session factory, initialized by init_database()
_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def init_database(database_url: str, pool_size: int = 5, echo: bool = False) -> AsyncEngine:
    """Initialize the engine and session factory.

    Args:
        database_url: SQLAlchemy async URL.
        pool_size: Connection pool size; ignored for SQLite.
        echo: Echo SQL statements.

    Returns:
        The created engine.
    """
    global _engine, _session_factory  # noqa: PLW0603

    options: dict[str, object] = {"echo": echo, "pool_pre_ping": True}
    if not database_url.startswith("sqlite"):
        options["pool_size"] = pool_size

    logger.info("Initializing database engine", pool_size=pool_size)
    _engine = create_async_engine(database_url, **options)
    _session_factory = async_sessionmaker(bind=_engine, class_=AsyncSession, expire_on_commit=False)
    return _engine


async def close_database() -> None:
    """Dispose the engine."""
    global _engine, _session_factory  # noqa: PLW0603

    if _engine is not None:
        logger.info("Disposing database engine")
        await _engine.dispose()
        _engine = None
        _session_factory = None


async def create_tables() -> None:
    """Create every table declared on the ORM base.

    Raises:
        RuntimeError: If init_database() has not been called.
    """
    if _engine is None:
        raise RuntimeError("Database has not been initialized. Call init_database() first.")
    async with _engine.begin() as connection:
        await connection.run_sync(Base.metadata.create_all)


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency that yields a session and commits when the route succeeds.

    Yields:
        AsyncSession: A session on the primary database.

    Raises:
        RuntimeError: If init_database() has not been called yet.
    """
    if _session_factory is None:
        raise RuntimeError(
            "Database has not been initialized. Call init_database() in the application lifespan handler."
        )

    async with _session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
