"""
Database configuration and session management.
Uses SQLAlchemy 2.0 with async support.
"""
from typing import Any, AsyncGenerator, Dict
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from chatcore.config import settings


def _engine_options(url: str) -> Dict[str, Any]:
    """Pool options for the configured backend (SQLite has no sized pool)."""
    options: Dict[str, Any] = {"echo": settings.debug}
    if not url.startswith("sqlite"):
        options.update(pool_pre_ping=True, pool_size=20, max_overflow=10)
    return options


# Create async engine
engine = create_async_engine(settings.database_url, **_engine_options(settings.database_url))

# Create async session factory
AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency for getting async database sessions.

    Store writes commit on their own; this only guarantees rollback and
    release of the connection when a request fails.

    Yields:
        AsyncSession: Database session
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()
