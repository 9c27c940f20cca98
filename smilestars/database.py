"""Database configuration and session management."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from smilestars.config import settings


def create_engine(url: str | None = None) -> AsyncEngine:
    """Create the async database engine."""
    url = url or settings.async_database_url

    engine_kwargs: dict[str, Any] = {
        "echo": settings.app_debug,
        "future": True,
    }

    # SQLite and development use NullPool for easier debugging
    if url.startswith("sqlite") or settings.is_development:
        engine_kwargs["poolclass"] = NullPool
    else:
        engine_kwargs["pool_size"] = settings.database_pool_size
        engine_kwargs["max_overflow"] = settings.database_max_overflow
        engine_kwargs["pool_pre_ping"] = True

    return create_async_engine(url, **engine_kwargs)


# Global engine instance
engine = create_engine()

# Session factory
async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Dependency that yields a request-scoped session.

    The whole request is one transaction: commit on success, rollback on any
    exception so an aborted request leaves no partial writes.
    """
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


@asynccontextmanager
async def get_db_context() -> AsyncGenerator[AsyncSession, None]:
    """Context manager for database session (for use outside of FastAPI dependencies)."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


def insert_ignoring_conflicts(db: AsyncSession, model: type, index_elements: list[str], **values: Any):
    """Build an ``INSERT ... ON CONFLICT DO NOTHING`` for the session's dialect.

    Used where two racing requests may create the same unique row and the
    loser should observe the winner's row instead of failing.
    """
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        stmt = postgresql.insert(model)
    elif dialect == "sqlite":
        stmt = sqlite.insert(model)
    else:
        raise NotImplementedError(f"Unsupported dialect for conflict-free insert: {dialect}")
    return stmt.values(**values).on_conflict_do_nothing(index_elements=index_elements)


async def close_db() -> None:
    """Close database connections."""
    await engine.dispose()
