"""
database.py — Async PostgreSQL access for the authoritative session records.

Owns the engine, the session factory and the per-request dependency. The
wizard core never imports this module; routes hand an AsyncSession to
SqlSessionBackend (store.py), which is the only consumer.

    from onboarding.database import get_db
    async def route(db: AsyncSession = Depends(get_db)): ...
"""
import logging
from collections.abc import AsyncGenerator

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from onboarding.config import settings
from onboarding.wizard.errors import TransientIOError

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    """Declarative base for onboarding/models/. Lives here so alembic/env.py can import it without the models."""


# ---------------------------------------------------------------------------
# Engine and session factory
# ---------------------------------------------------------------------------
async_engine = create_async_engine(
    settings.database_url,
    echo=settings.debug,      # step data lives in JSONB values, never in WHERE clauses
    pool_size=settings.db_pool_size,
    max_overflow=settings.db_max_overflow,
    pool_pre_ping=True,
)

AsyncSessionLocal = async_sessionmaker(
    bind=async_engine,
    class_=AsyncSession,
    expire_on_commit=False,   # store.py maps ORM rows to pydantic after flush
)


async def dispose_engine() -> None:
    """Close pooled connections. Called from the app lifespan on shutdown."""
    await async_engine.dispose()


# ---------------------------------------------------------------------------
# Request-scoped session
# ---------------------------------------------------------------------------
async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    One AsyncSession per request. SqlSessionBackend commits each write itself;
    the final commit here only covers whatever is left, and a failure in it
    is a TransientIOError like any other database failure.
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except SQLAlchemyError as exc:
            await session.rollback()
            logger.error("Database error during commit: %s", type(exc).__name__)
            raise TransientIOError("Database unavailable during commit") from exc
        except Exception:
            await session.rollback()
            raise
