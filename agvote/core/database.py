"""
Database Configuration

SQLAlchemy async setup. PostgreSQL (asyncpg) in production, any async
driver SQLAlchemy supports elsewhere.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from agvote.core.config import settings

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


def build_engine(database_url: str, echo: bool = False) -> AsyncEngine:
    """Create an async engine for the given URL."""
    return create_async_engine(database_url, echo=echo, future=True)


def build_session_maker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to an engine."""
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


# Create async engine
engine = build_engine(settings.database_url, echo=settings.debug)

# Session factory
async_session_maker = build_session_maker(engine)


async def init_db(target: AsyncEngine | None = None) -> None:
    """Create all tables (use migrations for managed PostgreSQL deployments)."""
    # Import models so they register on Base.metadata
    from agvote.voting import models  # noqa: F401

    async with (target or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def run_with_retry(
    operation: Callable[[], Awaitable[T]],
    max_retries: int | None = None,
    backoff: float | None = None,
) -> T:
    """
    Run a unit of work, retrying transient storage failures.

    Only ``OperationalError`` (lost connection, lock timeout, serialization
    failure) is retried; every other exception propagates on first raise.
    ``operation`` must open its own transaction so each attempt starts clean.
    """
    retries = settings.storage_max_retries if max_retries is None else max_retries
    delay = settings.storage_retry_backoff if backoff is None else backoff

    attempt = 0
    while True:
        try:
            return await operation()
        except OperationalError as e:
            if attempt >= retries:
                logger.error(f"Storage operation failed after {attempt + 1} attempts: {e}")
                raise
            wait = delay * (2**attempt)
            logger.warning(
                f"Transient storage error (attempt {attempt + 1}/{retries + 1}), "
                f"retrying in {wait:.2f}s: {e}"
            )
            await asyncio.sleep(wait)
            attempt += 1
