"""
Async SQLAlchemy engine and sessions.
PostgreSQL (asyncpg) in production; SQLite (aiosqlite) for local runs and tests.
Sessions use expire_on_commit=False: the runner commits a claim and keeps
reading the same Enrollment objects afterwards.
"""
import logging
from typing import AsyncGenerator
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

logger = logging.getLogger(__name__)

_engine = None
_async_session_factory = None


class Base(DeclarativeBase):
    pass


def _engine_options(settings) -> dict:
    options = {"echo": settings.app_env == "development"}
    # SQLite uses a single-connection pool without sizing knobs
    if not settings.database_url.startswith("sqlite"):
        options.update(
            pool_size=settings.database_pool_size,
            max_overflow=settings.database_max_overflow,
            pool_pre_ping=True,
        )
    return options


def _get_engine() -> AsyncEngine:
    global _engine
    if _engine is None:
        from cadence.config import get_settings
        settings = get_settings()
        _engine = create_async_engine(settings.database_url, **_engine_options(settings))
    return _engine


def _get_session_factory():
    global _async_session_factory
    if _async_session_factory is None:
        _async_session_factory = async_sessionmaker(
            _get_engine(), class_=AsyncSession, expire_on_commit=False
        )
    return _async_session_factory


def async_session_factory() -> AsyncSession:
    """New session for the runner loop and scripts (outside a request)."""
    return _get_session_factory()()


def dialect_name(db: AsyncSession) -> str:
    """Name of the SQL dialect the session is bound to ("postgresql", "sqlite", ...)."""
    return db.get_bind().dialect.name


async def dispose_engine() -> None:
    """Close pooled connections on shutdown."""
    global _engine, _async_session_factory
    if _engine is not None:
        await _engine.dispose()
        logger.info("Database engine disposed")
    _engine = None
    _async_session_factory = None


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency: one session per request, committed on success."""
    async with _get_session_factory()() as session:
        try:
            yield session
            await session.commit()
        except Exception as e:
            logger.debug("Request session rolled back: %s", str(e))
            await session.rollback()
            raise
