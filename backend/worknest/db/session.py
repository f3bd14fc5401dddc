"""Database engine, session factory, and startup migration helpers."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import TYPE_CHECKING, Any

from alembic.config import Config
from sqlalchemy.engine import make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession

from worknest import models as _models
from worknest.core.config import settings
from worknest.core.logging import get_logger

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

# Import model modules so SQLModel metadata is fully registered at startup.
_MODEL_REGISTRY = _models
BACKEND_ROOT = Path(__file__).resolve().parents[2]
MIGRATIONS_DIR = BACKEND_ROOT / "migrations"

logger = get_logger(__name__)


def _normalize_database_url(database_url: str) -> str:
    if "://" not in database_url:
        return database_url
    scheme, rest = database_url.split("://", 1)
    if scheme in {"postgresql", "postgres"}:
        return f"postgresql+psycopg://{rest}"
    if scheme == "sqlite":
        return f"sqlite+aiosqlite://{rest}"
    return database_url


def engine_options(database_url: str) -> dict[str, Any]:
    """Return `create_async_engine` keyword arguments suited to the database backend.

    SQLite writers queue on the database lock for up to the configured busy timeout
    instead of failing with "database is locked"; the display-id counter and the
    board column rebuild both rely on that. An in-memory SQLite database lives only
    as long as its connection, so every session shares one.
    """
    url = make_url(database_url)
    if url.get_backend_name() != "sqlite":
        return {"pool_pre_ping": True}
    options: dict[str, Any] = {
        "connect_args": {"timeout": settings.db_sqlite_busy_timeout_seconds},
    }
    if url.database in (None, "", ":memory:"):
        options["poolclass"] = StaticPool
    return options


def build_engine(database_url: str) -> AsyncEngine:
    """Create an async engine for `database_url` using backend-specific pool settings."""
    normalized = _normalize_database_url(database_url)
    return create_async_engine(normalized, **engine_options(normalized))


async_engine: AsyncEngine = build_engine(settings.database_url)
async_session_maker = async_sessionmaker(
    async_engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


def _alembic_config() -> Config:
    alembic_cfg = Config(str(BACKEND_ROOT / "alembic.ini"))
    alembic_cfg.set_main_option("script_location", str(MIGRATIONS_DIR))
    alembic_cfg.attributes["configure_logger"] = False
    return alembic_cfg


def run_migrations() -> None:
    """Apply Alembic migrations to the latest revision."""
    from alembic import command

    logger.info("db.migrations.start")
    command.upgrade(_alembic_config(), "head")
    logger.info("db.migrations.complete")


async def init_db() -> None:
    """Create the board schema, through migrations when auto-migrate is enabled."""
    if settings.db_auto_migrate:
        if any((MIGRATIONS_DIR / "versions").glob("*.py")):
            await asyncio.to_thread(run_migrations)
            return
        logger.warning("db.migrations.missing; falling back to create_all")

    async with async_engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)


async def _discard_open_transaction(session: AsyncSession) -> None:
    # Uncommitted board writes from a failed request must not leak into the pool.
    try:
        if not session.in_transaction():
            return
        await session.rollback()
    except SQLAlchemyError:
        logger.exception("db.session.rollback_failed")


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """Yield a request-scoped session; an open transaction is rolled back on exit."""
    async with async_session_maker() as session:
        try:
            yield session
        finally:
            await _discard_open_transaction(session)
