"""Async engine construction, request sessions, and schema bootstrap.

Lifecycle transitions isolate their best-effort writes (agent logs, the
restart check) in SAVEPOINTs, so every engine built here must support nested
transactions. PostgreSQL does out of the box; SQLite needs SQLAlchemy to own
``BEGIN`` instead of the driver, which :func:`build_engine` arranges.
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any

from alembic.config import Config
from sqlalchemy import event
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlmodel import SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession

from agentflow import models as _models
from agentflow.core.config import BACKEND_ROOT, settings
from agentflow.core.logging import get_logger

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

# Import model modules so SQLModel metadata is fully registered at startup.
_MODEL_REGISTRY = _models

MIGRATIONS_DIR = BACKEND_ROOT / "migrations" / "versions"

logger = get_logger(__name__)


def normalize_database_url(database_url: str, *, async_driver: bool = True) -> str:
    """Pin the driver for bare ``postgres``/``sqlite`` URLs.

    Postgres always goes through psycopg (sync and async). SQLite only gains
    the aiosqlite driver when an async engine is requested.
    """
    if "://" not in database_url:
        return database_url
    scheme, rest = database_url.split("://", 1)
    if scheme in {"postgresql", "postgres"}:
        return f"postgresql+psycopg://{rest}"
    if scheme == "sqlite" and async_driver:
        return f"sqlite+aiosqlite://{rest}"
    return database_url


def _enable_sqlite_savepoints(engine: AsyncEngine) -> None:
    @event.listens_for(engine.sync_engine, "connect")
    def _disable_driver_begin(dbapi_connection: Any, _record: Any) -> None:
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _emit_begin(conn: Any) -> None:
        conn.exec_driver_sql("BEGIN")


def build_engine(database_url: str) -> AsyncEngine:
    """Create an async engine whose connections support SAVEPOINTs."""
    url = normalize_database_url(database_url)
    if url.startswith("sqlite"):
        engine = create_async_engine(url)
        _enable_sqlite_savepoints(engine)
        return engine
    return create_async_engine(url, pool_pre_ping=True)


def build_session_maker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    # Services read ids and names after commit; keep loaded state.
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async_engine: AsyncEngine = build_engine(settings.database_url)
async_session_maker = build_session_maker(async_engine)


def _alembic_config() -> Config:
    alembic_cfg = Config(str(BACKEND_ROOT / "alembic.ini"))
    alembic_cfg.attributes["configure_logger"] = False
    return alembic_cfg


def run_migrations() -> None:
    """Upgrade the AgentFlow schema to the latest Alembic revision."""
    from alembic import command

    logger.info("db.migrations.started")
    command.upgrade(_alembic_config(), "head")
    logger.info("db.migrations.complete")


async def create_schema(engine: AsyncEngine) -> None:
    """Create any missing tables straight from SQLModel metadata."""
    async with engine.connect() as conn, conn.begin():
        await conn.run_sync(SQLModel.metadata.create_all)


async def init_db() -> None:
    """Bring the schema up at startup.

    With ``DB_AUTO_MIGRATE`` on, Alembic owns the schema whenever revision
    files ship with the app; otherwise tables come from ``create_all``.
    """
    revisions = sorted(MIGRATIONS_DIR.glob("*.py")) if settings.db_auto_migrate else []
    if revisions:
        logger.info("db.init.migrate", extra={"revision_files": len(revisions)})
        await asyncio.to_thread(run_migrations)
        return
    if settings.db_auto_migrate:
        logger.warning("db.init.no_revisions", extra={"path": str(MIGRATIONS_DIR)})
    logger.info("db.init.create_all", extra={"tables": sorted(SQLModel.metadata.tables)})
    await create_schema(async_engine)


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """Yield a request session; anything left uncommitted is rolled back."""
    async with async_session_maker() as session:
        try:
            yield session
        finally:
            await _rollback_open_transaction(session)


async def _rollback_open_transaction(session: AsyncSession) -> None:
    try:
        if not session.in_transaction():
            return
        await session.rollback()
    except SQLAlchemyError:
        logger.exception("db.session.rollback_failed")
