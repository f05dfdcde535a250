"""Async engine, session factory, and startup schema setup."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import TYPE_CHECKING

from alembic.config import Config
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlmodel import SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession

from kanban_crm import models as _models
from kanban_crm.core.config import settings
from kanban_crm.core.logging import get_logger

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

# Registers every table on SQLModel.metadata before create_all/migrations run.
_MODEL_REGISTRY = _models

BACKEND_ROOT = Path(__file__).resolve().parents[2]
logger = get_logger(__name__)


def normalize_database_url(database_url: str) -> str:
    """Route plain ``postgresql://`` URLs to the async psycopg driver."""
    if database_url.startswith("postgresql://"):
        return "postgresql+psycopg://" + database_url.removeprefix("postgresql://")
    return database_url


def build_engine(database_url: str) -> AsyncEngine:
    url = normalize_database_url(database_url)
    if url.startswith("sqlite"):
        return create_async_engine(url)
    return create_async_engine(url, pool_pre_ping=True)


def build_session_maker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async_engine = build_engine(settings.database_url)
async_session_maker = build_session_maker(async_engine)


def run_migrations() -> None:
    """Upgrade the database to the latest Alembic revision."""
    from alembic import command

    config = Config(str(BACKEND_ROOT / "alembic.ini"))
    config.set_main_option("script_location", str(BACKEND_ROOT / "migrations"))
    config.attributes["configure_logger"] = False
    logger.info("db.migrations.started")
    command.upgrade(config, "head")
    logger.info("db.migrations.finished")


async def create_schema(engine: AsyncEngine) -> None:
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)


async def init_db() -> None:
    """Prepare the schema: migrations when enabled, ``create_all`` otherwise."""
    if settings.db_auto_migrate:
        if any((BACKEND_ROOT / "migrations" / "versions").glob("*.py")):
            await asyncio.to_thread(run_migrations)
            return
        logger.warning("db.migrations.missing falling back to create_all")
    await create_schema(async_engine)


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """Yield a request-scoped session, rolling back whatever is left uncommitted."""
    async with async_session_maker() as session:
        try:
            yield session
        finally:
            if session.in_transaction():
                try:
                    await session.rollback()
                except SQLAlchemyError:
                    logger.exception("db.session.rollback_failed")
