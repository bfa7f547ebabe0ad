"""Async SQLAlchemy 2.0 engine + session factory."""

from __future__ import annotations

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from .models import Base


def make_engine(database_url: str, echo: bool = False) -> AsyncEngine:
    """Create an async engine with dialect-specific configuration.

    - PostgreSQL (asyncpg): connection pooling with pre-ping
    - SQLite (aiosqlite): foreign keys enforced on every connection so
      version rows cascade with their document
    """
    connect_args: dict = {}
    kwargs: dict = {
        "echo": echo,
        "pool_pre_ping": True,
    }

    is_sqlite = database_url.startswith("sqlite")
    if is_sqlite:
        connect_args["check_same_thread"] = False
        # Wait for a competing writer instead of failing immediately
        connect_args["timeout"] = 15
    elif database_url.startswith("postgresql"):
        kwargs["pool_size"] = 10
        kwargs["max_overflow"] = 20

    kwargs["connect_args"] = connect_args
    engine = create_async_engine(database_url, **kwargs)

    if is_sqlite:
        @event.listens_for(engine.sync_engine, "connect")
        def _enable_foreign_keys(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    return engine


def make_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def create_tables(engine: AsyncEngine) -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
