"""Async engine and session factory.

SQLite is the default backend (``sqlite+aiosqlite``); PostgreSQL works
through ``postgresql+asyncpg``.  Pool sizing for server databases comes
from ``AFRODITE_DB_*`` env vars.
"""

import os

from sqlalchemy import event, text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None

_SQLITE_PRAGMAS = (
    "PRAGMA journal_mode=WAL",
    "PRAGMA synchronous=NORMAL",
    "PRAGMA busy_timeout=5000",
)


def _pool_options() -> dict:
    return {
        "pool_size": int(os.environ.get("AFRODITE_DB_POOL_SIZE", "10")),
        "max_overflow": int(os.environ.get("AFRODITE_DB_MAX_OVERFLOW", "20")),
        "pool_recycle": int(os.environ.get("AFRODITE_DB_POOL_RECYCLE", "1800")),
        "pool_pre_ping": True,
    }


def init_engine(database_url: str) -> AsyncEngine:
    global _engine, _session_factory

    if database_url.startswith("sqlite"):
        engine = create_async_engine(database_url, connect_args={"timeout": 30})

        @event.listens_for(engine.sync_engine, "connect")
        def _on_connect(dbapi_conn, _record):
            cursor = dbapi_conn.cursor()
            for pragma in _SQLITE_PRAGMAS:
                cursor.execute(pragma)
            cursor.close()
    else:
        engine = create_async_engine(database_url, **_pool_options())

    _engine = engine
    _session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    return engine


async def lock_for_write(db: AsyncSession) -> None:
    """Take the database write lock for the rest of ``db``'s transaction.

    Must be the first statement of the transaction.  The SQLite driver only
    opens a transaction right before the first INSERT/UPDATE and ignores
    ``FOR UPDATE``, so a read-modify-write would otherwise read outside any
    lock.  ``BEGIN IMMEDIATE`` makes concurrent writers queue on the busy
    timeout instead.  Other backends rely on row locks from ``FOR UPDATE``.
    """
    if db.get_bind().dialect.name == "sqlite":
        await db.execute(text("BEGIN IMMEDIATE"))


def get_engine() -> AsyncEngine:
    if _engine is None:
        raise RuntimeError("Database engine not initialized. Call init_engine() first.")
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    if _session_factory is None:
        raise RuntimeError("Database engine not initialized. Call init_engine() first.")
    return _session_factory
